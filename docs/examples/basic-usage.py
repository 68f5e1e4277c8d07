"""
Basic AccessGate Usage Example

This example demonstrates the fundamental usage of the AccessGate core:
- Creating and administering access keys
- Validating keys with daily limits
- The device activation flow

It runs against the in-memory store, so no MongoDB is needed.

Run with: python docs/examples/basic-usage.py
"""

import asyncio

from accessgate.domain.components import (
    AccessKeyValidator,
    DeviceAuthorizer,
    KeyAdministrator,
)
from accessgate.infrastructure.observability.logger import DefaultObservabilityManager
from accessgate.infrastructure.state_store import InMemoryAccessKeyStore


async def main():
    store = InMemoryAccessKeyStore()
    observability = DefaultObservabilityManager(json_format=False)
    admin = KeyAdministrator(store, observability)
    authorizer = DeviceAuthorizer(store, observability)
    validator = AccessKeyValidator(store, observability)

    print("Step 1: Creating a key with a daily limit of 2...")
    key = await admin.create_key(daily_limit=2, created_by="example")
    print(f"✓ Created {key.key}")

    print("Step 2: Validating three times...")
    for _ in range(3):
        decision = await validator.validate(key.key)
        print(f"  {decision.status_code} {decision.message}")

    print("Step 3: Device activation...")
    print(f"  request: {(await authorizer.request_activation(key.key, 'laptop-1')).value}")
    print(f"  before approval: {(await validator.validate(key.key, device_id='laptop-1')).message}")
    await authorizer.authorize_device(key.key, "laptop-1")
    await admin.set_daily_limit(key.key, 0)
    print(f"  after approval: {(await validator.validate(key.key, device_id='laptop-1')).message}")

    print("Step 4: Banning for 3 days...")
    await admin.ban(key.key, duration="3d", reason="example ban")
    print(f"  {(await validator.validate(key.key)).message}")

    trail = await admin.get_state_transitions(key.key)
    print(f"✓ Audit trail: {[t.trigger for t in trail]}")


if __name__ == "__main__":
    asyncio.run(main())
