"""Migration runner for MongoDB schema changes."""

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase

from accessgate.infrastructure.state_store.migrations.v1_initial_schema import (
    migrate_v1_initial_schema,
)
from accessgate.infrastructure.state_store.migrations.v2_status_enum import (
    migrate_v2_status_enum,
)

logger = structlog.get_logger(__name__)

# Schema version tracking
CURRENT_SCHEMA_VERSION = 2

_MIGRATIONS = [
    (1, migrate_v1_initial_schema),
    (2, migrate_v2_status_enum),
]


async def run_migrations(database: AsyncIOMotorDatabase) -> int:
    """Run all pending migrations in order.

    The applied version is stored in the ``_migrations`` collection after each
    step, so an interrupted run resumes from the last completed migration.

    Returns:
        The schema version after running.
    """
    migrations_collection = database["_migrations"]
    version_doc = await migrations_collection.find_one({"type": "schema_version"})
    current_version = version_doc["version"] if version_doc else 0

    for version, migrate in _MIGRATIONS:
        if current_version >= version:
            continue
        await migrate(database)
        await migrations_collection.update_one(
            {"type": "schema_version"},
            {"$set": {"version": version, "type": "schema_version"}},
            upsert=True,
        )
        current_version = version
        logger.info("schema_migration_applied", version=version)

    return current_version
