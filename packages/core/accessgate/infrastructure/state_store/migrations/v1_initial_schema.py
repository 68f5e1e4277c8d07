"""Initial MongoDB schema migration.

Creates the unique ``key`` index and the audit trail indexes. Existing
``accessKeys`` collections written by the panel handlers may predate the
unique index; duplicate keys make this migration fail loudly rather than pick
a winner.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from accessgate.infrastructure.state_store.mongo_models import ACCESS_KEYS_COLLECTION


async def migrate_v1_initial_schema(database: AsyncIOMotorDatabase) -> None:
    """Create initial indexes.

    Beanie creates the indexes declared on the document models when they are
    initialized; this migration also covers deployments that run migrations
    before (or without) Beanie.
    """
    access_keys = database[ACCESS_KEYS_COLLECTION]
    await access_keys.create_index([("key", ASCENDING)], unique=True)
    await access_keys.create_index([("status", ASCENDING)])

    transitions = database["state_transitions"]
    await transitions.create_index([("entity_id", ASCENDING), ("transition_timestamp", ASCENDING)])
