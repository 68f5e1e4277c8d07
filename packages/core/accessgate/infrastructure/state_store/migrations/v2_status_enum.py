"""Migrate boolean status flags to the ``status`` enum.

Earlier revisions stored ``isActive`` / ``isBanned`` (plus ``banDetails``) and
wrote ``createdAt`` as an ISO string. This migration:

- ``isBanned: true`` -> ``status: "banned"`` keeping ``banDetails``
- ``isActive: false`` -> ``status: "suspended"`` indefinitely, reason "Deactivated"
- anything else without a status -> ``status: "active"``
- drops ``isActive`` / ``isBanned``
- renames ``createdByTelegramId`` -> ``createdBy`` and ``lastUsed`` -> ``lastUsedAt``
- converts string ``createdAt`` values to dates
"""

from motor.motor_asyncio import AsyncIOMotorDatabase

from accessgate.infrastructure.state_store.mongo_models import ACCESS_KEYS_COLLECTION

DEACTIVATED_REASON = "Deactivated"


async def migrate_v2_status_enum(database: AsyncIOMotorDatabase) -> None:
    collection = database[ACCESS_KEYS_COLLECTION]
    no_status = {"status": {"$exists": False}}

    await collection.update_many(
        {**no_status, "isBanned": True},
        [
            {
                "$set": {
                    "status": "banned",
                    "reason": {"$ifNull": ["$banDetails.reason", None]},
                    "banDetails": {"$ifNull": ["$banDetails", {"isPermanent": True}]},
                }
            }
        ],
    )
    await collection.update_many(
        {**no_status, "isActive": False},
        {"$set": {"status": "suspended", "reason": DEACTIVATED_REASON, "suspensionUntil": None}},
    )
    await collection.update_many(no_status, {"$set": {"status": "active"}})

    await collection.update_many(
        {"$or": [{"isActive": {"$exists": True}}, {"isBanned": {"$exists": True}}]},
        {"$unset": {"isActive": "", "isBanned": ""}},
    )
    await collection.update_many(
        {"createdByTelegramId": {"$exists": True}},
        {"$rename": {"createdByTelegramId": "createdBy"}},
    )
    await collection.update_many(
        {"lastUsed": {"$exists": True}},
        {"$rename": {"lastUsed": "lastUsedAt"}},
    )
    await collection.update_many(
        {"createdAt": {"$type": "string"}},
        [{"$set": {"createdAt": {"$toDate": "$createdAt"}}}],
    )
