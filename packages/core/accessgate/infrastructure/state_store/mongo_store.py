"""MongoDB access key store implementation.

This module provides a MongoDB-backed implementation of the AccessKeyStore
interface using motor (async MongoDB driver) and beanie (Pydantic-based ODM).
Every transition is one ``find_one_and_update`` whose filter carries the
precondition, so concurrent requests for the same key cannot both pass a limit
check.

Example:
    ```python
    import os
    os.environ["MONGODB_URL"] = "mongodb://localhost:27017/accessgate"

    from accessgate.infrastructure.state_store.mongo_store import MongoAccessKeyStore

    store = MongoAccessKeyStore()
    await store.initialize()
    record = await store.get_key("abc123")
    ```
"""

import os
from datetime import date, datetime
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from accessgate.domain.interfaces.access_key_store import (
    AccessKeyStore,
    KeyConflictError,
    StateStoreError,
)
from accessgate.domain.models.access_key import (
    AccessKey,
    AccessKeyStatus,
    RejectionWindow,
    mask_key,
)
from accessgate.domain.models.state_transition import StateTransition
from accessgate.infrastructure.state_store.migrations import run_migrations
from accessgate.infrastructure.state_store.mongo_models import (
    ACCESS_KEYS_COLLECTION,
    REJECTION_WINDOW_FIELDS,
    AccessKeyDocument,
    StateTransitionDocument,
    access_key_from_raw,
    initialize_beanie_models,
    status_to_fields,
)

logger = structlog.get_logger(__name__)


class MongoAccessKeyStore(AccessKeyStore):
    """MongoDB implementation of AccessKeyStore.

    Connection Configuration:
        - Connection string from MONGODB_URL environment variable
        - Database name from the connection string path, unless given explicitly
        - Timezone-aware client so stored instants compare with ``utcnow()``

    Error Handling:
        - Driver errors raise StateStoreError with context
        - Duplicate ``key`` inserts raise KeyConflictError
    """

    def __init__(
        self,
        connection_url: str | None = None,
        database_name: str | None = None,
        max_pool_size: int = 100,
        min_pool_size: int = 0,
        connect_timeout_ms: int = 20000,
        server_selection_timeout_ms: int = 5000,
    ) -> None:
        """Initialize MongoAccessKeyStore with connection configuration.

        Args:
            connection_url: MongoDB connection string. If None, reads from
                MONGODB_URL environment variable.
            database_name: Database to use. Defaults to the database in the
                connection string, or "accessgate".
            max_pool_size: Maximum number of connections in the pool.
            min_pool_size: Minimum number of connections in the pool.
            connect_timeout_ms: Connection timeout in milliseconds.
            server_selection_timeout_ms: Server selection timeout in milliseconds.

        Raises:
            StateStoreError: If connection URL is missing or invalid.
        """
        if connection_url is None:
            connection_url = os.getenv("MONGODB_URL")
            if connection_url is None:
                raise StateStoreError(
                    "MongoDB connection URL not provided. Set MONGODB_URL environment variable or pass connection_url parameter."
                )

        self._initialized = False

        try:
            self._client: AsyncIOMotorClient | None = AsyncIOMotorClient(
                connection_url,
                tz_aware=True,
                maxPoolSize=max_pool_size,
                minPoolSize=min_pool_size,
                connectTimeoutMS=connect_timeout_ms,
                serverSelectionTimeoutMS=server_selection_timeout_ms,
            )
        except (ConfigurationError, ValueError) as e:
            error_msg = f"Invalid MongoDB connection URL: {e}"
            logger.error("mongodb_connection_error", error=error_msg)
            raise StateStoreError(error_msg) from e

        if database_name is None:
            default_db = self._client.get_default_database(default="accessgate")
            database_name = default_db.name
        self._database_name = database_name
        self._collection: AsyncIOMotorCollection = self._client[database_name][
            ACCESS_KEYS_COLLECTION
        ]
        logger.info(
            "MongoDB client created",
            database=database_name,
            max_pool_size=max_pool_size,
        )

    async def initialize(self) -> None:
        """Verify connectivity, initialize Beanie and run pending migrations.

        Raises:
            StateStoreError: If connection, authentication or migration fails.
        """
        if self._initialized:
            return

        if self._client is None:
            raise StateStoreError("MongoDB client not initialized")

        try:
            await self._client.admin.command("ping")
            database = self._client[self._database_name]
            await initialize_beanie_models(database)
            await run_migrations(database)
            self._initialized = True
            logger.info(
                "MongoDB connection established and Beanie initialized",
                database=self._database_name,
            )
        except (ConnectionFailure, ServerSelectionTimeoutError, NetworkTimeout) as e:
            error_msg = f"Failed to connect to MongoDB: {e}"
            logger.error("mongodb_connection_failure", error=error_msg)
            raise StateStoreError(error_msg) from e
        except OperationFailure as e:
            if e.code == 18 or "authentication" in str(e).lower():
                error_msg = f"MongoDB authentication failed: {e}"
                logger.error("mongodb_authentication_failure", error=error_msg)
            else:
                error_msg = f"MongoDB initialization failed: {e}"
                logger.error("mongodb_initialization_error", error=error_msg)
            raise StateStoreError(error_msg) from e
        except PyMongoError as e:
            error_msg = f"Unexpected error during MongoDB initialization: {e}"
            logger.error("mongodb_initialization_error", error=error_msg)
            raise StateStoreError(error_msg) from e

    async def check_connection(self) -> bool:
        """Ping the server; returns False instead of raising."""
        if self._client is None:
            return False

        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("mongodb_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._initialized = False
            logger.info("MongoDB connection closed")

    async def _find_one_and_update(
        self,
        operation: str,
        key: str,
        filter_: dict[str, Any],
        update: dict[str, Any] | list[dict[str, Any]],
        return_document: bool = ReturnDocument.AFTER,
    ) -> dict[str, Any] | None:
        if not self._initialized:
            await self.initialize()
        try:
            return await self._collection.find_one_and_update(
                {"key": key, **filter_},
                update,
                return_document=return_document,
            )
        except PyMongoError as e:
            error_msg = f"Failed to {operation} for key {mask_key(key)}: {e}"
            logger.error("mongodb_update_error", operation=operation, error=error_msg)
            raise StateStoreError(error_msg) from e

    async def _transition(
        self,
        operation: str,
        key: str,
        filter_: dict[str, Any],
        update: dict[str, Any] | list[dict[str, Any]],
    ) -> AccessKey | None:
        raw = await self._find_one_and_update(operation, key, filter_, update)
        return access_key_from_raw(raw) if raw is not None else None

    async def create_key(self, key: AccessKey) -> AccessKey:
        if not self._initialized:
            await self.initialize()
        try:
            await AccessKeyDocument.from_domain_model(key).insert()
        except DuplicateKeyError as e:
            raise KeyConflictError("Access key already exists") from e
        except PyMongoError as e:
            error_msg = f"Failed to create key {mask_key(key.key)}: {e}"
            logger.error("mongodb_create_key_error", error=error_msg)
            raise StateStoreError(error_msg) from e
        return key

    async def get_key(self, key: str) -> AccessKey | None:
        if not self._initialized:
            await self.initialize()
        try:
            raw = await self._collection.find_one({"key": key})
        except PyMongoError as e:
            error_msg = f"Failed to get key {mask_key(key)}: {e}"
            logger.error("mongodb_get_key_error", error=error_msg)
            raise StateStoreError(error_msg) from e
        return access_key_from_raw(raw) if raw is not None else None

    async def list_keys(self) -> list[AccessKey]:
        if not self._initialized:
            await self.initialize()
        try:
            cursor = self._collection.find({}).sort("createdAt", 1)
            return [access_key_from_raw(raw) async for raw in cursor]
        except PyMongoError as e:
            error_msg = f"Failed to list keys: {e}"
            logger.error("mongodb_list_keys_error", error=error_msg)
            raise StateStoreError(error_msg) from e

    async def delete_key(self, key: str) -> bool:
        if not self._initialized:
            await self.initialize()
        try:
            result = await self._collection.delete_one({"key": key})
        except PyMongoError as e:
            error_msg = f"Failed to delete key {mask_key(key)}: {e}"
            logger.error("mongodb_delete_key_error", error=error_msg)
            raise StateStoreError(error_msg) from e
        return result.deleted_count == 1

    async def consume(
        self,
        key: str,
        *,
        now: datetime,
        today: date,
        history_size: int,
        device_id: str | None = None,
    ) -> AccessKey | None:
        today_iso = today.isoformat()
        filter_: dict[str, Any] = {
            "status": "active",
            "$or": [
                {"dailyLimit": {"$in": [0, None]}},
                {"lastUsedDate": {"$ne": today_iso}},
                {"$expr": {"$lt": [{"$ifNull": ["$dailyUsage", 0]}, "$dailyLimit"]}},
            ],
        }
        if device_id is not None:
            filter_["usedDevices"] = device_id
        # Pipeline update: every expression reads the document as it was before this stage.
        update = [
            {
                "$set": {
                    "dailyUsage": {
                        "$cond": [
                            {"$eq": ["$lastUsedDate", today_iso]},
                            {"$add": [{"$ifNull": ["$dailyUsage", 0]}, 1]},
                            1,
                        ]
                    },
                    "usageCount": {"$add": [{"$ifNull": ["$usageCount", 0]}, 1]},
                    "lastUsedDate": today_iso,
                    "lastUsedAt": now,
                    "usageTimestamps": {
                        "$slice": [
                            {"$concatArrays": [{"$ifNull": ["$usageTimestamps", []]}, [now]]},
                            -history_size,
                        ]
                    },
                }
            },
            {"$unset": list(REJECTION_WINDOW_FIELDS)},
        ]
        return await self._transition("consume", key, filter_, update)

    async def clear_expired_suspension(self, key: str, now: datetime) -> AccessKey | None:
        return await self._transition(
            "clear expired suspension",
            key,
            {"status": "suspended", "suspensionUntil": {"$lt": now}},
            {"$set": {"status": "active", "reason": None, "suspensionUntil": None}},
        )

    async def clear_expired_ban(self, key: str, now: datetime) -> AccessKey | None:
        return await self._transition(
            "clear expired ban",
            key,
            {
                "status": "banned",
                "banDetails.isPermanent": False,
                "banDetails.expiresAt": {"$lt": now},
            },
            {"$set": {"status": "active", "reason": None}, "$unset": {"banDetails": ""}},
        )

    async def set_status(
        self, key: str, status: AccessKeyStatus
    ) -> tuple[AccessKey, AccessKey] | None:
        set_fields, unset_fields = status_to_fields(status)
        update: dict[str, Any] = {"$set": set_fields}
        if unset_fields:
            update["$unset"] = {field: "" for field in unset_fields}
        raw = await self._find_one_and_update(
            "set status", key, {}, update, return_document=ReturnDocument.BEFORE
        )
        if raw is None:
            return None
        before = access_key_from_raw(raw)
        return before, before.model_copy(update={"status": status})

    async def set_daily_limit(self, key: str, daily_limit: int) -> AccessKey | None:
        return await self._transition(
            "set daily limit", key, {}, {"$set": {"dailyLimit": daily_limit}}
        )

    async def record_usage(self, key: str, now: datetime, history_size: int) -> AccessKey | None:
        return await self._transition(
            "record usage",
            key,
            {},
            {
                "$push": {"usageTimestamps": {"$each": [now], "$slice": -history_size}},
                "$unset": {field: "" for field in REJECTION_WINDOW_FIELDS},
            },
        )

    async def open_rejection_window(self, key: str, window: RejectionWindow) -> AccessKey | None:
        no_active_window = {
            "$or": [
                {"lastErrorTimestamp": None},
                {
                    "$expr": {
                        "$lte": [
                            {"$add": ["$lastErrorTimestamp", {"$ifNull": ["$sessionTimeout", 0]}]},
                            window.started_at,
                        ]
                    }
                },
            ]
        }
        updated = await self._transition(
            "open rejection window",
            key,
            no_active_window,
            {
                "$set": {
                    "lastErrorMessage": window.message,
                    "lastErrorTimestamp": window.started_at,
                    "sessionTimeout": int(window.cooldown_seconds * 1000),
                }
            },
        )
        if updated is not None:
            return updated
        # Key is missing, or a concurrent request opened a window first.
        return await self.get_key(key)

    async def add_pending_device(self, key: str, device_id: str, now: datetime) -> AccessKey | None:
        return await self._transition(
            "add pending device",
            key,
            {"pendingDevices.deviceId": {"$ne": device_id}, "usedDevices": {"$ne": device_id}},
            {"$push": {"pendingDevices": {"deviceId": device_id, "requestedAt": now}}},
        )

    async def authorize_device(self, key: str, device_id: str, max_devices: int) -> AccessKey | None:
        filter_: dict[str, Any] = {"pendingDevices.deviceId": device_id}
        if max_devices > 0:
            filter_["$expr"] = {
                "$lt": [{"$size": {"$ifNull": ["$usedDevices", []]}}, max_devices]
            }
        return await self._transition(
            "authorize device",
            key,
            filter_,
            {
                "$pull": {"pendingDevices": {"deviceId": device_id}},
                "$addToSet": {"usedDevices": device_id},
            },
        )

    async def remove_pending_device(self, key: str, device_id: str) -> AccessKey | None:
        return await self._transition(
            "remove pending device",
            key,
            {"pendingDevices.deviceId": device_id},
            {"$pull": {"pendingDevices": {"deviceId": device_id}}},
        )

    async def remove_authorized_device(self, key: str, device_id: str) -> AccessKey | None:
        return await self._transition(
            "remove authorized device",
            key,
            {"usedDevices": device_id},
            {"$pull": {"usedDevices": device_id}},
        )

    async def save_state_transition(self, transition: StateTransition) -> None:
        if not self._initialized:
            await self.initialize()
        try:
            await StateTransitionDocument.from_domain_model(transition).insert()
        except PyMongoError as e:
            error_msg = f"Failed to save state transition: {e}"
            logger.error("mongodb_save_transition_error", error=error_msg)
            raise StateStoreError(error_msg) from e

    async def list_state_transitions(self, key: str, limit: int | None = None) -> list[StateTransition]:
        if not self._initialized:
            await self.initialize()
        try:
            query = StateTransitionDocument.find(StateTransitionDocument.entity_id == key)
            if limit is not None:
                docs = await query.sort("-transition_timestamp").limit(limit).to_list()
                docs.reverse()
            else:
                docs = await query.sort("+transition_timestamp").to_list()
        except PyMongoError as e:
            error_msg = f"Failed to list state transitions: {e}"
            logger.error("mongodb_list_transitions_error", error=error_msg)
            raise StateStoreError(error_msg) from e
        return [doc.to_domain_model() for doc in docs]
