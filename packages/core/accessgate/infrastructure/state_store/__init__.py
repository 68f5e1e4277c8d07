"""Access key store implementations."""

from accessgate.infrastructure.state_store.memory_store import InMemoryAccessKeyStore
from accessgate.infrastructure.state_store.mongo_store import MongoAccessKeyStore

__all__ = ["InMemoryAccessKeyStore", "MongoAccessKeyStore"]
