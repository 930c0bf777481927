"""Storage adapters for engine tools."""

from bantai.storage.base import StorageAdapter, StorageUpdate, Updater
from bantai.storage.memory import InMemoryStorage

__all__ = [
    "StorageAdapter",
    "StorageUpdate",
    "Updater",
    "InMemoryStorage",
]
