"""In-memory storage adapter with TTL and per-key locking."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import TypeAdapter

from bantai.config import settings
from bantai.storage.base import StorageAdapter, Updater


logger = logging.getLogger(__name__)


def _system_clock() -> int:
    return int(time.time() * 1000)


class InMemoryStorage(StorageAdapter):
    """
    Process-local storage backed by a dict.
    
    Features:
    - Optional value validation through a pydantic type (``value_type``)
    - TTL expiry measured against an injectable millisecond clock
    - ``update`` serialised per key with an asyncio lock
    
    Suitable for tests and single-process deployments only.
    """
    
    supports_update = True
    
    def __init__(
        self,
        value_type: Any = None,
        clock: Optional[Callable[[], int]] = None,
        sweep_expired: Optional[bool] = None,
    ):
        """
        Initialize the storage.
        
        Args:
            value_type: Type (or annotated union) every stored value must match
            clock: Millisecond clock used for TTL expiry
            sweep_expired: Drop expired keys on read and write (default: from settings)
        """
        self._validator = TypeAdapter(value_type) if value_type is not None else None
        self._clock = clock or _system_clock
        self._sweep = settings.memory_storage_sweep if sweep_expired is None else sweep_expired
        
        # key -> (value, expires_at or None)
        self._store: Dict[str, Tuple[Any, Optional[int]]] = {}
        # key -> (lock, number of updates holding or waiting on it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}
        # Earliest expiry among stored entries, None when nothing expires
        self._next_expiry: Optional[int] = None
    
    def _validate(self, value: Any) -> Any:
        if self._validator is None:
            return value
        return self._validator.validate_python(value)
    
    def _expires_at(self, ttl_ms: Optional[int]) -> Optional[int]:
        if ttl_ms is None:
            return None
        return self._clock() + ttl_ms
    
    def _read(self, key: str) -> Any:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            if self._sweep:
                del self._store[key]
            return None
        return value
    
    def _purge_expired(self) -> None:
        """Drop every expired entry once the earliest expiry has passed."""
        now = self._clock()
        if self._next_expiry is None or now < self._next_expiry:
            return
        expired = [k for k, (_, expires_at) in self._store.items() if expires_at is not None and expires_at <= now]
        for key in expired:
            del self._store[key]
        self._next_expiry = min(
            (expires_at for _, expires_at in self._store.values() if expires_at is not None),
            default=None,
        )
        if expired:
            logger.debug(f"Storage purged {len(expired)} expired keys")
    
    def _write(self, key: str, value: Any, ttl_ms: Optional[int]) -> Any:
        value = self._validate(value)
        if self._sweep:
            self._purge_expired()
        expires_at = self._expires_at(ttl_ms)
        self._store[key] = (value, expires_at)
        if expires_at is not None and (self._next_expiry is None or expires_at < self._next_expiry):
            self._next_expiry = expires_at
        logger.debug(f"Storage write: {key} (ttl={ttl_ms})")
        return value
    
    async def get(self, key: str) -> Any:
        return self._read(key)
    
    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        self._write(key, value, ttl_ms)
    
    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
    
    async def update(self, key: str, updater: Updater) -> Any:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                current = self._read(key)
                change = updater(current)
                if change is None:
                    return current
                return self._write(key, change.value, change.ttl_ms)
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)
    
    def __len__(self) -> int:
        return len(self._store)
    
    def clear(self) -> None:
        """Drop every key."""
        self._store.clear()
        self._next_expiry = None
