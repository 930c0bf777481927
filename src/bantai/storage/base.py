"""Storage adapter contract shared by the rate limiter and other tools."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class StorageUpdate(Generic[T]):
    """Value returned by an ``update`` callback: what to write and for how long."""
    
    value: T
    ttl_ms: Optional[int] = None


Updater = Callable[[Optional[T]], Optional[StorageUpdate[T]]]


class StorageAdapter(ABC, Generic[T]):
    """
    Async key-value storage contract.
    
    Backends implement ``get``, ``set`` and ``delete``. Backends that can
    perform an atomic read-modify-write also implement ``update`` and set
    ``supports_update`` to True; callers fall back to get-then-set otherwise.
    """
    
    supports_update: bool = False
    
    @abstractmethod
    async def get(self, key: str) -> Optional[T]:
        """Return the stored value, or None when missing or expired."""
        pass
    
    @abstractmethod
    async def set(self, key: str, value: T, ttl_ms: Optional[int] = None) -> None:
        """Store a value, optionally expiring after ``ttl_ms`` milliseconds."""
        pass
    
    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        pass
    
    async def update(self, key: str, updater: Updater) -> Optional[T]:
        """
        Atomically replace the value at ``key``.
        
        ``updater`` receives the current value (or None) and returns a
        ``StorageUpdate`` to write, or None to leave the key untouched.
        
        Returns:
            The value stored after the update.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support atomic update")
