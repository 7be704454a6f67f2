# cache/core.py
"""Key-value store interface shared by every transient auth store."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class StoreStats:
    """Store statistics tracking."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    conflicts: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate store hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0


class KeyValueStore(ABC):
    """Abstract base class for key-value backends.

    Values are opaque strings. ``compare_and_set`` is the only primitive
    callers need for read-modify-write on a single key; everything that
    mutates a transient record goes through it, so a shared backend can be
    swapped in without touching call sites.
    """

    def __init__(self, key_prefix: str = "", **config):
        self.key_prefix = key_prefix
        self.config = config
        self.stats = StoreStats()

    def make_key(self, key: str) -> str:
        """Create full store key with prefix."""
        return f"{self.key_prefix}{key}"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get value, or None when missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        """Set value with optional TTL in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if something was removed."""

    @abstractmethod
    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: Optional[str],
        ttl: Optional[float] = None,
    ) -> bool:
        """Atomically replace ``expected`` with ``value``.

        ``expected=None`` means the key must be absent. ``value=None``
        deletes the key. Returns False, leaving the key untouched, when the
        current value is not ``expected``.
        """

    async def start(self) -> None:
        """Start any background work the backend needs."""

    @abstractmethod
    async def close(self) -> None:
        """Close backend connections."""

    async def get_stats(self) -> StoreStats:
        """Get store statistics."""
        return self.stats


def create_store(backend: str = "memory", **config) -> KeyValueStore:
    """Build the configured backend."""
    from .backends import InMemoryBackend, RedisBackend

    if backend == "memory":
        return InMemoryBackend(**config)
    if backend == "redis":
        url = config.pop("url", None) or "redis://localhost:6379"
        return RedisBackend(url=url, **config)
    raise ValueError(f"Unknown store backend: {backend}")
