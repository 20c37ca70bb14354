"""
Key-value backend interface and in-memory implementation.
"""

from abc import ABC, abstractmethod


class PersistenceError(Exception):
    """Backend read or write failed (quota, I/O, closed connection)."""


class KeyValueBackend(ABC):
    """Abstract persistent key-value storage interface."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get serialized value, None if absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store serialized value. Raises PersistenceError on failure."""
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove key if present."""
        ...

    async def close(self) -> None:
        """Release resources. No-op if not needed."""
        return None


class InMemoryBackend(KeyValueBackend):
    """Dict-backed storage for tests and memory-only operation."""

    def __init__(self, data: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(data or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)
