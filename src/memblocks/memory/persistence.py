"""
Persistence adapter - best-effort snapshots of each store.

In-memory state is authoritative. Writes are serialized immediately, queued
per key (latest snapshot wins) and drained by a background task on the
running event loop, or by an explicit flush() when no loop is running.
Reads are only awaited at initialization. Backend failures and corrupt
snapshots are logged and degrade to memory-only operation; they never
propagate to the caller.
"""

import asyncio
import json
from typing import Any

from memblocks.core.logging import get_logger
from memblocks.memory.base import KeyValueBackend

logger = get_logger("memory.persistence")

_REMOVE = None


class PersistenceAdapter:
    """Namespaced JSON persistence for one subject."""

    def __init__(self, backend: KeyValueBackend, subject_id: str, prefix: str = "memblocks"):
        self.backend = backend
        self.subject_id = subject_id
        self.prefix = prefix
        self.failures = 0
        self._pending: dict[str, str | None] = {}
        self._drain_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def degraded(self) -> bool:
        """True once any backend call has failed."""
        return self.failures > 0

    @property
    def pending(self) -> int:
        """Number of queued, not yet written keys."""
        return len(self._pending)

    def key(self, name: str) -> str:
        """Backend key for a store name, namespaced by subject."""
        return f"{self.prefix}_{self.subject_id}_{name}"

    async def load(self, name: str) -> Any | None:
        """Load and decode a stored snapshot. None if absent or unreadable."""
        key = self.key(name)
        if key in self._pending:
            raw = self._pending[key]
        else:
            try:
                raw = await self.backend.get(key)
            except Exception as e:
                self.failures += 1
                logger.warning(f"Storage read error for {key}: {e}")
                return None

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Malformed stored state for {key}, using defaults: {e}")
            return None

    def save(self, name: str, data: Any) -> None:
        """Snapshot data now, write it in the background."""
        key = self.key(name)
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize {key}: {e}")
            return
        self._enqueue(key, payload)

    def remove(self, name: str) -> None:
        """Remove a stored snapshot in the background."""
        self._enqueue(self.key(name), _REMOVE)

    async def flush(self) -> None:
        """Write every queued snapshot before returning."""
        if self._drain_task is not None and not self._drain_task.done():
            await self._drain_task
        await self._drain()

    def _enqueue(self, key: str, payload: str | None) -> None:
        # Re-insert so the key moves to the back of the queue
        self._pending.pop(key, None)
        self._pending[key] = payload
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: writes wait for flush()
            return
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        async with self._lock:
            while self._pending:
                key = next(iter(self._pending))
                payload = self._pending.pop(key)
                await self._write(key, payload)

    async def _write(self, key: str, payload: str | None) -> None:
        try:
            if payload is _REMOVE:
                await self.backend.remove(key)
            else:
                await self.backend.set(key, payload)
        except Exception as e:
            self.failures += 1
            logger.warning(f"Storage write error for {key}, continuing in memory only: {e}")
