"""
Memory manager - one explicit handle per subject.

Wires the block store, turn log, summary archive, session controller and
fact extractor around a shared event bus and persistence adapter. The
registry hands out one manager per subject id so callers never share
ambient global state.
"""

from datetime import datetime

from memblocks.core.config import Settings, get_settings
from memblocks.core.events import EventBus, MemoryInitialized, MemoryReset
from memblocks.core.logging import get_logger
from memblocks.core.typing import Clock, JSONDict
from memblocks.memory.base import InMemoryBackend, KeyValueBackend
from memblocks.memory.blocks import (
    PERSONA,
    PROJECT_FACTS,
    STORAGE_NAME as BLOCKS_STORAGE,
    SUBJECT_INFO,
    TASK_STATE,
    BlockStore,
)
from memblocks.memory.context import assemble_context
from memblocks.memory.learning import FactExtractor, ThoughtLog
from memblocks.memory.persistence import PersistenceAdapter
from memblocks.memory.recall import TurnLog
from memblocks.memory.session import SessionController
from memblocks.memory.summaries import STORAGE_NAME as SUMMARIES_STORAGE, SummaryArchive

logger = get_logger("memory.manager")

EXPORT_VERSION = 1

DEFAULT_PERSONA = (
    "I am a helpful assistant. I keep track of what the user is working on, "
    "remember what they tell me, and stay on top of deadlines. I speak plainly "
    "and never reveal credentials or internal data."
)

# label, description, initial value, limit
DEFAULT_BLOCKS: tuple[tuple[str, str, str, int], ...] = (
    (PERSONA, "Assistant personality and behavior rules", DEFAULT_PERSONA, 2000),
    (SUBJECT_INFO, "What we know about the current user", "", 2000),
    (TASK_STATE, "Current task context and what we are working on", "", 1500),
    (PROJECT_FACTS, "Key project facts that should always be available", "", 3000),
)


class MemoryManager:
    """Bounded conversational memory for one subject."""

    def __init__(
        self,
        subject_id: str | None = None,
        backend: KeyValueBackend | None = None,
        settings: Settings | None = None,
        source_context: str | None = None,
        clock: Clock = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.subject_id = subject_id or self.settings.anonymous_subject
        self.source_context = source_context or self.settings.source_context
        self.backend = backend or InMemoryBackend()
        self._clock = clock
        self._initialized = False

        self.events = EventBus()
        self.persistence = PersistenceAdapter(
            self.backend, self.subject_id, prefix=self.settings.storage_prefix
        )
        self.blocks = BlockStore(
            self.persistence,
            self.events,
            default_limit=self.settings.default_block_limit,
            clock=clock,
        )
        self.summaries = SummaryArchive(
            self.persistence, self.events, max_summaries=self.settings.max_summaries
        )
        self.recall = TurnLog(
            self.persistence,
            self.events,
            self.summaries,
            summarize_threshold=self.settings.summarize_threshold,
            keep_recent=self.settings.summarize_keep_recent,
            chars_per_weight=self.settings.chars_per_weight,
            source_context=self.source_context,
            clock=clock,
        )
        self.session = SessionController(
            self.persistence,
            self.events,
            self.recall,
            self.summaries,
            inactivity_timeout=self.settings.inactivity_timeout,
            clock=clock,
        )
        self.thoughts = ThoughtLog(
            self.events, max_thoughts=self.settings.thought_log_size, clock=clock
        )
        self.learning = FactExtractor(self.blocks, self.events, self.thoughts)

    @property
    def is_ready(self) -> bool:
        return self._initialized

    async def init(self, role: str | None = None, label: str | None = None) -> "MemoryManager":
        """Load prior state, settle the session and define default blocks.

        Idempotent: later calls return immediately. Optional identity hints
        are written into the subject block once.
        """
        if self._initialized:
            return self

        self.blocks.restore(await self.persistence.load(BLOCKS_STORAGE))
        self.summaries.restore(await self.persistence.load(SUMMARIES_STORAGE))
        await self.session.start()
        self._define_defaults()

        if role:
            current = self.blocks.get(SUBJECT_INFO) or ""
            if "Role:" not in current:
                prefix = "\n" if current else ""
                self.blocks.append(SUBJECT_INFO, f"{prefix}Role: {role}\nLabel: {label or 'Unknown'}")

        self._initialized = True
        self.events.publish(
            MemoryInitialized(subject_id=self.subject_id, session_id=self.session.session_id or "")
        )
        logger.info(
            f"Initialized {self.subject_id}. Session: {self.session.session_id} | "
            f"Blocks: {len(self.blocks)} | Recall: {self.recall.count()} turns | "
            f"Summaries: {self.summaries.count()}"
        )
        return self

    def assemble_context(self) -> str:
        """Render the full context payload for a downstream responder."""
        return assemble_context(
            self.blocks,
            self.summaries,
            self.recall,
            self.session,
            subject_id=self.subject_id,
            source_context=self.source_context,
            max_summaries=self.settings.context_summaries,
            recent_turns=self.settings.context_recent_turns,
        )

    def stats(self) -> JSONDict:
        """Counters for diagnostics."""
        return {
            "block_count": len(self.blocks),
            "total_block_chars": self.blocks.total_chars(),
            "turn_count": self.recall.count(),
            "session_id": self.session.session_id,
            "summary_count": self.summaries.count(),
            "thought_count": self.thoughts.count(),
            "persistence_failures": self.persistence.failures,
            "initialized": self._initialized,
        }

    def export(self) -> JSONDict:
        """Full serializable snapshot (debugging / backup)."""
        return {
            "version": EXPORT_VERSION,
            "exported_at": self._clock().isoformat(),
            "subject_id": self.subject_id,
            "source_context": self.source_context,
            "session": self.session.current.to_dict() if self.session.current else None,
            "blocks": self.blocks.to_dict(),
            "recall": self.recall.to_dict(),
            "summaries": self.summaries.to_list(),
            "thoughts": [t.to_dict() for t in self.thoughts.all()],
        }

    def reset(self) -> None:
        """Destructive: clear every store, re-create defaults, start a new session."""
        self.blocks.clear()
        self.summaries.clear()
        self.thoughts.clear()
        self.session.restart()
        self._define_defaults()
        self.events.publish(
            MemoryReset(subject_id=self.subject_id, session_id=self.session.session_id or "")
        )
        logger.warning(f"All memory reset for {self.subject_id}")

    async def flush(self) -> None:
        """Wait for queued writes to reach the backend."""
        await self.persistence.flush()

    async def close(self) -> None:
        """Flush pending writes. The backend stays open for its owner to close."""
        await self.flush()

    def _define_defaults(self) -> None:
        # define() is a no-op for labels restored from storage
        for label, description, value, limit in DEFAULT_BLOCKS:
            self.blocks.define(label, value=value, limit=limit, description=description)


class MemoryRegistry:
    """Subject-keyed managers sharing one backend."""

    def __init__(
        self,
        backend: KeyValueBackend | None = None,
        settings: Settings | None = None,
        clock: Clock = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.backend = backend or InMemoryBackend()
        self._clock = clock
        self._managers: dict[str, MemoryManager] = {}

    async def get(self, subject_id: str | None = None, source_context: str | None = None) -> MemoryManager:
        """Initialized manager for a subject. Missing ids map to the anonymous subject."""
        subject_id = subject_id or self.settings.anonymous_subject
        manager = self._managers.get(subject_id)
        if manager is None:
            manager = MemoryManager(
                subject_id,
                backend=self.backend,
                settings=self.settings,
                source_context=source_context,
                clock=self._clock,
            )
            self._managers[subject_id] = manager
        await manager.init()
        return manager

    def subjects(self) -> list[str]:
        return list(self._managers)

    async def close(self) -> None:
        """Flush every manager."""
        for manager in self._managers.values():
            await manager.close()
