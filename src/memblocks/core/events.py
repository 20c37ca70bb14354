"""
Typed publish/subscribe for memory changes.

Every event is a frozen dataclass; `MemoryEvent` is the closed union of all
variants. Subscribers register per event class (or for everything) and get
back an unsubscribe callable. A failing handler is logged and skipped so a
misbehaving observer can never break a memory mutation.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeAlias, TypeVar

from memblocks.core.logging import get_logger
from memblocks.core.types import Block, LearnedFact, SummaryRecord, Thought, Turn

logger = get_logger("core.events")


@dataclass(frozen=True)
class MemoryInitialized:
    subject_id: str
    session_id: str


@dataclass(frozen=True)
class MemoryReset:
    subject_id: str
    session_id: str


@dataclass(frozen=True)
class BlockDefined:
    block: Block


@dataclass(frozen=True)
class BlockChanged:
    label: str
    old_value: str
    new_value: str


@dataclass(frozen=True)
class BlockAppended:
    label: str
    fragment: str


@dataclass(frozen=True)
class BlockReplaced:
    label: str
    old_text: str
    new_text: str


@dataclass(frozen=True)
class BlockSizeWarning:
    """Raised before an over-limit write is trimmed and committed."""

    label: str
    attempted: int
    limit: int


@dataclass(frozen=True)
class TurnAppended:
    turn: Turn


@dataclass(frozen=True)
class BufferCompacted:
    session_id: str
    evicted: int
    kept: int
    summary: SummaryRecord


@dataclass(frozen=True)
class BufferCleared:
    session_id: str
    removed: int


@dataclass(frozen=True)
class SummaryAdded:
    summary: SummaryRecord


@dataclass(frozen=True)
class SessionStarted:
    session_id: str
    resumed: bool


@dataclass(frozen=True)
class SessionClosed:
    session_id: str
    turns: int
    summarized: bool


@dataclass(frozen=True)
class FactLearned:
    fact: LearnedFact


@dataclass(frozen=True)
class ThoughtRecorded:
    thought: Thought


MemoryEvent: TypeAlias = (
    MemoryInitialized
    | MemoryReset
    | BlockDefined
    | BlockChanged
    | BlockAppended
    | BlockReplaced
    | BlockSizeWarning
    | TurnAppended
    | BufferCompacted
    | BufferCleared
    | SummaryAdded
    | SessionStarted
    | SessionClosed
    | FactLearned
    | ThoughtRecorded
)

E = TypeVar("E")


class EventBus:
    """In-process dispatcher for memory events."""

    def __init__(self):
        self._handlers: dict[type, list[Callable[[object], None]]] = {}
        self._catch_all: list[Callable[[MemoryEvent], None]] = []

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register handler for one event class. Returns an unsubscribe callable."""
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: Callable[[MemoryEvent], None]) -> Callable[[], None]:
        """Register handler for every event."""
        self._catch_all.append(handler)

        def unsubscribe() -> None:
            if handler in self._catch_all:
                self._catch_all.remove(handler)

        return unsubscribe

    def publish(self, event: MemoryEvent) -> None:
        """Deliver event to typed subscribers first, then catch-all ones."""
        handlers = list(self._handlers.get(type(event), [])) + list(self._catch_all)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error for {type(event).__name__}: {e}", exc_info=True)

    def clear(self) -> None:
        """Drop all subscriptions."""
        self._handlers.clear()
        self._catch_all.clear()
