"""Recall memory - turn log for the active session with auto-compaction."""

import math
from collections.abc import Iterator, Sequence
from datetime import datetime
from itertools import islice
from typing import TYPE_CHECKING

from memblocks.core.events import BufferCleared, BufferCompacted, EventBus, TurnAppended
from memblocks.core.logging import get_logger
from memblocks.core.types import Role, Turn
from memblocks.core.typing import Clock, JSONDict
from memblocks.memory.compactor import compact
from memblocks.memory.persistence import PersistenceAdapter
from memblocks.memory.summaries import SummaryArchive

if TYPE_CHECKING:
    from memblocks.memory.session import SessionController

logger = get_logger("memory.recall")


def recall_key(session_id: str) -> str:
    """Storage name for a session's turns."""
    return f"recall_{session_id}"


def estimate_weight(text: str, chars_per_weight: int = 4) -> int:
    """Rough payload size proxy."""
    return math.ceil(len(text or "") / chars_per_weight)


def parse_turns(data: JSONDict) -> list[Turn]:
    """Decode a stored recall snapshot, ordered by sequence id.

    Raises:
        KeyError, TypeError, ValueError: If the snapshot is malformed
    """
    turns = [Turn.from_dict(raw) for raw in data["turns"]]
    turns.sort(key=lambda t: t.sequence_id)
    return turns


class RecentTurns(Sequence[Turn]):
    """Read-only window over the tail of the turn log.

    Bounds are fixed when the view is created. Each iteration starts over,
    and later appends or compactions do not change what the view yields.
    """

    def __init__(self, turns: list[Turn], start: int, stop: int):
        self._turns = turns
        self._start = start
        self._stop = stop

    def __iter__(self) -> Iterator[Turn]:
        return islice(self._turns, self._start, self._stop)

    def __len__(self) -> int:
        return self._stop - self._start

    def __getitem__(self, index):
        return self._turns[self._start : self._stop][index]

    def __repr__(self) -> str:
        return f"RecentTurns({len(self)} turns)"


class TurnLog:
    """Append-only turn buffer for the current session.

    Reaching the summarize threshold compacts the buffer synchronously before
    append() returns, so callers never observe more than threshold - 1 turns.
    The backing list is swapped rather than mutated on compaction and clear,
    which keeps outstanding RecentTurns views stable.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        events: EventBus,
        archive: SummaryArchive,
        summarize_threshold: int = 80,
        keep_recent: int = 24,
        chars_per_weight: int = 4,
        source_context: str = "unknown",
        clock: Clock = datetime.now,
    ):
        if keep_recent >= summarize_threshold:
            raise ValueError("keep_recent must be below summarize_threshold")
        self._persistence = persistence
        self._events = events
        self._archive = archive
        self.summarize_threshold = summarize_threshold
        self.keep_recent = keep_recent
        self.chars_per_weight = chars_per_weight
        self.source_context = source_context
        self._clock = clock
        self._session: "SessionController | None" = None

        self.session_id = ""
        self.started_at: datetime | None = None
        self._turns: list[Turn] = []

    def bind_session(self, session: "SessionController") -> None:
        """Attach the session controller that guards and touches appends."""
        self._session = session

    def append(
        self,
        role: Role | str,
        content: str,
        source_context: str | None = None,
        speaker: str | None = None,
    ) -> Turn:
        """Record a turn. May compact the buffer before returning.

        Raises:
            SessionNotStartedError: If a bound session controller has not
                started yet
        """
        role = Role.parse(role)
        if self._session is not None:
            self._session.ensure_current()

        content = str(content or "")
        turn = Turn(
            sequence_id=self._turns[-1].sequence_id + 1 if self._turns else 0,
            role=role,
            content=content,
            timestamp=self._clock(),
            source_context=source_context or self.source_context,
            derived_weight=estimate_weight(content, self.chars_per_weight),
            speaker=speaker,
        )
        self._turns.append(turn)

        if len(self._turns) >= self.summarize_threshold:
            self._compact()
            if self._turns:
                turn = self._turns[-1]

        self._save()
        if self._session is not None:
            self._session.touch()
        self._events.publish(TurnAppended(turn=turn))
        logger.debug(f"Turn {turn.sequence_id} ({role.value}, {turn.derived_weight}w)")
        return turn

    def recent(self, n: int = 20) -> RecentTurns:
        """Last n turns, oldest first."""
        stop = len(self._turns)
        start = max(stop - max(n, 0), 0)
        return RecentTurns(self._turns, start, stop)

    def all(self) -> list[Turn]:
        return list(self._turns)

    def search(self, keyword: str) -> list[Turn]:
        """Turns whose content contains keyword, case-insensitive."""
        if not keyword:
            return []
        needle = keyword.lower()
        return [t for t in self._turns if needle in t.content.lower()]

    def count(self) -> int:
        return len(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def clear(self) -> None:
        """Empty the current session's buffer. The archive is untouched."""
        removed = len(self._turns)
        self._turns = []
        self._save()
        self._events.publish(BufferCleared(session_id=self.session_id, removed=removed))
        logger.info(f"Cleared {removed} turns from {self.session_id}")

    def reset(self, session_id: str, started_at: datetime) -> None:
        """Start an empty buffer for a new session."""
        self.session_id = session_id
        self.started_at = started_at
        self._turns = []
        self._save()

    def restore(self, session_id: str, started_at: datetime, data: JSONDict | None) -> None:
        """Load a resumed session's turns, falling back to empty on bad data."""
        self.session_id = session_id
        self.started_at = started_at
        self._turns = []
        if data is None:
            return
        try:
            turns = parse_turns(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed recall snapshot for {session_id}, starting empty: {e}")
            return
        self._turns = turns
        logger.debug(f"Restored {len(turns)} turns for {session_id}")

    def to_dict(self) -> JSONDict:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "turns": [t.to_dict() for t in self._turns],
        }

    def _compact(self) -> None:
        result = compact(
            self._turns,
            session_id=self.session_id,
            source_context=self.source_context,
            keep_recent=self.keep_recent,
            created_at=self._clock(),
        )
        self._archive.add(result.record)
        self._turns = result.kept
        self._events.publish(
            BufferCompacted(
                session_id=self.session_id,
                evicted=result.evicted,
                kept=len(result.kept),
                summary=result.record,
            )
        )
        logger.info(f"Auto-summarized {result.evicted} turns, kept {len(result.kept)}")

    def _save(self) -> None:
        if self.session_id:
            self._persistence.save(recall_key(self.session_id), self.to_dict())
