"""Summary archive - bounded ring buffer of compacted history."""

from collections import deque

from memblocks.core.events import EventBus, SummaryAdded
from memblocks.core.logging import get_logger
from memblocks.core.types import SummaryRecord
from memblocks.core.typing import JSONDict
from memblocks.memory.persistence import PersistenceAdapter

logger = get_logger("memory.summaries")

STORAGE_NAME = "summaries"


class SummaryArchive:
    """Oldest-first list of summary records capped at max_summaries.

    Adding past the cap silently drops the oldest record; there is no
    re-compaction of summaries.
    """

    def __init__(self, persistence: PersistenceAdapter, events: EventBus, max_summaries: int = 20):
        self._persistence = persistence
        self._events = events
        self.max_summaries = max_summaries
        self._records: deque[SummaryRecord] = deque(maxlen=max_summaries)

    def add(self, record: SummaryRecord) -> None:
        """Append a record, evicting the oldest when full."""
        if len(self._records) == self.max_summaries:
            logger.debug(f"Summary archive full, dropping oldest ({self._records[0].session_id})")
        self._records.append(record)
        self._save()
        self._events.publish(SummaryAdded(summary=record))
        logger.info(f"Added summary for {record.session_id} ({record.turns_folded} turns folded)")

    def all(self) -> list[SummaryRecord]:
        return list(self._records)

    def latest(self) -> SummaryRecord | None:
        return self._records[-1] if self._records else None

    def count(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def to_context(self, max_records: int = 3) -> str:
        """Render the newest records for context injection. Empty string if none."""
        if max_records <= 0 or not self._records:
            return ""
        recent = list(self._records)[-max_records:]
        lines = ["[Previous conversation summaries]"]
        for record in recent:
            date = record.created_at.strftime("%Y-%m-%d")
            lines.append(f"- {date} ({record.source_context}): {record.text}")
        return "\n".join(lines)

    def clear(self) -> None:
        self._records.clear()
        self._persistence.remove(STORAGE_NAME)

    def to_list(self) -> list[JSONDict]:
        return [record.to_dict() for record in self._records]

    def restore(self, data: list[JSONDict] | None) -> None:
        """Load records from a stored snapshot, skipping malformed entries."""
        self._records.clear()
        if data is None:
            return
        if not isinstance(data, list):
            logger.warning(f"Malformed summary snapshot ({type(data).__name__}), using defaults")
            return
        for raw in data:
            try:
                self._records.append(SummaryRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed summary: {e}")

    def _save(self) -> None:
        self._persistence.save(STORAGE_NAME, self.to_list())
