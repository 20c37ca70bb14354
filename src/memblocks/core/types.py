"""
Shared type definitions.

Core records used across the memory stores. All of them serialize to plain
JSON-compatible dicts for the persistence adapter.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from memblocks.core.typing import JSONDict


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO timestamp as naive local time.

    Records compare against a naive clock, so offset-aware values are
    converted to local time and stripped of their tzinfo.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


class Role(Enum):
    SUBJECT = "subject"
    RESPONDENT = "respondent"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        """Accept enum members, canonical values and common chat aliases."""
        if isinstance(value, Role):
            return value
        normalized = str(value).strip().lower()
        aliases = {
            "user": cls.SUBJECT,
            "human": cls.SUBJECT,
            "assistant": cls.RESPONDENT,
            "bot": cls.RESPONDENT,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


class WriteResult(Enum):
    """Outcome of a block mutation. Only OK is truthy."""

    OK = "ok"
    REFUSED = "refused"
    NO_MATCH = "no_match"

    def __bool__(self) -> bool:
        return self is WriteResult.OK


class SessionState(Enum):
    ACTIVE = "active"
    EXPIRING = "expiring"
    CLOSED = "closed"


@dataclass
class Block:
    """Labeled, size-bounded piece of always-visible context."""

    label: str
    value: str
    limit: int
    read_only: bool = False
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    last_modified: datetime = field(default_factory=datetime.now)
    edit_count: int = 0

    def to_dict(self) -> JSONDict:
        return {
            "label": self.label,
            "value": self.value,
            "limit": self.limit,
            "read_only": self.read_only,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "edit_count": self.edit_count,
        }

    @classmethod
    def from_dict(cls, data: JSONDict) -> "Block":
        limit = int(data["limit"])
        if limit <= 0:
            raise ValueError(f"Invalid block limit: {limit}")
        return cls(
            label=str(data["label"]),
            # Stored state may predate a lower limit
            value=str(data.get("value", ""))[:limit],
            limit=limit,
            read_only=bool(data.get("read_only", False)),
            description=str(data.get("description", "")),
            created_at=parse_timestamp(data["created_at"]),
            last_modified=parse_timestamp(data["last_modified"]),
            edit_count=int(data.get("edit_count", 0)),
        )


@dataclass(frozen=True)
class BlockUsage:
    current: int
    limit: int
    percent: int


@dataclass
class Turn:
    """One message in the conversation."""

    sequence_id: int
    role: Role
    content: str
    timestamp: datetime
    source_context: str
    derived_weight: int
    speaker: str | None = None  # display name for respondent turns

    def to_dict(self) -> JSONDict:
        return {
            "sequence_id": self.sequence_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "source_context": self.source_context,
            "derived_weight": self.derived_weight,
            "speaker": self.speaker,
        }

    @classmethod
    def from_dict(cls, data: JSONDict) -> "Turn":
        return cls(
            sequence_id=int(data["sequence_id"]),
            role=Role.parse(data["role"]),
            content=str(data["content"]),
            timestamp=parse_timestamp(data["timestamp"]),
            source_context=str(data.get("source_context", "unknown")),
            derived_weight=int(data.get("derived_weight", 0)),
            speaker=data.get("speaker"),
        )


@dataclass(frozen=True)
class SummaryRecord:
    """Extractive digest of a folded run of turns. Never mutated."""

    session_id: str
    created_at: datetime
    turns_folded: int
    text: str
    topics: tuple[str, ...]
    source_context: str

    def to_dict(self) -> JSONDict:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "turns_folded": self.turns_folded,
            "text": self.text,
            "topics": list(self.topics),
            "source_context": self.source_context,
        }

    @classmethod
    def from_dict(cls, data: JSONDict) -> "SummaryRecord":
        return cls(
            session_id=str(data["session_id"]),
            created_at=parse_timestamp(data["created_at"]),
            turns_folded=int(data["turns_folded"]),
            text=str(data["text"]),
            topics=tuple(str(t) for t in data.get("topics", [])),
            source_context=str(data.get("source_context", "unknown")),
        )


@dataclass
class Session:
    """A bounded period of continuous activity for one subject."""

    session_id: str
    started_at: datetime
    last_touched_at: datetime

    def to_dict(self) -> JSONDict:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "last_touched_at": self.last_touched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: JSONDict) -> "Session":
        return cls(
            session_id=str(data["session_id"]),
            started_at=parse_timestamp(data["started_at"]),
            last_touched_at=parse_timestamp(data["last_touched_at"]),
        )


@dataclass(frozen=True)
class LearnedFact:
    """Fact derived from a subject turn by the fact extractor."""

    kind: str  # "name" | "fact" | "preference" | "deadline" | custom rule kinds
    value: str
    label: str  # target block
    result: WriteResult

    def to_dict(self) -> JSONDict:
        return {
            "kind": self.kind,
            "value": self.value,
            "label": self.label,
            "result": self.result.value,
        }


@dataclass(frozen=True)
class Thought:
    """Internal diagnostic note, never shown to the subject."""

    text: str
    timestamp: datetime

    def to_dict(self) -> JSONDict:
        return {"text": self.text, "timestamp": self.timestamp.isoformat()}
