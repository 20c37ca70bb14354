"""
Compactor - folds runs of turns into extractive summary records.

No LLM involved: a summary is built from turn counts, a fixed-vocabulary
topic scan and the first/last subject turns as bookends. Everything here is
pure; callers decide what to do with the record and the kept turns.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from memblocks.core.types import Role, SummaryRecord, Turn

BOOKEND_CHARS = 80
MAX_TOPICS = 5

# Curated keyword -> topic vocabulary
TOPIC_KEYWORDS: dict[str, str] = {
    "deduction": "deductions",
    "deductions": "deductions",
    "write-off": "deductions",
    "income": "income",
    "revenue": "income",
    "payment": "income",
    "tax": "tax prep",
    "taxes": "tax prep",
    "filing": "tax prep",
    "irs": "tax prep",
    "bot": "bots",
    "bots": "bots",
    "fleet": "bots",
    "client": "clients",
    "clients": "clients",
    "customer": "clients",
    "qbo": "QuickBooks",
    "quickbooks": "QuickBooks",
    "bank": "bank records",
    "statement": "bank records",
    "invoice": "invoices",
    "invoices": "invoices",
    "order": "orders",
    "orders": "orders",
    "ledger": "ledger",
    "transaction": "transactions",
    "transactions": "transactions",
    "memory": "memory system",
    "recall": "memory system",
    "dashboard": "dashboard",
    "progress": "progress",
    "deadline": "deadline",
    "schedule": "schedule",
    "meeting": "schedule",
    "missing": "missing data",
    "gap": "missing data",
    "help": "support",
    "ticket": "support",
    "bug": "bugs",
    "error": "bugs",
    "deploy": "deployment",
    "release": "deployment",
    "dns": "DNS/network",
    "network": "DNS/network",
}

_STRIP_CHARS = ".,!?;:\"'()[]{}<>"


@dataclass(frozen=True)
class Compaction:
    """Result of compacting a buffer: the summary plus the re-indexed tail."""

    record: SummaryRecord
    kept: list[Turn]

    @property
    def evicted(self) -> int:
        return self.record.turns_folded


def extract_topics(
    turns: Sequence[Turn],
    vocabulary: Mapping[str, str] = TOPIC_KEYWORDS,
    limit: int = MAX_TOPICS,
) -> list[str]:
    """Top topics by keyword frequency, ties broken by first appearance."""
    counts: dict[str, int] = {}
    for turn in turns:
        for word in turn.content.lower().split():
            topic = vocabulary.get(word.strip(_STRIP_CHARS))
            if topic:
                counts[topic] = counts.get(topic, 0) + 1
    # sorted() is stable, so dict insertion order settles ties
    ranked = sorted(counts, key=lambda topic: -counts[topic])
    return ranked[:limit]


def _bookend(text: str) -> str:
    if len(text) > BOOKEND_CHARS:
        return text[:BOOKEND_CHARS] + "..."
    return text


def build_summary(turns: Sequence[Turn], topics: Sequence[str] | None = None) -> str:
    """Extractive summary text for a run of turns."""
    if not turns:
        return "No turns."

    subject_turns = [t for t in turns if t.role is Role.SUBJECT]
    if topics is None:
        topics = extract_topics(turns)

    parts = [f"Session had {len(turns)} turns ({len(subject_turns)} from user)."]
    if topics:
        parts.append(f"Topics discussed: {', '.join(topics)}.")

    if subject_turns:
        parts.append(f'Started with: "{_bookend(subject_turns[0].content)}"')
        if len(subject_turns) > 1:
            parts.append(f'Ended with: "{_bookend(subject_turns[-1].content)}"')

    return " ".join(parts)


def summarize(
    turns: Sequence[Turn],
    *,
    session_id: str,
    source_context: str,
    created_at: datetime | None = None,
    vocabulary: Mapping[str, str] = TOPIC_KEYWORDS,
) -> SummaryRecord:
    """Fold an entire run of turns into one summary record."""
    topics = extract_topics(turns, vocabulary)
    return SummaryRecord(
        session_id=session_id,
        created_at=created_at or datetime.now(),
        turns_folded=len(turns),
        text=build_summary(turns, topics),
        topics=tuple(topics),
        source_context=source_context,
    )


def compact(
    turns: Sequence[Turn],
    *,
    session_id: str,
    source_context: str,
    keep_recent: int = 24,
    created_at: datetime | None = None,
    vocabulary: Mapping[str, str] = TOPIC_KEYWORDS,
) -> Compaction:
    """Summarize everything but the newest keep_recent turns.

    The kept turns are copies re-indexed from 0; the input is not modified.
    """
    if keep_recent < 0:
        raise ValueError(f"keep_recent must be >= 0, got {keep_recent}")

    split = max(len(turns) - keep_recent, 0)
    evicted = turns[:split]
    kept = [replace(turn, sequence_id=i) for i, turn in enumerate(turns[split:])]

    record = summarize(
        evicted,
        session_id=session_id,
        source_context=source_context,
        created_at=created_at,
        vocabulary=vocabulary,
    )
    return Compaction(record=record, kept=kept)
