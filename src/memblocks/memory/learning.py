"""
Learning - derives facts from subject turns and writes them into blocks.

Rules are an ordered list of (pattern, extract, apply) strategies. The first
rule whose pattern matches wins and later rules are not consulted, even when
they would also match. Put more specific rules first; use add_rule() with a
position to insert new ones without touching the dispatch loop.
"""

import re
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from memblocks.core.events import EventBus, FactLearned, ThoughtRecorded
from memblocks.core.logging import get_logger
from memblocks.core.types import LearnedFact, Thought, WriteResult
from memblocks.core.typing import Clock
from memblocks.memory.blocks import PROJECT_FACTS, SUBJECT_INFO, BlockStore

logger = get_logger("memory.learning")

MAX_PREFERENCE_CHARS = 100
DEADLINE_LINE = re.compile(r"Deadline: .+")


class ThoughtLog:
    """Bounded inner monologue. Diagnostic only, never user-visible."""

    def __init__(self, events: EventBus, max_thoughts: int = 50, clock: Clock = datetime.now):
        self._events = events
        self._clock = clock
        self._log: deque[Thought] = deque(maxlen=max_thoughts)

    def think(self, text: str) -> Thought:
        thought = Thought(text=text, timestamp=self._clock())
        self._log.append(thought)
        self._events.publish(ThoughtRecorded(thought=thought))
        logger.debug(f"Thought: {text}")
        return thought

    def recent(self, n: int = 5) -> list[Thought]:
        if n <= 0:
            return []
        return list(self._log)[-n:]

    def all(self) -> list[Thought]:
        return list(self._log)

    def count(self) -> int:
        return len(self._log)

    def clear(self) -> None:
        self._log.clear()


@dataclass(frozen=True)
class FactRule:
    """One extraction strategy.

    extract(match, text) returns the fact value (empty string means no fact);
    apply(blocks, label, value) writes it and reports the block outcome.
    """

    kind: str
    label: str
    pattern: re.Pattern[str]
    extract: Callable[[re.Match[str], str], str]
    apply: Callable[[BlockStore, str, str], WriteResult]

    def match(self, text: str) -> str | None:
        found = self.pattern.search(text)
        if not found:
            return None
        value = self.extract(found, text).strip()
        return value or None


def append_line(blocks: BlockStore, label: str, line: str) -> WriteResult:
    """Append line on its own row."""
    current = blocks.get(label)
    prefix = "\n" if current else ""
    return blocks.append(label, prefix + line)


def _capitalize_words(text: str) -> str:
    return " ".join(word.capitalize() for word in text.split())


def _apply_name(blocks: BlockStore, label: str, value: str) -> WriteResult:
    return append_line(blocks, label, f"Name: {value}")


def _apply_note(blocks: BlockStore, label: str, value: str) -> WriteResult:
    return append_line(blocks, label, f"Note: {value}")


def _apply_preference(blocks: BlockStore, label: str, value: str) -> WriteResult:
    return append_line(blocks, label, f"Preference: {value}")


def _apply_deadline(blocks: BlockStore, label: str, value: str) -> WriteResult:
    """Rewrite the existing Deadline line, or add one when there is none."""
    new_line = f"Deadline: {value}"
    existing = DEADLINE_LINE.search(blocks.get(label) or "")
    if existing:
        return blocks.replace(label, existing.group(0), new_line)
    return append_line(blocks, label, new_line)


NAME_RULE = FactRule(
    kind="name",
    label=SUBJECT_INFO,
    pattern=re.compile(r"\b(?:my name is|i['’]m|i am|call me)\s+([a-z][a-z\s]{1,30})", re.IGNORECASE),
    extract=lambda m, text: _capitalize_words(m.group(1).lower()),
    apply=_apply_name,
)

REMEMBER_RULE = FactRule(
    kind="fact",
    label=SUBJECT_INFO,
    pattern=re.compile(r"\b(?:remember that|note that|keep in mind(?:\s+that)?)\s+(.+)", re.IGNORECASE),
    extract=lambda m, text: m.group(1),
    apply=_apply_note,
)

PREFERENCE_RULE = FactRule(
    kind="preference",
    label=SUBJECT_INFO,
    pattern=re.compile(r"\b(?:i prefer|i like|i don['’]t like|i hate)\s+(.+)", re.IGNORECASE),
    # Keep the verb so "I hate X" and "I like X" stay distinguishable
    extract=lambda m, text: text[m.start() :].strip()[:MAX_PREFERENCE_CHARS],
    apply=_apply_preference,
)

DEADLINE_RULE = FactRule(
    kind="deadline",
    label=PROJECT_FACTS,
    pattern=re.compile(
        r"\b(?:deadline is|deadline changed to|due date(?:\s+is)?|due by)\s+(.+)", re.IGNORECASE
    ),
    extract=lambda m, text: m.group(1),
    apply=_apply_deadline,
)

DEFAULT_RULES: tuple[FactRule, ...] = (NAME_RULE, REMEMBER_RULE, PREFERENCE_RULE, DEADLINE_RULE)


class FactExtractor:
    """Applies the first matching rule to a subject turn."""

    def __init__(
        self,
        blocks: BlockStore,
        events: EventBus,
        thoughts: ThoughtLog,
        rules: tuple[FactRule, ...] | list[FactRule] = DEFAULT_RULES,
    ):
        self._blocks = blocks
        self._events = events
        self._thoughts = thoughts
        self._rules: list[FactRule] = list(rules)

    @property
    def rules(self) -> list[FactRule]:
        return list(self._rules)

    def add_rule(self, rule: FactRule, position: int | None = None) -> None:
        """Insert a rule; appended last unless a position is given."""
        if position is None:
            self._rules.append(rule)
        else:
            self._rules.insert(position, rule)

    def process(self, text: str) -> LearnedFact | None:
        """Learn at most one fact from a subject turn."""
        if not text or not text.strip():
            return None

        for rule in self._rules:
            value = rule.match(text)
            if value is None:
                continue

            result = rule.apply(self._blocks, rule.label, value)
            fact = LearnedFact(kind=rule.kind, value=value, label=rule.label, result=result)
            self._thoughts.think(f"Learned from user: {rule.kind}={value!r} -> {rule.label} ({result.value})")
            self._events.publish(FactLearned(fact=fact))
            logger.info(f"Learned {rule.kind} into '{rule.label}' ({result.value})")
            return fact

        return None
