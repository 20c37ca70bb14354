"""Tests for session resume, expiry and rollover."""

import json
import re
from datetime import timedelta

import pytest

from memblocks.core.events import EventBus, SessionClosed, SessionStarted
from memblocks.core.types import Role, Session, SessionState, Turn
from memblocks.memory.base import InMemoryBackend
from memblocks.memory.persistence import PersistenceAdapter
from memblocks.memory.recall import TurnLog
from memblocks.memory.session import SessionController, SessionNotStartedError, generate_session_id
from memblocks.memory.summaries import SummaryArchive

SESSION_KEY = "memblocks_alice_last_session"


def recall_storage_key(session_id: str) -> str:
    return f"memblocks_alice_recall_{session_id}"


class Stack:
    """Archive, turn log and session controller wired together."""

    def __init__(self, backend: InMemoryBackend, clock):
        self.events = EventBus()
        self.persistence = PersistenceAdapter(backend, "alice")
        self.archive = SummaryArchive(self.persistence, self.events)
        self.recall = TurnLog(self.persistence, self.events, self.archive, source_context="web", clock=clock)
        self.session = SessionController(
            self.persistence,
            self.events,
            self.recall,
            self.archive,
            inactivity_timeout=timedelta(minutes=30),
            clock=clock,
        )


def seed_session(backend: InMemoryBackend, clock, idle_minutes: int, turn_count: int) -> str:
    """Store a prior session that was last touched idle_minutes ago."""
    touched = clock() - timedelta(minutes=idle_minutes)
    started = touched - timedelta(minutes=10)
    session = Session(session_id="ses_prior_abc123", started_at=started, last_touched_at=touched)
    turns = [
        Turn(
            sequence_id=i,
            role=Role.SUBJECT if i % 2 == 0 else Role.RESPONDENT,
            content=f"message {i} about the invoice",
            timestamp=started + timedelta(minutes=i),
            source_context="web",
            derived_weight=7,
        )
        for i in range(turn_count)
    ]
    backend.data[SESSION_KEY] = json.dumps(session.to_dict())
    backend.data[recall_storage_key(session.session_id)] = json.dumps(
        {
            "session_id": session.session_id,
            "started_at": started.isoformat(),
            "turns": [t.to_dict() for t in turns],
        }
    )
    return session.session_id


def test_generate_session_id_format(clock):
    session_id = generate_session_id(clock())
    assert re.fullmatch(r"ses_[0-9a-z]+_[0-9a-z]{6}", session_id)
    assert generate_session_id(clock()) != session_id


@pytest.mark.asyncio
async def test_first_start_opens_session(backend, clock):
    stack = Stack(backend, clock)
    started = []
    stack.events.subscribe(SessionStarted, started.append)

    session = await stack.session.start()

    assert stack.session.state is SessionState.ACTIVE
    assert session.started_at == clock()
    assert stack.recall.session_id == session.session_id
    assert started == [SessionStarted(session_id=session.session_id, resumed=False)]


@pytest.mark.asyncio
async def test_stale_session_is_folded(backend, clock):
    """A session idle past the timeout becomes one summary."""
    old_id = seed_session(backend, clock, idle_minutes=31, turn_count=5)
    stack = Stack(backend, clock)
    closed = []
    stack.events.subscribe(SessionClosed, closed.append)

    session = await stack.session.start()
    await stack.persistence.flush()

    assert session.session_id != old_id
    assert stack.recall.count() == 0
    assert stack.archive.count() == 1
    record = stack.archive.latest()
    assert record.turns_folded == 5
    assert record.session_id == old_id
    assert "invoices" in record.topics
    assert recall_storage_key(old_id) not in backend.data
    assert json.loads(backend.data[SESSION_KEY])["session_id"] == session.session_id
    assert closed == [SessionClosed(session_id=old_id, turns=5, summarized=True)]


@pytest.mark.asyncio
async def test_fresh_session_is_resumed(backend, clock):
    old_id = seed_session(backend, clock, idle_minutes=5, turn_count=3)
    stack = Stack(backend, clock)
    started = []
    stack.events.subscribe(SessionStarted, started.append)

    session = await stack.session.start()

    assert session.session_id == old_id
    assert stack.recall.count() == 3
    assert stack.archive.count() == 0
    assert session.last_touched_at == clock()
    assert started == [SessionStarted(session_id=old_id, resumed=True)]


@pytest.mark.asyncio
async def test_exactly_timeout_is_stale(backend, clock):
    old_id = seed_session(backend, clock, idle_minutes=30, turn_count=4)
    stack = Stack(backend, clock)

    session = await stack.session.start()

    assert session.session_id != old_id
    assert stack.archive.count() == 1


@pytest.mark.asyncio
async def test_short_session_not_summarized(backend, clock):
    """Sessions with two or fewer turns are dropped without a summary."""
    old_id = seed_session(backend, clock, idle_minutes=45, turn_count=2)
    stack = Stack(backend, clock)
    closed = []
    stack.events.subscribe(SessionClosed, closed.append)

    await stack.session.start()
    await stack.persistence.flush()

    assert stack.archive.count() == 0
    assert recall_storage_key(old_id) not in backend.data
    assert closed[0].summarized is False


@pytest.mark.asyncio
async def test_malformed_session_starts_fresh(backend, clock):
    backend.data[SESSION_KEY] = "{not json"
    stack = Stack(backend, clock)

    session = await stack.session.start()

    assert session.session_id.startswith("ses_")
    assert stack.archive.count() == 0
    assert stack.recall.count() == 0


@pytest.mark.asyncio
async def test_offset_timestamps_are_loaded(backend, clock):
    """Stored timestamps with a UTC offset do not break start()."""
    old_id = seed_session(backend, clock, idle_minutes=0, turn_count=4)
    backend.data[SESSION_KEY] = json.dumps(
        {
            "session_id": old_id,
            "started_at": "2026-02-27T08:00:00+00:00",
            "last_touched_at": "2026-02-27T08:50:00+00:00",
        }
    )
    stack = Stack(backend, clock)

    session = await stack.session.start()

    assert session.session_id != old_id
    assert stack.session.state is SessionState.ACTIVE
    assert stack.archive.latest().turns_folded == 4


@pytest.mark.asyncio
async def test_incomplete_session_record_starts_fresh(backend, clock):
    backend.data[SESSION_KEY] = json.dumps({"session_id": "ses_x"})
    stack = Stack(backend, clock)

    session = await stack.session.start()

    assert session.session_id != "ses_x"


@pytest.mark.asyncio
async def test_append_rolls_over_idle_session(backend, clock):
    """A long-running process notices expiry on the next append."""
    stack = Stack(backend, clock)
    first = await stack.session.start()
    for i in range(3):
        stack.recall.append(Role.SUBJECT, f"question {i}")

    clock.advance(minutes=30)
    turn = stack.recall.append(Role.SUBJECT, "back again")

    assert stack.session.session_id != first.session_id
    assert stack.archive.count() == 1
    assert stack.archive.latest().turns_folded == 3
    assert stack.recall.count() == 1
    assert turn.sequence_id == 0


@pytest.mark.asyncio
async def test_activity_keeps_session_alive(backend, clock):
    stack = Stack(backend, clock)
    first = await stack.session.start()

    for _ in range(4):
        clock.advance(minutes=20)
        stack.recall.append(Role.SUBJECT, "still here")

    assert stack.session.session_id == first.session_id
    assert stack.recall.count() == 4
    assert stack.archive.count() == 0


@pytest.mark.asyncio
async def test_restart_discards_without_summary(backend, clock):
    stack = Stack(backend, clock)
    first = await stack.session.start()
    for i in range(5):
        stack.recall.append(Role.SUBJECT, f"turn {i}")

    second = stack.session.restart()
    await stack.persistence.flush()

    assert second.session_id != first.session_id
    assert stack.archive.count() == 0
    assert stack.recall.count() == 0
    assert recall_storage_key(first.session_id) not in backend.data


@pytest.mark.asyncio
async def test_append_before_start_is_rejected(backend, clock):
    """The stored session stays untouched until start() has folded it."""
    old_id = seed_session(backend, clock, idle_minutes=40, turn_count=5)
    stored = backend.data[SESSION_KEY]
    stack = Stack(backend, clock)

    with pytest.raises(SessionNotStartedError):
        stack.recall.append(Role.SUBJECT, "hello")
    await stack.persistence.flush()

    assert stack.recall.count() == 0
    assert backend.data[SESSION_KEY] == stored

    session = await stack.session.start()

    assert session.session_id != old_id
    assert stack.archive.latest().turns_folded == 5
