"""Tests for the memory manager and registry."""

import json

import pytest

from memblocks.core.events import MemoryInitialized, MemoryReset
from memblocks.core.types import Role
from memblocks.memory.blocks import PERSONA, PROJECT_FACTS, SUBJECT_INFO, TASK_STATE
from memblocks.memory.manager import DEFAULT_PERSONA, MemoryManager, MemoryRegistry
from memblocks.memory.session import SessionNotStartedError


@pytest.fixture
async def memory(backend, settings, clock) -> MemoryManager:
    manager = MemoryManager("alice", backend=backend, settings=settings, source_context="web", clock=clock)
    await manager.init()
    return manager


@pytest.mark.asyncio
async def test_default_blocks(memory: MemoryManager):
    assert memory.is_ready
    assert memory.blocks.labels() == [PERSONA, SUBJECT_INFO, TASK_STATE, PROJECT_FACTS]
    assert memory.blocks.get(PERSONA) == DEFAULT_PERSONA
    assert memory.blocks.get_block(TASK_STATE).limit == 1500
    assert memory.blocks.get_block(PROJECT_FACTS).limit == 3000


@pytest.mark.asyncio
async def test_init_is_idempotent(memory: MemoryManager):
    published = []
    memory.events.subscribe(MemoryInitialized, published.append)
    session_id = memory.session.session_id

    assert await memory.init() is memory
    assert memory.session.session_id == session_id
    assert published == []


@pytest.mark.asyncio
async def test_restored_blocks_keep_their_values(backend, settings, clock):
    first = MemoryManager("alice", backend=backend, settings=settings, clock=clock)
    await first.init()
    first.blocks.set(PERSONA, "Terse accountant.")
    await first.close()

    second = MemoryManager("alice", backend=backend, settings=settings, clock=clock)
    await second.init()

    assert second.blocks.get(PERSONA) == "Terse accountant."


@pytest.mark.asyncio
async def test_role_hint_written_once(backend, settings, clock):
    memory = MemoryManager("alice", backend=backend, settings=settings, clock=clock)
    await memory.init(role="bookkeeper", label="Alice")
    await memory.close()

    again = MemoryManager("alice", backend=backend, settings=settings, clock=clock)
    await again.init(role="bookkeeper", label="Alice")

    assert again.blocks.get(SUBJECT_INFO) == "Role: bookkeeper\nLabel: Alice"


@pytest.mark.asyncio
async def test_anonymous_subject(backend, settings):
    memory = MemoryManager(backend=backend, settings=settings)
    assert memory.subject_id == "anonymous"
    assert memory.persistence.key("core_blocks") == "memblocks_anonymous_core_blocks"


@pytest.mark.asyncio
async def test_stats(memory: MemoryManager):
    memory.recall.append(Role.SUBJECT, "my name is alice")
    memory.learning.process("my name is alice")

    stats = memory.stats()

    assert stats["block_count"] == 4
    assert stats["total_block_chars"] == len(DEFAULT_PERSONA) + len("Name: Alice")
    assert stats["turn_count"] == 1
    assert stats["session_id"] == memory.session.session_id
    assert stats["summary_count"] == 0
    assert stats["thought_count"] == 1
    assert stats["persistence_failures"] == 0
    assert stats["initialized"] is True


@pytest.mark.asyncio
async def test_export_is_json(memory: MemoryManager):
    memory.recall.append(Role.SUBJECT, "hello")
    snapshot = memory.export()

    assert set(snapshot) == {
        "version",
        "exported_at",
        "subject_id",
        "source_context",
        "session",
        "blocks",
        "recall",
        "summaries",
        "thoughts",
    }
    assert snapshot["subject_id"] == "alice"
    assert snapshot["recall"]["turns"][0]["content"] == "hello"
    assert json.loads(json.dumps(snapshot)) == snapshot


@pytest.mark.asyncio
async def test_reset(memory: MemoryManager, backend):
    resets = []
    memory.events.subscribe(MemoryReset, resets.append)
    old_session = memory.session.session_id
    memory.blocks.set(PERSONA, "Custom")
    memory.learning.process("call me alice")
    for i in range(5):
        memory.recall.append(Role.SUBJECT, f"turn {i}")

    memory.reset()
    await memory.flush()

    assert memory.blocks.get(PERSONA) == DEFAULT_PERSONA
    assert memory.blocks.get(SUBJECT_INFO) == ""
    assert memory.recall.count() == 0
    assert memory.summaries.count() == 0
    assert memory.thoughts.count() == 0
    assert memory.session.session_id != old_session
    assert resets == [MemoryReset(subject_id="alice", session_id=memory.session.session_id)]
    assert f"memblocks_alice_recall_{old_session}" not in backend.data


@pytest.mark.asyncio
async def test_registry_per_subject(backend, settings, clock):
    registry = MemoryRegistry(backend=backend, settings=settings, clock=clock)

    alice = await registry.get("alice")
    bob = await registry.get("bob", source_context="slack")
    anon = await registry.get(None)

    assert await registry.get("alice") is alice
    assert alice is not bob
    assert bob.source_context == "slack"
    assert anon.subject_id == "anonymous"
    assert registry.subjects() == ["alice", "bob", "anonymous"]
    assert all(m.is_ready for m in (alice, bob, anon))

    alice.blocks.set(PROJECT_FACTS, "Alice only")
    assert bob.blocks.get(PROJECT_FACTS) == ""
    await registry.close()


@pytest.mark.asyncio
async def test_append_before_init_keeps_stale_session(backend, settings, clock):
    """A stale session is still folded when a caller appends too early."""
    first = MemoryManager("alice", backend=backend, settings=settings, clock=clock)
    await first.init()
    for i in range(5):
        first.recall.append(Role.SUBJECT, f"invoice question {i}")
    await first.close()

    clock.advance(minutes=40)
    second = MemoryManager("alice", backend=backend, settings=settings, clock=clock)
    with pytest.raises(SessionNotStartedError):
        second.recall.append("user", "hello")

    await second.init()
    second.recall.append("user", "hello")

    assert second.summaries.count() == 1
    assert second.summaries.latest().turns_folded == 5
    assert second.recall.count() == 1


@pytest.mark.asyncio
async def test_init_with_offset_timestamps(backend, settings, clock):
    backend.data["memblocks_alice_last_session"] = json.dumps(
        {
            "session_id": "ses_old",
            "started_at": "2026-03-01T08:40:00+00:00",
            "last_touched_at": "2026-03-01T08:50:00+00:00",
        }
    )
    memory = MemoryManager("alice", backend=backend, settings=settings, clock=clock)

    await memory.init()

    assert memory.is_ready
    assert memory.session.session_id is not None
