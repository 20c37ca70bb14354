"""Tests for context assembly."""

import pytest

from memblocks.core.types import Role
from memblocks.memory.blocks import PROJECT_FACTS, SUBJECT_INFO
from memblocks.memory.compactor import summarize
from memblocks.memory.context import assemble_context, render_turns, role_label
from memblocks.memory.manager import MemoryManager


@pytest.fixture
async def memory(backend, settings, clock) -> MemoryManager:
    manager = MemoryManager("alice", backend=backend, settings=settings, source_context="web", clock=clock)
    await manager.init()
    return manager


def add_summaries(memory: MemoryManager, count: int) -> None:
    for i in range(count):
        turns = [memory.recall.append(Role.SUBJECT, f"summary source {i}")]
        memory.summaries.add(
            summarize(turns, session_id=f"ses_{i}", source_context="web", created_at=memory.recall.started_at)
        )
    memory.recall.clear()


async def test_sections_in_order(memory: MemoryManager):
    memory.blocks.set(SUBJECT_INFO, "Name: Alice")
    add_summaries(memory, 1)
    memory.recall.append(Role.SUBJECT, "hello")
    memory.recall.append(Role.RESPONDENT, "hi Alice")

    context = memory.assemble_context()

    meta = context.index("<memory_metadata>")
    blocks = context.index("<memory_blocks>")
    summaries = context.index("[Previous conversation summaries]")
    recent = context.index("[Recent conversation]")
    assert meta < blocks < summaries < recent


async def test_metadata_header(memory: MemoryManager):
    context = memory.assemble_context()

    assert "  subject_id: alice" in context
    assert "  source_context: web" in context
    assert f"  session_id: {memory.session.session_id}" in context
    assert "  recall_count: 0" in context
    assert "  summary_count: 0" in context
    assert "  core_blocks: 4" in context
    assert "    project_facts: 0/3000 chars (0%, modified: 2026-03-01T09:00:00)" in context


async def test_blocks_rendered_with_usage(memory: MemoryManager):
    memory.blocks.set(PROJECT_FACTS, "Deadline: Friday\nBudget: small")
    context = memory.assemble_context()

    assert '<block label="project_facts" chars="30/3000">' in context
    assert "    Deadline: Friday\n    Budget: small" in context


async def test_idempotent(memory: MemoryManager, clock):
    memory.recall.append(Role.SUBJECT, "what is due?")
    first = memory.assemble_context()
    clock.advance(seconds=5)
    assert memory.assemble_context() == first


async def test_does_not_mutate(memory: MemoryManager):
    for i in range(10):
        memory.recall.append(Role.SUBJECT, f"turn {i}")
    before = memory.export()
    memory.assemble_context()
    assert memory.export() == before


async def test_only_recent_turns(memory: MemoryManager):
    for i in range(10):
        memory.recall.append(Role.SUBJECT, f"turn {i}")

    context = memory.assemble_context()
    recent = context.split("[Recent conversation]\n", 1)[1]

    assert recent.splitlines() == [f"User: turn {i}" for i in range(4, 10)]


async def test_only_latest_summaries(memory: MemoryManager):
    add_summaries(memory, 4)
    context = memory.assemble_context()

    assert "summary source 3" in context
    assert "summary source 2" in context
    assert "summary source 1" not in context
    assert "summary source 0" not in context
    assert "  summary_count: 4" in context


async def test_empty_sections_omitted(memory: MemoryManager):
    context = memory.assemble_context()
    assert "[Previous conversation summaries]" not in context
    assert "[Recent conversation]" not in context


async def test_role_labels(memory: MemoryManager):
    user = memory.recall.append(Role.SUBJECT, "hi")
    bot = memory.recall.append(Role.RESPONDENT, "hello")
    named = memory.recall.append(Role.RESPONDENT, "hey", speaker="Ledger Bot")
    system = memory.recall.append(Role.SYSTEM, "note")

    assert role_label(user) == "User"
    assert role_label(bot) == "Assistant"
    assert role_label(named) == "Ledger Bot"
    assert role_label(system) == "System"
    assert render_turns([user, named]) == "User: hi\nLedger Bot: hey"


async def test_function_matches_manager(memory: MemoryManager, settings):
    memory.recall.append(Role.SUBJECT, "hello")
    direct = assemble_context(
        memory.blocks,
        memory.summaries,
        memory.recall,
        memory.session,
        subject_id="alice",
        source_context="web",
        max_summaries=settings.context_summaries,
        recent_turns=settings.context_recent_turns,
    )
    assert direct == memory.assemble_context()
