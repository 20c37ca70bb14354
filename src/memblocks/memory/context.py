"""
Context assembly - renders every store into one payload for a responder.

Section order is fixed: memory metadata, memory blocks, previous summaries,
recent conversation. Rendering reads state only and uses no wall-clock
values, so the same snapshot always renders to the same text.
"""

from memblocks.core.types import Role, Turn
from memblocks.memory.blocks import BlockStore
from memblocks.memory.recall import TurnLog
from memblocks.memory.session import SessionController
from memblocks.memory.summaries import SummaryArchive

SUBJECT_LABEL = "User"
RESPONDENT_LABEL = "Assistant"
SYSTEM_LABEL = "System"


def role_label(turn: Turn) -> str:
    """Display name for a turn's author."""
    if turn.role is Role.SUBJECT:
        return SUBJECT_LABEL
    if turn.role is Role.SYSTEM:
        return SYSTEM_LABEL
    return turn.speaker or RESPONDENT_LABEL


def render_turns(turns) -> str:
    """Role-labeled lines, one per turn."""
    return "\n".join(f"{role_label(t)}: {t.content}" for t in turns)


def _indent(text: str, prefix: str = "    ") -> str:
    return prefix + text.replace("\n", "\n" + prefix)


def assemble_context(
    blocks: BlockStore,
    summaries: SummaryArchive,
    recall: TurnLog,
    session: SessionController,
    subject_id: str,
    source_context: str,
    max_summaries: int = 2,
    recent_turns: int = 6,
) -> str:
    """Render all stores into one ordered text payload."""
    lines = ["<memory_metadata>"]
    lines.append(f"  subject_id: {subject_id}")
    lines.append(f"  source_context: {source_context}")
    lines.append(f"  session_id: {session.session_id or 'none'}")
    if session.current is not None:
        lines.append(f"  session_started: {session.current.started_at.isoformat(timespec='seconds')}")
    lines.append(f"  recall_count: {recall.count()}")
    lines.append(f"  summary_count: {summaries.count()}")

    all_blocks = blocks.all()
    lines.append(f"  core_blocks: {len(all_blocks)}")
    for block in all_blocks:
        usage = blocks.usage(block.label)
        modified = block.last_modified.isoformat(timespec="seconds")
        lines.append(
            f"    {block.label}: {usage.current}/{usage.limit} chars "
            f"({usage.percent}%, modified: {modified})"
        )
    lines.append("</memory_metadata>")

    lines.append("")
    lines.append("<memory_blocks>")
    for block in all_blocks:
        attrs = f'label="{block.label}" chars="{len(block.value)}/{block.limit}"'
        if block.read_only:
            attrs += ' read_only="true"'
        lines.append(f"  <block {attrs}>")
        if block.value:
            lines.append(_indent(block.value))
        lines.append("  </block>")
    lines.append("</memory_blocks>")

    summary_context = summaries.to_context(max_summaries)
    if summary_context:
        lines.append("")
        lines.append(summary_context)

    recent = recall.recent(recent_turns)
    if len(recent) > 0:
        lines.append("")
        lines.append("[Recent conversation]")
        lines.append(render_turns(recent))

    return "\n".join(lines)
