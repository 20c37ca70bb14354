"""Core memory blocks - labeled, size-limited, always-visible context."""

import dataclasses
from datetime import datetime

from memblocks.core.events import (
    BlockAppended,
    BlockChanged,
    BlockDefined,
    BlockReplaced,
    BlockSizeWarning,
    EventBus,
)
from memblocks.core.logging import get_logger
from memblocks.core.types import Block, BlockUsage, WriteResult
from memblocks.core.typing import Clock, JSONDict
from memblocks.memory.persistence import PersistenceAdapter

logger = get_logger("memory.blocks")

STORAGE_NAME = "core_blocks"

# Standard block labels
PERSONA = "persona"
SUBJECT_INFO = "subject_info"
TASK_STATE = "task_state"
PROJECT_FACTS = "project_facts"


class BlockStore:
    """Mapping of label -> Block with hard character limits.

    Invariant: len(block.value) <= block.limit after every mutation.
    set() truncates the tail, append() drops the oldest text from the front,
    replace() refuses instead of trimming.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        events: EventBus,
        default_limit: int = 2000,
        clock: Clock = datetime.now,
    ):
        self._persistence = persistence
        self._events = events
        self._default_limit = default_limit
        self._clock = clock
        self._blocks: dict[str, Block] = {}

    def define(
        self,
        label: str,
        value: str = "",
        limit: int | None = None,
        read_only: bool = False,
        description: str = "",
    ) -> Block:
        """Define a block. Existing labels are returned untouched."""
        existing = self._blocks.get(label)
        if existing is not None:
            return existing

        limit = self._default_limit if limit is None else limit
        if limit <= 0:
            raise ValueError(f"Block limit must be positive, got {limit}")

        value = str(value or "")
        if len(value) > limit:
            logger.warning(f"Initial value for '{label}' exceeds limit ({len(value)}/{limit}). Truncating.")
            value = value[:limit]

        now = self._clock()
        block = Block(
            label=label,
            value=value,
            limit=limit,
            read_only=read_only,
            description=description,
            created_at=now,
            last_modified=now,
        )
        self._blocks[label] = block
        self._save()
        # Snapshot so subscribers never see later edits
        self._events.publish(BlockDefined(block=dataclasses.replace(block)))
        logger.debug(f"Defined block '{label}' (limit {limit})")
        return block

    def get(self, label: str) -> str | None:
        """Get a block's current value."""
        block = self._blocks.get(label)
        return block.value if block else None

    def get_block(self, label: str) -> Block | None:
        """Get full block record."""
        return self._blocks.get(label)

    def labels(self) -> list[str]:
        """All labels in definition order."""
        return list(self._blocks)

    def all(self) -> list[Block]:
        """All blocks in definition order."""
        return list(self._blocks.values())

    def __contains__(self, label: str) -> bool:
        return label in self._blocks

    def __len__(self) -> int:
        return len(self._blocks)

    def set(self, label: str, value: str) -> WriteResult:
        """Replace the whole value, truncating to the limit."""
        block = self._writable(label)
        if block is None:
            return WriteResult.REFUSED

        value = str(value or "")
        if len(value) > block.limit:
            self._warn_size(block, len(value), "Truncating")
            value = value[: block.limit]

        old_value = block.value
        self._commit(block, value)
        self._events.publish(BlockChanged(label=label, old_value=old_value, new_value=value))
        return WriteResult.OK

    def append(self, label: str, fragment: str) -> WriteResult:
        """Append text, dropping the oldest characters when over the limit."""
        block = self._writable(label)
        if block is None:
            return WriteResult.REFUSED

        fragment = str(fragment or "")
        new_value = block.value + fragment
        if len(new_value) > block.limit:
            self._warn_size(block, len(new_value), "Trimming old content")
            new_value = new_value[len(new_value) - block.limit :]

        self._commit(block, new_value)
        self._events.publish(BlockAppended(label=label, fragment=fragment))
        return WriteResult.OK

    def replace(self, label: str, old_text: str, new_text: str) -> WriteResult:
        """Replace the first literal occurrence of old_text."""
        block = self._writable(label)
        if block is None:
            return WriteResult.REFUSED

        if not old_text or old_text not in block.value:
            logger.debug(f"Replace target not found in '{label}'")
            return WriteResult.NO_MATCH

        new_value = block.value.replace(old_text, new_text, 1)
        if len(new_value) > block.limit:
            logger.warning(
                f"Replace would exceed limit for '{label}' ({len(new_value)}/{block.limit}). Refused."
            )
            return WriteResult.REFUSED

        self._commit(block, new_value)
        self._events.publish(BlockReplaced(label=label, old_text=old_text, new_text=new_text))
        return WriteResult.OK

    def usage(self, label: str) -> BlockUsage | None:
        """Character usage for a block."""
        block = self._blocks.get(label)
        if block is None:
            return None
        current = len(block.value)
        return BlockUsage(
            current=current,
            limit=block.limit,
            percent=round(current / block.limit * 100),
        )

    def total_chars(self) -> int:
        return sum(len(b.value) for b in self._blocks.values())

    def clear(self) -> None:
        """Drop every block (reset only)."""
        self._blocks.clear()
        self._persistence.remove(STORAGE_NAME)

    def to_dict(self) -> JSONDict:
        return {label: block.to_dict() for label, block in self._blocks.items()}

    def restore(self, data: JSONDict | None) -> None:
        """Load blocks from a stored snapshot, skipping malformed entries."""
        self._blocks.clear()
        if data is None:
            return
        if not isinstance(data, dict):
            logger.warning(f"Malformed block snapshot ({type(data).__name__}), using defaults")
            return
        for label, raw in data.items():
            try:
                block = Block.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed block '{label}': {e}")
                continue
            self._blocks[block.label] = block
        logger.debug(f"Restored {len(self._blocks)} blocks")

    def _writable(self, label: str) -> Block | None:
        block = self._blocks.get(label)
        if block is None:
            logger.warning(f"Block '{label}' not defined. Call define() first.")
            return None
        if block.read_only:
            logger.warning(f"Block '{label}' is read-only.")
            return None
        return block

    def _warn_size(self, block: Block, attempted: int, action: str) -> None:
        logger.warning(f"Block '{block.label}' exceeds limit ({attempted}/{block.limit}). {action}.")
        self._events.publish(BlockSizeWarning(label=block.label, attempted=attempted, limit=block.limit))

    def _commit(self, block: Block, value: str) -> None:
        block.value = value
        block.last_modified = self._clock()
        block.edit_count += 1
        self._save()

    def _save(self) -> None:
        self._persistence.save(STORAGE_NAME, self.to_dict())
