"""
Core module - configuration, logging, shared types, events.

Components:
- config: Settings management via pydantic-settings
- types: Shared records (Block, Turn, SummaryRecord, Session)
- events: Typed publish/subscribe for memory changes
- logging: Structured logging setup
"""

from memblocks.core.config import Settings
from memblocks.core.events import EventBus
from memblocks.core.types import Role, WriteResult

__all__ = ["Settings", "EventBus", "Role", "WriteResult"]
