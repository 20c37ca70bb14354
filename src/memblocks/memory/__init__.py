"""
Memory module - bounded conversational memory.

Layers:
- blocks: labeled, size-limited knowledge blocks (always in context)
- recall: turn log for the active session
- summaries: compacted digests of older turns
- session: inactivity-driven session lifecycle
- learning: pattern-based fact extraction into blocks

Storage: pluggable key-value backend (in-memory or SQLite)
"""

from memblocks.memory.manager import MemoryManager, MemoryRegistry

__all__ = ["MemoryManager", "MemoryRegistry"]
