"""
memblocks - bounded conversational memory.

Package structure:
- core: config, logging, shared types, event bus
- memory: knowledge blocks, turn log, summaries, sessions, persistence
- cli: diagnostics entry point
"""

__version__ = "0.1.0"
