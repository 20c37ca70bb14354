"""
CLI entry point.

Commands:
- init: Initialize data directory
- chat: Interactive session that records turns and learns facts
- context: Print the assembled context payload
- stats: Print memory counters
- export: Print a JSON snapshot of all stores
- reset: Clear all memory for the subject

Flags:
- --debug: Enable debug logging to file
- --subject ID: Subject whose memory to use (default: anonymous)
"""

import asyncio
import json
import logging
import sys

from memblocks.core.config import Settings, get_settings
from memblocks.core.logging import get_logger, setup_logging
from memblocks.core.types import Role
from memblocks.memory.context import render_turns
from memblocks.memory.manager import MemoryManager
from memblocks.memory.store import SQLiteKeyValueStore

USAGE = """Usage: memblocks [--debug] [--subject ID] <command>
Commands: init, chat, context, stats, export, reset
Flags: --debug (enable debug logging to data/memblocks.log)"""


def _pop_option(argv: list[str], name: str) -> str | None:
    if name not in argv:
        return None
    index = argv.index(name)
    if index + 1 >= len(argv):
        argv.pop(index)
        return None
    value = argv[index + 1]
    del argv[index : index + 2]
    return value


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    settings = get_settings()
    args = list(sys.argv[1:] if argv is None else argv)

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = "--debug" in args
    if debug_mode:
        args.remove("--debug")
    subject_id = _pop_option(args, "--subject")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    log_file = settings.data_dir / "memblocks.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    logger.info(f"Logging to {log_file}" + (" (debug mode)" if debug_mode else ""))

    if not args:
        print(USAGE)
        return 1

    command = args[0]

    if command == "init":
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized data directory: {settings.data_dir}")
        print(f"Created: {settings.data_dir}")
        return 0

    if command in ("chat", "context", "stats", "export", "reset"):
        return asyncio.run(_run(command, settings, subject_id))

    print(f"Unknown command: {command}")
    return 1


async def _run(command: str, settings: Settings, subject_id: str | None) -> int:
    """Open the store, run one command, flush and close."""
    store = SQLiteKeyValueStore(settings.db_path)
    await store.connect()
    memory = MemoryManager(subject_id, backend=store, settings=settings, source_context="cli")

    try:
        await memory.init()

        if command == "chat":
            await _chat_loop(memory)
        elif command == "context":
            print(memory.assemble_context())
        elif command == "stats":
            for key, value in memory.stats().items():
                print(f"{key}: {value}")
        elif command == "export":
            print(json.dumps(memory.export(), indent=2))
        elif command == "reset":
            memory.reset()
            print(f"Memory reset for {memory.subject_id}. New session: {memory.session.session_id}")
    finally:
        await memory.close()
        await store.close()
    return 0


async def _chat_loop(memory: MemoryManager) -> None:
    """Interactive loop: every line becomes a subject turn."""
    print("memblocks chat")
    print("Commands: /context, /stats, /search <keyword>, /blocks, /clear, /exit")
    print("-" * 40)
    print(f"Session {memory.session.session_id} ({memory.recall.count()} turns)\n")

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "> ")).strip()
            except EOFError:
                break

            if not user_input:
                continue

            # Handle commands
            if user_input.lower() in ("/exit", "exit", "quit", "q"):
                break
            if user_input == "/context":
                print(memory.assemble_context() + "\n")
                continue
            if user_input == "/stats":
                for key, value in memory.stats().items():
                    print(f"{key}: {value}")
                print()
                continue
            if user_input.startswith("/search"):
                keyword = user_input[len("/search") :].strip()
                matches = memory.recall.search(keyword)
                print(render_turns(matches) if matches else "No matches.")
                print()
                continue
            if user_input == "/blocks":
                for label in memory.blocks.labels():
                    usage = memory.blocks.usage(label)
                    print(f"{label}: {usage.current}/{usage.limit} chars ({usage.percent}%)")
                print()
                continue
            if user_input == "/clear":
                memory.recall.clear()
                print("Conversation cleared.\n")
                continue

            memory.recall.append(Role.SUBJECT, user_input)
            fact = memory.learning.process(user_input)
            if fact:
                print(f"  [learned {fact.kind}: {fact.value} -> {fact.label} ({fact.result.value})]")

    except KeyboardInterrupt:
        print("\n\nShutting down...")

    print("Goodbye!")


if __name__ == "__main__":
    sys.exit(main())
