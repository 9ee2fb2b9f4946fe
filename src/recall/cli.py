"""
CLI entry point.

Commands:
- init: Initialize data directory
- chat: Interactive loop through the memory workflow
- search <query>: Search stored knowledge
- summary: Summarize the current session
- stats: Row counts per memory table

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import logging
import sys

from recall.core.config import Settings, get_settings
from recall.core.logging import get_logger, setup_logging


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.WARNING
    log_file = settings.data_dir / "recall.log" if debug_mode else None
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    if len(sys.argv) < 2:
        print("Usage: recall [--debug] <command>")
        print("Commands: init, chat, search <query>, summary, stats")
        print("Flags: --debug (enable debug logging to data/recall.log)")
        return 1

    command = sys.argv[1]

    if command == "init":
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized data directory: {settings.data_dir}")
        print(f"Created: {settings.data_dir}")
        return 0

    if command == "chat":
        return asyncio.run(_chat_loop(settings))

    if command == "search":
        if len(sys.argv) < 3:
            print("Usage: recall search <query>")
            return 1
        return asyncio.run(_search(settings, " ".join(sys.argv[2:])))

    if command == "summary":
        return asyncio.run(_summary(settings))

    if command == "stats":
        return asyncio.run(_stats(settings))

    print(f"Unknown command: {command}")
    return 1


async def _chat_loop(settings: Settings) -> int:
    """Interactive chat driven by the memory controller."""
    from recall.core.controller import create_memory

    print("Recall CLI Chat")
    print("Commands: /note <topic>: <details>, /context, /status, /exit")
    print("-" * 40)

    memory = await create_memory(settings)
    session_id = await memory.short_term.start_session()
    print(f"Session: {session_id}\n")

    try:
        while True:
            try:
                user_input = input("> ").strip()
            except EOFError:
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "exit", "quit", "q"):
                break
            if user_input.startswith("/note "):
                topic, _, details = user_input[6:].partition(":")
                item = await memory.short_term.add_working_context(
                    topic.strip(), details.strip() or topic.strip(), importance=4
                )
                print("Noted.\n" if item else "Could not save note.\n")
                continue
            if user_input == "/context":
                for item in await memory.short_term.get_working_context():
                    print(f"  [{item.importance}] {item.topic}: {item.details}")
                print()
                continue
            if user_input == "/status":
                print(f"Interactions: {memory.interaction_count}")
                print(f"Controller state: {memory.state.value}\n")
                continue

            response = await memory.process_interaction(user_input)
            print(f"\n{response}\n")

    except KeyboardInterrupt:
        print("\n\nShutting down...")
    finally:
        if memory.interaction_count:
            print("Consolidating memory...")
            await memory.consolidate_memory()
        await memory.close()

    print("Goodbye!")
    return 0


async def _search(settings: Settings, query: str) -> int:
    from recall.core.controller import create_memory

    memory = await create_memory(settings)
    try:
        nodes = await memory.semantic.search(query)
        if not nodes:
            print("No knowledge found.")
            return 0
        for node in nodes:
            print(f"[{node.confidence:.2f}] {node.category}/{node.topic}: {node.content[:100]}")
        return 0
    finally:
        await memory.close()


async def _summary(settings: Settings) -> int:
    from recall.core.controller import create_memory

    memory = await create_memory(settings)
    try:
        summary = await memory.episodic.summarize_current_session()
        if summary is None:
            print("No active session with conversations.")
            return 1
        print(summary.summary)
        return 0
    finally:
        await memory.close()


async def _stats(settings: Settings) -> int:
    from recall.memory.fallback import open_adapter

    adapter = await open_adapter(settings)
    try:
        for table, rows in (await adapter.counts()).items():
            print(f"{table:<26} {rows}")
        return 0
    finally:
        await adapter.close()


if __name__ == "__main__":
    sys.exit(main())
