"""Companion entry point: an interactive terminal chat."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from companion import events
from companion.chat.controller import ResponseController
from companion.chat.log import history_key
from companion.chat.session import ChatSession
from companion.config import settings
from companion.errors import CompanionError, Unauthenticated
from companion.events import EventBus
from companion.llm.auth import ApiKeyAuth
from companion.llm.client import CompletionClient
from companion.memory.store import MemoryStore
from companion.persistence import SqlitePersistence
from companion.personas import PersonaBook

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)

HELP = """Commands:
  /help                 show this help
  /clear                clear this conversation (memory is kept)
  /regenerate           regenerate the reply to your last message
  /delete <n>           delete message number n (see /history)
  /history              list messages with their numbers
  /memory               show short-term and long-term memory
  /remember <text>      add a long-term memory
  /sessions             list stored conversations
  /personas <user> <ai> switch persona pair
  /export <path>        write this conversation to a JSON file
  /import <path>        load a conversation from a JSON file
  /quit                 exit
Press Ctrl-C while a reply is streaming to stop it."""


async def _prompt(text: str) -> str:
    return await asyncio.to_thread(input, text)


async def _confirm(question: str) -> bool:
    answer = await _prompt(f"{question} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _print_delta(message, delta: str, **_) -> None:
    sys.stdout.write(delta)
    sys.stdout.flush()


def _print_ended(message, outcome: str, **_) -> None:
    if outcome == "cancelled" and message is not None:
        print("\n[stopped]")
    else:
        print()


def _print_notification(message: str, level: str) -> None:
    print(f"[{level}] {message}")


def _show_history(session: ChatSession) -> None:
    for i, message in enumerate(session.messages, start=1):
        print(f"{i:3}. {message.role}: {message.content[:70]}")
    print(f"~{session.total_tokens} tokens")


def _show_memory(memory: MemoryStore) -> None:
    print(f"Short-term ({len(memory.short_term)}/{memory.stm_capacity}):")
    for m in memory.short_term:
        print(f"  - {m.content[:70]}")
    print(f"Long-term ({len(memory.long_term)}/{memory.ltm_capacity}):")
    for m in memory.long_term:
        print(f"  - [{m.source}] {m.content[:70]} (accessed {m.access_count or 0}x)")
    top = ", ".join(f"{k.text} ({k.importance:.1f})" for k in memory.keywords[:10])
    print(f"Keywords: {top or '(none)'}")


def _last_user_message_id(session: ChatSession) -> str | None:
    return next((m.id for m in reversed(session.messages) if m.role == "user"), None)


async def _handle_command(
    line: str,
    session: ChatSession,
    memory: MemoryStore,
    persistence: SqlitePersistence,
) -> bool:
    """Run a slash command. Returns False when the REPL should exit."""
    command, _, arg = line.partition(" ")
    arg = arg.strip()

    if command == "/quit":
        return False
    if command == "/help":
        print(HELP)
    elif command == "/clear":
        await session.clear()
    elif command == "/history":
        _show_history(session)
    elif command == "/memory":
        _show_memory(memory)
    elif command == "/remember" and arg:
        await memory.add_manual("ltm", arg)
        print("Remembered.")
    elif command == "/regenerate":
        message_id = _last_user_message_id(session)
        if message_id is None:
            print("No message to regenerate.")
        else:
            await session.regenerate(message_id)
    elif command == "/delete" and arg.isdigit():
        index = int(arg) - 1
        if 0 <= index < len(session.messages):
            await session.delete_message(session.messages[index].id)
        else:
            print("No such message.")
    elif command == "/sessions":
        prefix = history_key("")
        for key in await persistence.keys(prefix):
            print(f"  {key.removeprefix(prefix)}")
    elif command == "/personas" and len(arg.split()) == 2:
        user_id, ai_id = arg.split()
        await session.switch_personas(user_id, ai_id)
        print(f"Session: {session.session_key}")
    elif command == "/export" and arg:
        Path(arg).write_text(json.dumps(session.export_session(), indent=2))
        print(f"Exported to {arg}")
    elif command == "/import" and arg:
        await session.import_session(json.loads(Path(arg).read_text()))
        print(f"Imported {len(session.messages)} messages")
    else:
        print(HELP)
    return True


async def run(args: argparse.Namespace) -> None:
    persistence = SqlitePersistence(args.db)
    bus = EventBus()
    bus.subscribe(events.STREAMING_DELTA, _print_delta)
    bus.subscribe(events.GENERATION_ENDED, _print_ended)
    bus.subscribe(events.NOTIFICATION, _print_notification)

    memory = MemoryStore(persistence, bus)
    personas = PersonaBook(persistence)
    auth = ApiKeyAuth()
    client = CompletionClient(auth)
    controller = ResponseController(client, memory, bus)
    session = ChatSession(
        persistence,
        memory,
        controller,
        auth,
        personas,
        events_bus=bus,
        confirm=_confirm,
    )

    await memory.load()
    await personas.load()
    await session.switch_personas(args.user, args.ai)
    if args.no_stream:
        session.update_settings(streaming=False)

    if not auth.is_authenticated():
        logger.warning("COMPLETIONS_API_KEY is not set — requests will be refused")

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, session.cancel)

    logger.info(
        "Starting companion with model %s (session %s)",
        session.generation.model,
        session.session_key,
    )
    print(HELP)

    while True:
        try:
            line = (await _prompt("\n> ")).strip()
        except EOFError:
            break
        if not line:
            continue
        try:
            if line.startswith("/"):
                if not await _handle_command(line, session, memory, persistence):
                    break
                continue
            reply = await session.send_message(line)
            if reply is not None and not session.generation.streaming:
                print(reply.content)
        except Unauthenticated:
            print("Set COMPLETIONS_API_KEY (starting with sk_ or pk_) to chat.")
        except (CompanionError, OSError, ValueError) as e:
            print(f"Error: {e}")


def main() -> None:
    """Start the terminal chat."""
    parser = argparse.ArgumentParser(description="Chat with an AI companion that remembers.")
    parser.add_argument("--user", default=settings.default_user_persona, help="user persona id")
    parser.add_argument("--ai", default=settings.default_ai_persona, help="AI persona id")
    parser.add_argument("--db", type=Path, default=None, help="database path")
    parser.add_argument("--no-stream", action="store_true", help="disable streaming replies")
    asyncio.run(run(parser.parse_args()))


if __name__ == "__main__":
    main()
