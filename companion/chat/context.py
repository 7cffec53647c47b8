"""Outbound prompt assembly: persona system turn, recalled memories, recent history."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from companion.chat.models import Message, Persona
    from companion.memory.models import Memory

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 10

GENERIC_INSTRUCTION = "You are a helpful AI assistant.\n"

GUIDELINES = (
    "\nGuidelines:\n"
    "1. Stay in character at all times.\n"
    "2. Respond naturally and conversationally.\n"
    "3. Reference past conversations when relevant.\n"
    "4. Be engaging and responsive.\n"
)


def _describe(persona: Persona, fallback_article: str, fallback_gender: str) -> str:
    age = f"a {persona.age}-year-old" if persona.age else fallback_article
    return f"{persona.name}, {age} {persona.gender or fallback_gender}".rstrip()


def _persona_section(user: Persona, ai: Persona) -> str:
    lines = [f"You are {_describe(ai, 'an', 'AI')}."]
    if ai.backstory:
        lines.append(f"Background: {ai.backstory}")
    if ai.physical:
        lines.append(f"Physical description: {ai.physical}")
    if ai.directive:
        lines.append(f"Response directive: {ai.directive}")

    lines.append("")
    lines.append(f"You are talking to {_describe(user, 'a person', '')}.")
    if user.backstory:
        lines.append(f"User's background: {user.backstory}")
    if user.physical:
        lines.append(f"User's appearance: {user.physical}")
    return "\n".join(lines) + "\n"


def _format_memories(memories: Sequence[Memory]) -> str:
    if not memories:
        return ""
    lines = ["\nRelevant context from previous conversations:"]
    lines.extend(f"- {memory.content}" for memory in memories)
    return "\n".join(lines) + "\n"


def build_system_prompt(
    memories: Sequence[Memory],
    user_persona: Persona | None,
    ai_persona: Persona | None,
) -> str:
    """Synthesize the system instruction.

    Without both personas the prompt falls back to a generic assistant
    instruction; memories and guidelines are included either way.
    """
    if user_persona and ai_persona:
        header = _persona_section(user_persona, ai_persona)
    else:
        header = GENERIC_INSTRUCTION
    return header + _format_memories(memories) + GUIDELINES


def recent_turns(messages: Sequence[Message], window: int = DEFAULT_WINDOW) -> list[dict[str, str]]:
    """The last *window* conversational turns in API format.

    System and error messages are skipped. Anything older than the window is
    not sent to the model.
    """
    if window <= 0:
        return []
    turns = [m for m in messages if m.role != "system" and not m.is_error]
    return [m.to_api() for m in turns[-window:]]


def build_messages(
    new_user_text: str,
    memories: Sequence[Memory],
    user_persona: Persona | None,
    ai_persona: Persona | None,
    recent_messages: Sequence[Message],
    window: int = DEFAULT_WINDOW,
) -> list[dict[str, str]]:
    """Assemble the full ``messages`` array for a completions request.

    Args:
        new_user_text: The user turn being answered; always last.
        memories: Ranked memories to recall in the system turn.
        user_persona: The human side of the conversation, if selected.
        ai_persona: The character the model plays, if selected.
        recent_messages: Session history preceding the new user turn.
        window: How many prior turns to include.

    Returns:
        ``[{"role": ..., "content": ...}, ...]`` starting with one system turn.
    """
    system_prompt = build_system_prompt(memories, user_persona, ai_persona)
    history = recent_turns(recent_messages, window)
    logger.debug(
        "Built context: %d memories, %d history turns", len(memories), len(history)
    )
    return [
        {"role": "system", "content": system_prompt},
        *history,
        {"role": "user", "content": new_user_text},
    ]
