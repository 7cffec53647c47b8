"""Ordered message history for one chat session."""

from __future__ import annotations

import logging
import math
import time
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from companion import events
from companion.chat.models import Message
from companion.errors import MessageNotFound

if TYPE_CHECKING:
    from companion.events import EventBus
    from companion.persistence import Persistence

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "default"
CHARS_PER_TOKEN = 4

_messages = TypeAdapter(list[Message])


def history_key(session_key: str) -> str:
    return f"chat_history_{session_key}"


def estimate_tokens(text: str) -> int:
    """Rough token count used when the provider reports no usage."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class MessageLog:
    """Conversation history plus the running token estimate.

    The log is the only owner of its messages. Appends, replacements and
    removals persist the whole history under ``chat_history_{session_key}``.
    """

    def __init__(
        self,
        persistence: Persistence,
        session_key: str = DEFAULT_SESSION_KEY,
        events_bus: EventBus | None = None,
    ) -> None:
        self._persistence = persistence
        self._events = events_bus
        self.session_key = session_key
        self.messages: list[Message] = []
        self.total_tokens = 0

    def __len__(self) -> int:
        return len(self.messages)

    # -- Persistence -----------------------------------------------------------

    async def load(self) -> None:
        """Load this session's history. Unreadable history leaves the log empty."""
        self.messages = []
        self.total_tokens = 0
        try:
            data = await self._persistence.load(history_key(self.session_key))
            if not data:
                return
            self.messages = _messages.validate_python(data.get("messages") or [])
            self.total_tokens = int(data.get("totalTokens") or 0)
        except (ValidationError, ValueError, TypeError, AttributeError):
            logger.exception("Error loading chat history for %s", self.session_key)
            self.messages = []
            self.total_tokens = 0

    async def save(self) -> None:
        await self._persistence.save(
            history_key(self.session_key),
            {
                "messages": [m.to_json() for m in self.messages],
                "totalTokens": self.total_tokens,
                "timestamp": int(time.time() * 1000),
            },
        )

    def _emit(self, event: str, **payload) -> None:
        if self._events:
            self._events.emit(event, session_key=self.session_key, **payload)

    # -- Lookup ----------------------------------------------------------------

    def get(self, message_id: str) -> Message | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def index_of(self, message_id: str) -> int:
        """Position of a message. Raises ``MessageNotFound``."""
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                return i
        msg = f"No message with id '{message_id}'"
        raise MessageNotFound(msg)

    def next_assistant_after(self, message_id: str) -> Message | None:
        """The first assistant reply following a message, if any."""
        index = self.index_of(message_id)
        return next((m for m in self.messages[index + 1:] if m.role == "assistant"), None)

    def before(self, message_id: str) -> list[Message]:
        """All messages preceding *message_id*."""
        return self.messages[: self.index_of(message_id)]

    def recent(self, window: int) -> list[Message]:
        """The last *window* conversational messages (no system or error turns)."""
        if window <= 0:
            return []
        turns = [m for m in self.messages if m.role != "system" and not m.is_error]
        return turns[-window:]

    # -- Mutation --------------------------------------------------------------

    async def add(self, message: Message, *, after: str | None = None) -> Message:
        """Append a message, or insert it directly after message *after*."""
        if after is None:
            self.messages.append(message)
        else:
            self.messages.insert(self.index_of(after) + 1, message)
        self._emit(events.MESSAGE_APPENDED, message=message)
        await self.save()
        return message

    async def replace(self, message: Message) -> Message:
        """Swap in a new version of an existing message (matched by id)."""
        self.messages[self.index_of(message.id)] = message
        self._emit(events.MESSAGE_UPDATED, message=message)
        await self.save()
        return message

    async def remove(self, message_id: str) -> Message:
        """Remove a message, lowering the token estimate by its size."""
        message = self.messages.pop(self.index_of(message_id))
        self.total_tokens = max(0, self.total_tokens - estimate_tokens(message.content))
        self._emit(events.MESSAGE_REMOVED, message=message)
        await self.save()
        return message

    async def add_tokens(self, count: int) -> None:
        self.total_tokens += max(0, count)
        await self.save()

    async def clear(self) -> int:
        """Drop all messages and their stored history. Returns the count cleared."""
        count = len(self.messages)
        self.messages = []
        self.total_tokens = 0
        await self._persistence.delete(history_key(self.session_key))
        return count
