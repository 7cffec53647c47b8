"""Chat session — the entry point for sending, editing and deleting messages.

Ties together the message log, memory store, persona lookup, context
builder and response controller for one persona pair at a time. Every
collaborator is passed in; optional ones (events, confirm hook) have a
defined fallback when absent.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from companion.chat.context import build_messages
from companion.chat.log import DEFAULT_SESSION_KEY, MessageLog
from companion.chat.models import Message, Persona
from companion.config import settings
from companion.errors import (
    InvalidSessionDocument,
    InvalidTarget,
    MessageNotFound,
    NothingToRegenerate,
    TransportError,
)
from companion.llm.client import build_payload
from companion.models import utc_now

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from companion.chat.controller import ResponseController
    from companion.events import EventBus
    from companion.llm.auth import AuthProvider
    from companion.memory.store import MemoryStore
    from companion.persistence import Persistence
    from companion.personas import PersonaProvider

    ConfirmHook = Callable[[str], Awaitable[bool]]

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "Failed to send message. Please try again."


@dataclass
class GenerationSettings:
    """Per-session generation parameters."""

    model: str
    temperature: float
    max_tokens: int
    streaming: bool

    @classmethod
    def from_settings(cls) -> GenerationSettings:
        return cls(**settings.generation_defaults())

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "model": data["model"],
            "temperature": data["temperature"],
            "maxTokens": data["max_tokens"],
            "streaming": data["streaming"],
        }


def session_key_for(user: Persona | None, ai: Persona | None) -> str:
    """``{user}_{ai}`` for a full persona pair, otherwise ``default``."""
    if not user or not ai:
        return DEFAULT_SESSION_KEY
    return f"{user.id}_{ai.id}"


class ChatSession:
    """Conversation with one user/AI persona pair.

    Args:
        persistence: Storage for chat history.
        memory: The shared memory store.
        controller: Single-flight response controller for this session.
        auth: Credential provider; checked before any log mutation.
        personas: Persona lookup by ``(id, type)``.
        events_bus: Optional event bus for the presentation layer.
        confirm: Optional async yes/no hook. Without it, actions that need
            confirmation are refused.
    """

    def __init__(
        self,
        persistence: Persistence,
        memory: MemoryStore,
        controller: ResponseController,
        auth: AuthProvider,
        personas: PersonaProvider,
        *,
        events_bus: EventBus | None = None,
        confirm: ConfirmHook | None = None,
        generation: GenerationSettings | None = None,
    ) -> None:
        self._persistence = persistence
        self._memory = memory
        self._controller = controller
        self._auth = auth
        self._personas = personas
        self._events = events_bus
        self._confirm = confirm
        self.generation = generation or GenerationSettings.from_settings()
        self.user_persona: Persona | None = None
        self.ai_persona: Persona | None = None
        self.log = MessageLog(persistence, DEFAULT_SESSION_KEY, events_bus)

    # -- State -----------------------------------------------------------------

    @property
    def session_key(self) -> str:
        return session_key_for(self.user_persona, self.ai_persona)

    @property
    def is_generating(self) -> bool:
        return self._controller.is_generating

    @property
    def messages(self) -> list[Message]:
        return self.log.messages

    @property
    def total_tokens(self) -> int:
        return self.log.total_tokens

    def _notify(self, message: str, level: str = "info") -> None:
        if self._events:
            self._events.notify(message, level)

    async def _ask(self, prompt: str) -> bool:
        if self._confirm is None:
            logger.info("No confirm hook; refusing: %s", prompt)
            return False
        return await self._confirm(prompt)

    def _require(self, message_id: str) -> Message:
        message = self.log.get(message_id)
        if message is None:
            msg = f"No message with id '{message_id}'"
            raise MessageNotFound(msg)
        return message

    # -- Session selection -----------------------------------------------------

    async def load(self) -> None:
        """(Re)load history for the current persona pair."""
        self.log = MessageLog(self._persistence, self.session_key, self._events)
        await self.log.load()
        logger.info(
            "Session %s loaded: %d messages, %d tokens",
            self.session_key,
            len(self.log),
            self.log.total_tokens,
        )

    async def switch_personas(self, user_persona_id: str, ai_persona_id: str) -> None:
        """Select a persona pair and load its history.

        Unknown ids leave that side unset, which selects the default session.
        """
        await self._controller.stop()
        self.user_persona = self._personas.get_persona(user_persona_id, "user")
        self.ai_persona = self._personas.get_persona(ai_persona_id, "ai")
        if self.user_persona is None or self.ai_persona is None:
            logger.warning(
                "Persona pair incomplete (user=%s, ai=%s), using default session",
                user_persona_id,
                ai_persona_id,
            )
        await self.load()

    def update_settings(
        self,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        streaming: bool | None = None,
    ) -> GenerationSettings:
        if model is not None:
            self.generation.model = model
        if temperature is not None:
            self.generation.temperature = temperature
        if max_tokens is not None:
            self.generation.max_tokens = max_tokens
        if streaming is not None:
            self.generation.streaming = streaming
        return self.generation

    # -- Generation ------------------------------------------------------------

    async def send_message(self, content: str) -> Message | None:
        """Send a user turn and generate the reply.

        Raises ``Unauthenticated`` or ``Busy`` before touching the log. On a
        transport failure the user message stays, an error message is added,
        and ``TransportError`` is re-raised. Returns the assistant reply, or
        None if cancelled before the response started.
        """
        self._auth.get_headers()
        async with self._controller.generation():
            user_message = Message(
                role="user",
                content=content,
                persona_id=self.user_persona.id if self.user_persona else None,
            )
            history = list(self.log.messages)
            await self.log.add(user_message)
            await self._memory.process(user_message)
            return await self._generate(content, history)

    async def _generate(
        self,
        content: str,
        history: list[Message],
        *,
        after: str | None = None,
    ) -> Message | None:
        memories = self._memory.rank(content)
        await self._memory.record_access(memories)

        messages = build_messages(
            content,
            memories,
            self.user_persona,
            self.ai_persona,
            history,
            window=settings.context_window_size,
        )
        payload = build_payload(
            messages,
            model=self.generation.model,
            temperature=self.generation.temperature,
            max_tokens=self.generation.max_tokens,
            stream=self.generation.streaming,
        )

        try:
            return await self._controller.run(
                self.log,
                payload,
                persona_id=self.ai_persona.id if self.ai_persona else None,
                after=after,
            )
        except TransportError as e:
            logger.error("Generation failed: %s", e)
            await self.log.add(
                Message(role="system", content=ERROR_MESSAGE, is_error=True)
            )
            self._notify(ERROR_MESSAGE, "error")
            raise

    def cancel(self) -> bool:
        """Stop the generation in flight, keeping any partial reply."""
        return self._controller.cancel()

    async def regenerate(self, message_id: str) -> Message | None:
        """Replace the assistant reply to a user message with a new one.

        The new reply is placed directly after the user message and is
        generated from the history before it.
        """
        self._auth.get_headers()
        async with self._controller.generation():
            message = self._require(message_id)
            if message.role != "user":
                msg = "Only user messages can be regenerated"
                raise InvalidTarget(msg)

            reply = self.log.next_assistant_after(message_id)
            if reply is None:
                msg = "Nothing to regenerate"
                raise NothingToRegenerate(msg)

            await self._remove(reply)
            return await self._generate(
                message.content, self.log.before(message_id), after=message_id
            )

    # -- Editing ---------------------------------------------------------------

    async def edit_message(self, message_id: str, new_content: str) -> Message:
        """Change a message's text.

        For a user message with a reply, the confirm hook is offered a
        regeneration; if accepted the old reply is replaced.
        """
        message = self._require(message_id)
        if new_content == message.content:
            return message

        updated = message.model_copy(
            update={"content": new_content, "edited": True, "edit_timestamp": utc_now()}
        )
        await self.log.replace(updated)

        if updated.role == "user":
            await self._memory.process(updated)
            if self.log.next_assistant_after(message_id) is not None and await self._ask(
                "Regenerate the response to the edited message?"
            ):
                await self.regenerate(message_id)

        return self.log.get(message_id) or updated

    async def _remove(self, message: Message) -> None:
        await self._memory.remove_by_message(message)
        await self.log.remove(message.id)

    async def delete_message(self, message_id: str, *, confirmed: bool = False) -> bool:
        """Delete a message and the memories derived from it.

        Asks the confirm hook unless *confirmed*. Returns False if declined.
        """
        message = self._require(message_id)
        if not confirmed and not await self._ask("Delete this message?"):
            return False
        await self._remove(message)
        logger.info("Deleted message %s", message_id)
        return True

    async def clear(self) -> int:
        """Clear this session's history. Memory is kept."""
        count = await self.log.clear()
        self._notify(f"Cleared {count} messages")
        return count

    # -- Import / export -------------------------------------------------------

    def export_session(self) -> dict[str, Any]:
        """The session as a portable JSON document."""
        return {
            "userPersona": self.user_persona.to_json() if self.user_persona else None,
            "aiPersona": self.ai_persona.to_json() if self.ai_persona else None,
            "messages": [m.to_json() for m in self.log.messages],
            "exportDate": utc_now().isoformat(),
            "totalTokens": self.log.total_tokens,
            "settings": self.generation.to_json(),
        }

    async def import_session(self, document: dict[str, Any]) -> None:
        """Replace the active session with an exported document.

        The document's personas become the active pair; its messages and
        token count replace that pair's history.
        """
        try:
            user_doc = document.get("userPersona")
            ai_doc = document.get("aiPersona")
            user = Persona.model_validate(user_doc) if user_doc else None
            ai = Persona.model_validate(ai_doc) if ai_doc else None
            messages = [Message.model_validate(m) for m in document.get("messages") or []]
            total_tokens = int(document.get("totalTokens") or 0)
        except (ValidationError, ValueError, TypeError, KeyError, AttributeError) as e:
            msg = f"Invalid session document: {e}"
            raise InvalidSessionDocument(msg) from e

        # A cancelled reply must land in the old log before it is replaced
        await self._controller.stop()

        self.user_persona = user
        self.ai_persona = ai
        self.log = MessageLog(self._persistence, self.session_key, self._events)
        self.log.messages = messages
        self.log.total_tokens = total_tokens
        await self.log.save()

        imported = document.get("settings")
        if not isinstance(imported, dict):
            imported = {}
        self.update_settings(
            model=imported.get("model"),
            temperature=imported.get("temperature"),
            max_tokens=imported.get("maxTokens"),
            streaming=imported.get("streaming"),
        )
        logger.info("Imported session %s with %d messages", self.session_key, len(messages))
