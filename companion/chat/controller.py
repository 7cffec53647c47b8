"""Streaming response controller.

Drives one completion exchange and materializes the assistant reply in the
message log::

    idle -> requesting -> streaming -> finalizing -> idle
              |              |
              +--> cancelled <+--> idle

The placeholder reply is added to the log when the first frame arrives, so
its id and position are fixed before any text exists. Its content is then
replaced with the accumulated text on every delta. Cancelling keeps the
partial text and appends an interruption marker.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from companion import events
from companion.chat.log import estimate_tokens
from companion.chat.models import Message
from companion.errors import Busy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from companion.chat.log import MessageLog
    from companion.events import EventBus
    from companion.llm.client import CompletionClient
    from companion.memory.store import MemoryStore

logger = logging.getLogger(__name__)

INTERRUPTED_MARKER = "\n\n[Response interrupted]"


class GenerationState(enum.StrEnum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CANCELLED = "cancelled"


class CancellationToken:
    """One-shot stop signal for the generation in flight."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class _Progress:
    """What has been received so far for the reply being generated."""

    message: Message | None = None
    accumulated: str = ""
    usage: dict[str, Any] | None = None


def _reported_tokens(usage: dict[str, Any] | None) -> int | None:
    if not usage:
        return None
    total = usage.get("total_tokens")
    return total if isinstance(total, int) else None


class ResponseController:
    """Runs at most one generation at a time for a chat session.

    Enter ``generation()`` to claim the single-flight slot, then call
    ``run()`` one or more times inside it. ``cancel()`` may be called from
    any other task while a generation is in flight.
    """

    def __init__(
        self,
        client: CompletionClient,
        memory: MemoryStore,
        events_bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._memory = memory
        self._events = events_bus
        self._state = GenerationState.IDLE
        self._token: CancellationToken | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def is_generating(self) -> bool:
        return self._token is not None

    def _set_state(self, state: GenerationState) -> None:
        logger.debug("Generation state: %s -> %s", self._state, state)
        self._state = state

    def _emit(self, event: str, **payload: Any) -> None:
        if self._events:
            self._events.emit(event, **payload)

    # -- Single flight ---------------------------------------------------------

    @contextlib.asynccontextmanager
    async def generation(self) -> AsyncIterator[CancellationToken]:
        """Claim the generation slot. Raises ``Busy`` if it is taken."""
        if self._token is not None:
            msg = "Already generating a response"
            raise Busy(msg)
        token = CancellationToken()
        self._token = token
        self._idle.clear()
        try:
            yield token
        finally:
            self._token = None
            self._set_state(GenerationState.IDLE)
            self._idle.set()

    def cancel(self) -> bool:
        """Stop the generation in flight. Returns False if there is none."""
        if self._token is None or self._token.cancelled:
            return False
        logger.info("Cancelling generation (state=%s)", self._state)
        self._token.cancel()
        return True

    async def stop(self) -> None:
        """Cancel any generation in flight and wait until it has finalized."""
        self.cancel()
        await self._idle.wait()

    # -- Exchange --------------------------------------------------------------

    async def run(
        self,
        log: MessageLog,
        payload: dict[str, Any],
        *,
        persona_id: str | None = None,
        after: str | None = None,
    ) -> Message | None:
        """Send *payload* and land the reply in *log*.

        The reply is appended, or inserted directly after message *after*.
        Returns the final reply, or None when cancelled before any response
        arrived. Transport errors propagate after any partial reply has been
        finalized (or an empty placeholder removed).
        """
        token = self._token
        if token is None:
            msg = "run() called outside generation()"
            raise RuntimeError(msg)

        progress = _Progress()
        self._set_state(GenerationState.REQUESTING)
        if token.cancelled:
            return await self._finish_cancelled(log, progress)

        if payload.get("stream"):
            work = self._pump(log, payload, progress, persona_id, after)
        else:
            work = self._fetch(payload, progress)

        transfer = asyncio.create_task(work)
        stopper = asyncio.create_task(token.wait())
        try:
            await asyncio.wait({transfer, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            transfer.cancel()
            raise
        finally:
            stopper.cancel()

        if transfer.done():
            try:
                transfer.result()
            except Exception:
                await self._abandon(log, progress)
                raise
            return await self._finish(log, progress, persona_id, after)

        transfer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await transfer
        return await self._finish_cancelled(log, progress)

    async def _pump(
        self,
        log: MessageLog,
        payload: dict[str, Any],
        progress: _Progress,
        persona_id: str | None,
        after: str | None,
    ) -> None:
        async for chunk in self._client.stream_chat(payload):
            if progress.message is None:
                self._set_state(GenerationState.STREAMING)
                progress.message = Message(
                    role="assistant", content="", persona_id=persona_id, is_streaming=True
                )
                await log.add(progress.message, after=after)

            if chunk.usage:
                progress.usage = chunk.usage
            if chunk.content:
                progress.accumulated += chunk.content
                progress.message.content = progress.accumulated
                self._emit(
                    events.STREAMING_DELTA,
                    message=progress.message,
                    delta=chunk.content,
                )

    async def _fetch(self, payload: dict[str, Any], progress: _Progress) -> None:
        completion = await self._client.complete(payload)
        progress.accumulated = completion.content
        progress.usage = completion.usage

    # -- Finalization ----------------------------------------------------------

    async def _finish(
        self,
        log: MessageLog,
        progress: _Progress,
        persona_id: str | None,
        after: str | None,
    ) -> Message:
        self._set_state(GenerationState.FINALIZING)
        content = progress.accumulated

        if progress.message is None:
            final = Message(role="assistant", content=content, persona_id=persona_id)
            await log.add(final, after=after)
        else:
            final = progress.message.model_copy(
                update={"content": content, "is_streaming": False}
            )
            await log.replace(final)

        if content.strip():
            await self._memory.process(final)

        tokens = _reported_tokens(progress.usage)
        await log.add_tokens(tokens if tokens is not None else estimate_tokens(content))

        logger.info("Generation finished: %d chars", len(content))
        self._emit(events.GENERATION_ENDED, message=final, outcome="completed")
        return final

    async def _finish_cancelled(self, log: MessageLog, progress: _Progress) -> Message | None:
        self._set_state(GenerationState.CANCELLED)

        if progress.message is None:
            logger.info("Generation cancelled before the response started")
            self._emit(events.GENERATION_ENDED, message=None, outcome="cancelled")
            return None

        partial = progress.accumulated
        final = progress.message.model_copy(
            update={"content": partial + INTERRUPTED_MARKER, "is_streaming": False}
        )
        await log.replace(final)

        if partial.strip():
            await self._memory.process(final.model_copy(update={"content": partial}))
        await log.add_tokens(estimate_tokens(final.content))

        logger.info("Generation cancelled after %d chars", len(partial))
        self._emit(events.GENERATION_ENDED, message=final, outcome="cancelled")
        return final

    async def _abandon(self, log: MessageLog, progress: _Progress) -> None:
        """Settle the placeholder after a failed transfer."""
        if progress.message is not None:
            if progress.accumulated:
                final = progress.message.model_copy(update={"is_streaming": False})
                await log.replace(final)
                await log.add_tokens(estimate_tokens(final.content))
            else:
                await log.remove(progress.message.id)
        self._emit(events.GENERATION_ENDED, message=None, outcome="failed")
