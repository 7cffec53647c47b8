"""Tests for the streaming response controller."""

import asyncio

import pytest

from companion import events
from companion.chat.controller import INTERRUPTED_MARKER, GenerationState, ResponseController
from companion.chat.log import MessageLog
from companion.chat.models import Message
from companion.errors import Busy, TransportError
from companion.events import EventBus
from companion.llm.client import Completion, build_payload
from companion.llm.sse import StreamChunk
from companion.memory.store import MemoryStore

# -- Helpers -------------------------------------------------------------------


class FakeClient:
    """Scripted stand-in for CompletionClient."""

    def __init__(
        self,
        chunks: list[str] | None = None,
        *,
        usage: dict | None = None,
        stall: bool = False,
        error: Exception | None = None,
        completion: Completion | None = None,
    ) -> None:
        self.chunks = chunks or []
        self.usage = usage
        self.stall = stall
        self.error = error
        self.completion = completion
        self.payloads: list[dict] = []

    async def stream_chat(self, payload: dict):
        self.payloads.append(payload)
        for content in self.chunks:
            yield StreamChunk(content=content)
        if self.usage:
            yield StreamChunk(usage=self.usage)
        if self.error:
            raise self.error
        if self.stall:
            await asyncio.Event().wait()

    async def complete(self, payload: dict) -> Completion:
        self.payloads.append(payload)
        if self.error:
            raise self.error
        return self.completion or Completion(content="")


def _payload(stream: bool = True) -> dict:
    return build_payload(
        [{"role": "user", "content": "hi"}],
        model="openai",
        temperature=1.0,
        max_tokens=100,
        stream=stream,
    )


async def _generate(controller: ResponseController, log: MessageLog, payload: dict):
    async with controller.generation():
        return await controller.run(log, payload, persona_id="ai_default")


async def _wait_for(condition) -> None:
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


# -- Completed -----------------------------------------------------------------


async def test_stream_completes(log: MessageLog, memory: MemoryStore, bus: EventBus) -> None:
    deltas: list[str] = []
    ended: list[dict] = []
    bus.subscribe(events.STREAMING_DELTA, lambda message, delta: deltas.append(delta))
    bus.subscribe(events.GENERATION_ENDED, lambda **kw: ended.append(kw))
    controller = ResponseController(FakeClient(["Hello", " there"]), memory, bus)

    reply = await _generate(controller, log, _payload())

    assert deltas == ["Hello", " there"]
    assert reply.content == "Hello there"
    assert reply.role == "assistant"
    assert reply.persona_id == "ai_default"
    assert not reply.is_streaming
    assert log.messages == [reply]
    assert log.total_tokens == 3
    assert ended[0]["outcome"] == "completed"
    assert controller.state == GenerationState.IDLE
    assert not controller.is_generating


async def test_placeholder_appears_before_content(
    log: MessageLog, memory: MemoryStore, bus: EventBus
) -> None:
    appended: list = []
    bus.subscribe(events.MESSAGE_APPENDED, lambda message, **kw: appended.append(message))
    controller = ResponseController(FakeClient(["Hi"]), memory, bus)

    reply = await _generate(controller, log, _payload())

    assert len(appended) == 1
    assert appended[0].id == reply.id
    assert appended[0].is_streaming is True


async def test_reported_usage_preferred(log: MessageLog, memory: MemoryStore) -> None:
    client = FakeClient(["Hello"], usage={"total_tokens": 42})
    await _generate(ResponseController(client, memory), log, _payload())
    assert log.total_tokens == 42


async def test_reply_is_remembered(log: MessageLog, memory: MemoryStore) -> None:
    client = FakeClient(["Your birthday is in July"])
    await _generate(ResponseController(client, memory), log, _payload())
    assert memory.short_term[0].content == "Your birthday is in July"


async def test_empty_reply_not_remembered(log: MessageLog, memory: MemoryStore) -> None:
    reply = await _generate(ResponseController(FakeClient([""]), memory), log, _payload())
    assert reply.content == ""
    assert memory.short_term == []


async def test_non_streaming(log: MessageLog, memory: MemoryStore) -> None:
    client = FakeClient(completion=Completion(content="Whole reply", usage={"total_tokens": 9}))
    reply = await _generate(ResponseController(client, memory), log, _payload(stream=False))

    assert reply.content == "Whole reply"
    assert log.messages == [reply]
    assert log.total_tokens == 9


async def test_insert_after(log: MessageLog, memory: MemoryStore) -> None:
    first = await log.add(Message(role="user", content="first"))
    await log.add(Message(role="user", content="second"))
    controller = ResponseController(FakeClient(["reply"]), memory)

    async with controller.generation():
        await controller.run(log, _payload(), after=first.id)

    assert [m.content for m in log.messages] == ["first", "reply", "second"]


# -- Single flight -------------------------------------------------------------


async def test_second_generation_is_busy(log: MessageLog, memory: MemoryStore) -> None:
    controller = ResponseController(FakeClient(stall=True), memory)
    async with controller.generation():
        with pytest.raises(Busy):
            async with controller.generation():
                pass


async def test_run_outside_generation(log: MessageLog, memory: MemoryStore) -> None:
    controller = ResponseController(FakeClient(), memory)
    with pytest.raises(RuntimeError):
        await controller.run(log, _payload())


async def test_cancel_when_idle(memory: MemoryStore) -> None:
    assert ResponseController(FakeClient(), memory).cancel() is False


# -- Cancellation --------------------------------------------------------------


async def test_cancel_mid_stream_keeps_partial(
    log: MessageLog, memory: MemoryStore, bus: EventBus
) -> None:
    deltas: list[str] = []
    ended: list[dict] = []
    bus.subscribe(events.STREAMING_DELTA, lambda message, delta: deltas.append(delta))
    bus.subscribe(events.GENERATION_ENDED, lambda **kw: ended.append(kw))
    controller = ResponseController(FakeClient(["Hello", " the"], stall=True), memory, bus)

    task = asyncio.create_task(_generate(controller, log, _payload()))
    await _wait_for(lambda: len(deltas) == 2)
    assert controller.state == GenerationState.STREAMING
    assert controller.cancel() is True
    reply = await task

    assert reply.content == "Hello the" + INTERRUPTED_MARKER
    assert reply.content == "Hello the\n\n[Response interrupted]"
    assert not reply.is_streaming
    assert log.messages == [reply]
    assert log.total_tokens == 9
    assert ended[-1]["outcome"] == "cancelled"
    assert memory.short_term[0].content == "Hello the"
    assert not controller.is_generating


async def test_cancel_before_first_frame(
    log: MessageLog, memory: MemoryStore, bus: EventBus
) -> None:
    ended: list[dict] = []
    bus.subscribe(events.GENERATION_ENDED, lambda **kw: ended.append(kw))
    client = FakeClient(stall=True)
    controller = ResponseController(client, memory, bus)

    task = asyncio.create_task(_generate(controller, log, _payload()))
    await _wait_for(lambda: client.payloads)
    controller.cancel()

    assert await task is None
    assert log.messages == []
    assert ended == [{"message": None, "outcome": "cancelled"}]


async def test_cancel_twice_is_noop(log: MessageLog, memory: MemoryStore) -> None:
    controller = ResponseController(FakeClient(stall=True), memory)
    task = asyncio.create_task(_generate(controller, log, _payload()))
    await _wait_for(lambda: controller.is_generating)

    assert controller.cancel() is True
    assert controller.cancel() is False
    await task


# -- Failure -------------------------------------------------------------------


async def test_error_mid_stream_keeps_partial(log: MessageLog, memory: MemoryStore) -> None:
    client = FakeClient(["Partial"], error=TransportError("connection reset"))
    controller = ResponseController(client, memory)

    with pytest.raises(TransportError):
        await _generate(controller, log, _payload())

    assert [m.content for m in log.messages] == ["Partial"]
    assert not log.messages[0].is_streaming
    assert log.total_tokens == 2
    assert not controller.is_generating


async def test_error_before_content_leaves_no_message(
    log: MessageLog, memory: MemoryStore, bus: EventBus
) -> None:
    ended: list[dict] = []
    bus.subscribe(events.GENERATION_ENDED, lambda **kw: ended.append(kw))
    controller = ResponseController(FakeClient(error=TransportError("HTTP 500")), memory, bus)

    with pytest.raises(TransportError):
        await _generate(controller, log, _payload())

    assert log.messages == []
    assert ended == [{"message": None, "outcome": "failed"}]


async def test_non_streaming_error(log: MessageLog, memory: MemoryStore) -> None:
    client = FakeClient(error=TransportError("HTTP 401", status_code=401))
    with pytest.raises(TransportError):
        await _generate(ResponseController(client, memory), log, _payload(stream=False))
    assert log.messages == []
