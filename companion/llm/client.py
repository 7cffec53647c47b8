"""Async client for an OpenAI-compatible chat completions endpoint."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from companion.config import settings
from companion.errors import TransportError
from companion.llm.sse import iter_chunks

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from companion.llm.auth import AuthProvider
    from companion.llm.sse import StreamChunk

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """A whole (non-streaming) completion response."""

    content: str
    usage: dict[str, Any] | None = None


def build_payload(
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float,
    max_tokens: int,
    stream: bool,
) -> dict[str, Any]:
    """Request body for ``POST /chat/completions``."""
    return {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": stream,
    }


def _http_error(response: httpx.Response, body: bytes) -> TransportError:
    detail = body.decode("utf-8", errors="replace")[:200]
    return TransportError(
        f"HTTP {response.status_code}: {detail}", status_code=response.status_code
    )


class CompletionClient:
    """Sends completion requests with bearer auth.

    Pass *http_client* to share a connection pool (or a mock transport in
    tests); otherwise a client is opened per request. Headers come from
    *auth* on every call, so an unauthenticated provider fails before any
    network I/O.
    """

    def __init__(
        self,
        auth: AuthProvider,
        *,
        url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._auth = auth
        self._url = url or settings.completions_url
        self._http_client = http_client

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        timeout = httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def stream_chat(self, payload: dict[str, Any]) -> AsyncIterator[StreamChunk]:
        """Stream decoded chunks for *payload*.

        Raises ``Unauthenticated`` before connecting and ``TransportError`` on
        any HTTP or network failure.
        """
        headers = {**self._auth.get_headers(), "Accept": "text/event-stream"}
        body = {**payload, "stream": True}
        logger.debug(
            "Streaming request: model=%s, %d messages", body.get("model"), len(body["messages"])
        )

        try:
            async with (
                self._session() as client,
                client.stream("POST", self._url, json=body, headers=headers) as response,
            ):
                if response.status_code != 200:
                    raise _http_error(response, await response.aread())
                async for chunk in iter_chunks(response.aiter_lines()):
                    yield chunk
        except httpx.HTTPError as e:
            msg = f"Request failed: {str(e) or type(e).__name__}"
            raise TransportError(msg) from e

    async def complete(self, payload: dict[str, Any]) -> Completion:
        """Send a non-streaming request and return the whole response."""
        headers = self._auth.get_headers()
        body = {**payload, "stream": False}

        try:
            async with self._session() as client:
                response = await client.post(self._url, json=body, headers=headers)
        except httpx.HTTPError as e:
            msg = f"Request failed: {str(e) or type(e).__name__}"
            raise TransportError(msg) from e

        if response.status_code != 200:
            raise _http_error(response, response.content)

        try:
            data = response.json()
        except ValueError as e:
            msg = "Completion response is not valid JSON"
            raise TransportError(msg, status_code=response.status_code) from e

        if not isinstance(data, dict):
            msg = "Completion response is not a JSON object"
            raise TransportError(msg, status_code=response.status_code)

        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else {}
        message = choice.get("message") if isinstance(choice, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if content is not None and not isinstance(content, str):
            msg = "Completion response has non-text content"
            raise TransportError(msg, status_code=response.status_code)

        usage = data.get("usage")
        return Completion(
            content=content or "", usage=usage if isinstance(usage, dict) else None
        )
