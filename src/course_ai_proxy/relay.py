"""Stream relay: pipe a live upstream body to the caller as SSE.

StreamRelay is the pipe. It pulls one chunk at a time from the upstream
handle and yields it unchanged, so a slow caller blocks the upstream
read instead of piling chunks up in memory. ``aclose()`` is the abort
path in both directions: it stops the pipe and releases the upstream
connection.

EventStreamResponse is the outward half. It guarantees its close
callbacks run however the response ends, client disconnect included.
"""

from __future__ import annotations

import json
from collections.abc import (
    AsyncGenerator,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Sequence,
)
from typing import Any

import anyio
import structlog
from starlette.requests import ClientDisconnect
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from course_ai_proxy.errors import StreamInterruptedError
from course_ai_proxy.llm.providers.base import StreamHandle

logger = structlog.get_logger()

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event(payload: Any) -> bytes:
    """Encode one ``data:`` event."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n".encode()


INTERRUPTED_EVENT = sse_event({"type": "error", "error": "Stream interrupted"})


class StreamRelay:
    """Ordered, unbuffered pipe from a StreamHandle to the caller."""

    def __init__(
        self,
        handle: StreamHandle,
        *,
        interrupted_event: bytes | None = INTERRUPTED_EVENT,
    ) -> None:
        self._handle = handle
        self._interrupted_event = interrupted_event
        self._iterator: AsyncGenerator[bytes] | None = None
        self._closed = False
        self.chunks_relayed = 0
        self.bytes_relayed = 0
        self.interrupted = False

    @property
    def provider(self) -> str:
        return self._handle.provider

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._iterator is None:
            self._iterator = self._pump()
        return self._iterator

    async def _pump(self) -> AsyncGenerator[bytes]:
        try:
            async for chunk in self._handle:
                if self._closed:
                    break
                if not chunk:
                    continue
                self.chunks_relayed += 1
                self.bytes_relayed += len(chunk)
                yield chunk
        except StreamInterruptedError as exc:
            self.interrupted = True
            logger.warning(
                "relay_stream_interrupted",
                provider=self.provider,
                chunks_relayed=self.chunks_relayed,
                error=str(exc),
            )
            if self._interrupted_event is not None:
                yield self._interrupted_event
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Stop relaying and release the upstream connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        iterator = self._iterator
        # A running generator closes itself through its own finally block.
        if iterator is not None and not iterator.ag_running:
            await iterator.aclose()
        await self._handle.aclose()
        logger.debug(
            "relay_closed",
            provider=self.provider,
            chunks_relayed=self.chunks_relayed,
            bytes_relayed=self.bytes_relayed,
            interrupted=self.interrupted,
        )


class EventStreamResponse(StreamingResponse):
    """``text/event-stream`` response that always runs its close callbacks."""

    media_type = "text/event-stream"

    def __init__(
        self,
        content: AsyncIterable[bytes],
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        on_close: Sequence[Callable[[], Awaitable[None]]] = (),
    ) -> None:
        super().__init__(
            content,
            status_code=status_code,
            headers={**SSE_HEADERS, **(headers or {})},
            media_type=self.media_type,
        )
        self._on_close = list(on_close)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except (ClientDisconnect, OSError):
            logger.info("event_stream_client_disconnected")
        finally:
            # Runs under cancellation too (disconnect cancels the stream task).
            with anyio.CancelScope(shield=True):
                for callback in self._on_close:
                    await callback()


def relay_response(handle: StreamHandle) -> EventStreamResponse:
    """Build the caller-facing response for an opened upstream stream.

    Cloud bodies are relayed untouched, so a dropped cloud stream simply
    ends; the local variant closes with the interruption event.
    """
    relay = StreamRelay(
        handle,
        interrupted_event=INTERRUPTED_EVENT if handle.signal_interruption else None,
    )
    return EventStreamResponse(relay, on_close=[relay.aclose])
