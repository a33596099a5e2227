"""Abstract upstream provider interface and the live stream handle."""

from __future__ import annotations

import abc
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import structlog

from course_ai_proxy.errors import (
    StreamInterruptedError,
    UpstreamRejectedError,
    UpstreamUnreachableError,
)
from course_ai_proxy.llm.schemas import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ChatRequest,
)

logger = structlog.get_logger()


class StreamHandle:
    """Live upstream body, not yet read.

    Wraps an async byte iterator and the callback that releases the
    upstream connection. ``aclose()`` may be called any number of times.
    Transport failures while iterating surface as StreamInterruptedError;
    ``signal_interruption`` tells the relay whether to announce them to
    the caller or just end the stream.
    """

    def __init__(
        self,
        provider: str,
        chunks: AsyncIterator[bytes],
        close: Callable[[], Awaitable[None]],
        *,
        status_code: int = 200,
        signal_interruption: bool = True,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.signal_interruption = signal_interruption
        self._chunks = chunks
        self._close = close
        self._closed = False

    @classmethod
    def from_response(
        cls,
        provider: str,
        response: httpx.Response,
        *,
        signal_interruption: bool = True,
    ) -> StreamHandle:
        """Wrap an httpx response opened with ``stream=True``."""

        async def _chunks() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            except (httpx.TransportError, httpx.StreamError) as exc:
                raise StreamInterruptedError(
                    f"{provider}: {exc or type(exc).__name__}"
                ) from exc

        return cls(
            provider,
            _chunks(),
            response.aclose,
            status_code=response.status_code,
            signal_interruption=signal_interruption,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._close()


class UpstreamProvider(abc.ABC):
    """Base class for chat-completion providers.

    A provider performs exactly one outbound dispatch per call and either
    hands back the live stream or raises a ProviderError subclass.
    Retrying and choosing the next provider is FallbackController's job.
    """

    name: str = ""
    requires_credential: bool = False
    # False keeps the relayed body byte-for-byte the upstream's own.
    signals_interruption: bool = True

    def __init__(
        self,
        label: str = "",
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.label = label or self.name
        self.temperature = temperature
        self.max_tokens = max_tokens

    def sampling(self, request: ChatRequest) -> dict[str, Any]:
        """Caller's sampling fields, configured defaults where omitted."""
        return {
            "temperature": (
                self.temperature if request.temperature is None else request.temperature
            ),
            "max_tokens": request.max_tokens or self.max_tokens,
        }

    @abc.abstractmethod
    async def dispatch(self, request: ChatRequest) -> StreamHandle:
        """Start a streamed completion.

        Raises:
            CredentialMissingError: Provider needs a secret and none exists.
            UpstreamRejectedError: Provider answered with non-2xx.
            UpstreamUnreachableError: Provider could not be reached.
        """
        ...

    async def _open_stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> StreamHandle:
        """POST ``payload`` and return the un-read body on 2xx.

        Non-2xx bodies are read in full so the caller sees the provider's
        own error text.
        """
        request = client.build_request("POST", url, json=payload, headers=headers)
        with self._measure_latency() as timer:
            try:
                response = await client.send(request, stream=True)
            except httpx.TransportError as exc:
                logger.warning(
                    "upstream_unreachable",
                    provider=self.name,
                    url=url,
                    error=type(exc).__name__,
                )
                raise UpstreamUnreachableError(
                    self.name,
                    f"{self.label} is unreachable: {exc or type(exc).__name__}",
                    label=self.label,
                ) from exc

        if not response.is_success:
            try:
                raw = await response.aread()
            except httpx.TransportError as exc:
                raise UpstreamUnreachableError(
                    self.name,
                    f"{self.label} dropped the error response: {type(exc).__name__}",
                    label=self.label,
                ) from exc
            finally:
                await response.aclose()
            body = raw.decode(response.encoding or "utf-8", errors="replace")
            logger.warning(
                "upstream_rejected",
                provider=self.name,
                status_code=response.status_code,
                body=body[:500],
            )
            raise UpstreamRejectedError(
                self.name, response.status_code, body, label=self.label
            )

        logger.info(
            "upstream_stream_opened",
            provider=self.name,
            status_code=response.status_code,
            latency_ms=timer.elapsed_ms,
        )
        return StreamHandle.from_response(
            self.name, response, signal_interruption=self.signals_interruption
        )

    def _measure_latency(self) -> _LatencyTimer:
        """Context manager for measuring time to response headers."""
        return _LatencyTimer()


class _LatencyTimer:
    """Simple latency measurement helper."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> _LatencyTimer:
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)
