"""Thin async client for the Ollama HTTP API."""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from course_ai_proxy.errors import EngineUnavailableError, UpstreamRejectedError
from course_ai_proxy.llm.providers.base import StreamHandle
from course_ai_proxy.local_engine.schemas import GenerationOptions

logger = structlog.get_logger()

PROVIDER_NAME = "ollama"


class OllamaClient:
    """Calls ``/api/tags`` and ``/api/chat`` on a local Ollama server.

    Transport failures raise EngineUnavailableError; non-2xx answers
    raise UpstreamRejectedError carrying Ollama's own error text.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    @property
    def base_url(self) -> str:
        return self._base_url

    async def list_models(self) -> list[dict[str, Any]]:
        """Installed models as reported by ``/api/tags``."""
        data = await self._request_json("GET", "/api/tags")
        models = data.get("models") if isinstance(data, dict) else None
        return [m for m in models or [] if isinstance(m, dict)]

    async def probe(self) -> tuple[list[str], int]:
        """Model names plus round-trip latency in milliseconds."""
        start = time.perf_counter()
        models = await self.list_models()
        latency_ms = int((time.perf_counter() - start) * 1000)
        return [str(m.get("name")) for m in models], latency_ms

    async def open_chat_stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        options: GenerationOptions,
    ) -> StreamHandle:
        """Start a streamed chat; the body is NDJSON, one object per line."""
        request = self._client.build_request(
            "POST",
            f"{self._base_url}/api/chat",
            json={
                "model": model,
                "messages": messages,
                "stream": True,
                "options": options.to_ollama(),
            },
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise self._unavailable(exc) from exc

        if not response.is_success:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            except httpx.TransportError as exc:
                raise self._unavailable(exc) from exc
            finally:
                await response.aclose()
            raise UpstreamRejectedError(
                PROVIDER_NAME, response.status_code, body, label="Ollama"
            )

        return StreamHandle.from_response(PROVIDER_NAME, response)

    async def chat(
        self,
        model: str,
        messages: list[dict[str, str]],
        options: GenerationOptions,
    ) -> dict[str, Any]:
        """Non-streaming chat; returns Ollama's JSON answer."""
        data = await self._request_json(
            "POST",
            "/api/chat",
            json={
                "model": model,
                "messages": messages,
                "stream": False,
                "options": options.to_ollama(),
            },
        )
        return data if isinstance(data, dict) else {}

    async def warmup(self, model: str) -> None:
        """Load ``model`` into memory by generating a single token."""
        await self._request_json(
            "POST",
            "/api/chat",
            json={
                "model": model,
                "messages": [{"role": "user", "content": "hi"}],
                "stream": False,
                "options": {"num_predict": 1},
            },
        )

    async def _request_json(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, f"{self._base_url}{path}", json=json
            )
        except httpx.TransportError as exc:
            raise self._unavailable(exc) from exc

        if not response.is_success:
            raise UpstreamRejectedError(
                PROVIDER_NAME, response.status_code, response.text, label="Ollama"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamRejectedError(
                PROVIDER_NAME,
                502,
                f"invalid JSON from {path}",
                label="Ollama",
            ) from exc

    def _unavailable(self, exc: httpx.TransportError) -> EngineUnavailableError:
        logger.warning(
            "engine_unreachable",
            base_url=self._base_url,
            error=type(exc).__name__,
        )
        return EngineUnavailableError(
            PROVIDER_NAME,
            f"Ollama at {self._base_url} is unreachable: {exc or type(exc).__name__}",
            label="Ollama",
        )
