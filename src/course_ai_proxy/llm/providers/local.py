"""Local provider: the companion local-engine server."""

from typing import Any

import httpx

from course_ai_proxy.llm.providers.base import StreamHandle, UpstreamProvider
from course_ai_proxy.llm.schemas import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ChatRequest,
)


class LocalProvider(UpstreamProvider):
    """Streams completions from the companion server in front of Ollama.

    The companion already emits SSE with per-token metadata, so its body
    is relayed as-is. Cloud model ids mean nothing to the local engine:
    ``model`` is sent only when the caller or configuration names one,
    otherwise the companion's active model answers.
    """

    name = "local"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = "http://localhost:3001",
        model: str | None = None,
        label: str = "Local AI",
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        super().__init__(label, temperature=temperature, max_tokens=max_tokens)
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._model = model

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/chat"

    def build_payload(self, request: ChatRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": request.wire_messages(),
            **self.sampling(request),
        }
        model = self._model or request.model
        if model:
            payload["model"] = model
        return payload

    async def dispatch(self, request: ChatRequest) -> StreamHandle:
        return await self._open_stream(
            self._client,
            self.endpoint,
            self.build_payload(request),
            {"Content-Type": "application/json"},
        )
