"""Cloud provider: OpenAI-compatible chat completions (Groq by default)."""

from typing import Any

import httpx

from course_ai_proxy.errors import CredentialMissingError
from course_ai_proxy.llm.credentials import CredentialResolver
from course_ai_proxy.llm.providers.base import StreamHandle, UpstreamProvider
from course_ai_proxy.llm.schemas import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ChatRequest,
)


class CloudProvider(UpstreamProvider):
    """Streams completions from a hosted OpenAI-compatible API.

    The API key is resolved on every dispatch, before any outbound
    request, so a missing key never turns into an unauthenticated call.
    """

    name = "cloud"
    requires_credential = True
    signals_interruption = False

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialResolver,
        *,
        base_url: str = "https://api.groq.com/openai/v1",
        default_model: str = "llama3-8b-8192",
        label: str = "Groq",
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        super().__init__(label, temperature=temperature, max_tokens=max_tokens)
        self._client = client
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def build_payload(self, request: ChatRequest) -> dict[str, Any]:
        return {
            "model": request.model or self._default_model,
            "messages": request.wire_messages(),
            **self.sampling(request),
            "stream": True,
        }

    async def dispatch(self, request: ChatRequest) -> StreamHandle:
        try:
            api_key = await self._credentials.resolve()
        except CredentialMissingError as exc:
            raise CredentialMissingError(self.name, label=self.label) from exc

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return await self._open_stream(
            self._client, self.endpoint, self.build_payload(request), headers
        )
