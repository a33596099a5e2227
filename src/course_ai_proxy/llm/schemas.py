"""Shared schemas for the completion proxy."""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1024

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """One turn of the conversation."""

    role: Role
    content: str


class ChatRequest(BaseModel):
    """Inbound chat-completion request.

    Streaming is implicit: the proxy always asks upstream for a stream.
    Omitted ``model``, ``temperature`` and ``max_tokens`` stay ``None``
    so each provider can apply its configured defaults.
    """

    messages: list[ChatMessage] = Field(min_length=1)
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, gt=0)

    @field_validator("model", mode="before")
    @classmethod
    def _blank_model_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def wire_messages(self) -> list[dict[str, str]]:
        """Messages as plain dicts, in the caller's order."""
        return [m.model_dump() for m in self.messages]
