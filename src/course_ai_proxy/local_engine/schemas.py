"""Request schemas for the local-engine server."""

from pydantic import BaseModel, Field

from course_ai_proxy.llm.schemas import ChatRequest

REPEAT_PENALTY = 1.1


class GenerationOptions(BaseModel):
    """Sampling options; unset fields fall back to the request-level values."""

    temperature: float | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    top_p: float = 0.9
    top_k: int = 40

    def to_ollama(self) -> dict[str, float | int | None]:
        return {
            "temperature": self.temperature,
            "num_predict": self.max_tokens,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "repeat_penalty": REPEAT_PENALTY,
        }


class LocalChatRequest(ChatRequest):
    """Same shape the proxy accepts, plus optional engine ``options``."""

    options: GenerationOptions | None = None

    def generation_options(self) -> GenerationOptions:
        options = self.options or GenerationOptions()
        return options.model_copy(
            update={
                "temperature": (
                    options.temperature
                    if options.temperature is not None
                    else self.temperature
                ),
                "max_tokens": options.max_tokens or self.max_tokens,
            }
        )


class WarmupRequest(BaseModel):
    model: str | None = None


class ModelSwitchRequest(BaseModel):
    model: str = Field(min_length=1)
