"""Context-window fitting for local models.

Token counts are estimates (about four characters per token); the aim
is to stay clear of the engine's context limit, not to be exact.
"""

import math
from dataclasses import dataclass

MODEL_CONTEXT_LIMITS: dict[str, int] = {
    "llama3": 8192,
    "llama3.1": 8192,
    "llama3.2": 8192,
    "mistral": 32768,
    "mixtral": 32768,
    "phi3": 4096,
    "gemma2": 8192,
    "qwen2": 32768,
}
DEFAULT_CONTEXT_LIMIT = 8192
MESSAGE_OVERHEAD_TOKENS = 4
SAFETY_MARGIN_TOKENS = 200

OMITTED_TEMPLATE = (
    "[{count} earlier messages omitted for context optimization. "
    "Focus on the most recent conversation.]"
)


@dataclass(frozen=True)
class ContextPlan:
    """Messages to send plus how they were derived."""

    messages: list[dict[str, str]]
    truncated: bool
    estimated_tokens: int
    original_tokens: int


def context_limit(model: str) -> int:
    """Context size for ``model``, matching ``name:tag`` on its base name."""
    if model in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[model]
    return MODEL_CONTEXT_LIMITS.get(model.split(":")[0], DEFAULT_CONTEXT_LIMIT)


def estimate_tokens(text: str | None) -> int:
    return math.ceil(len(text or "") / 4)


def _message_tokens(message: dict[str, str]) -> int:
    return estimate_tokens(message.get("content")) + MESSAGE_OVERHEAD_TOKENS


def optimize_context(
    model: str,
    messages: list[dict[str, str]],
    max_response_tokens: int = 1024,
) -> ContextPlan:
    """Fit ``messages`` into the model's context window.

    Keeps the first system prompt and as many of the most recent other
    messages as fit, with a placeholder standing in for what was dropped.
    """
    available = context_limit(model) - max_response_tokens - SAFETY_MARGIN_TOKENS
    original = sum(_message_tokens(m) for m in messages)

    if original <= available:
        return ContextPlan(
            messages=list(messages),
            truncated=False,
            estimated_tokens=original,
            original_tokens=original,
        )

    system = next((m for m in messages if m.get("role") == "system"), None)
    others = [m for m in messages if m.get("role") != "system"]

    kept: list[dict[str, str]] = []
    total = _message_tokens(system) if system else 0
    omitted = 0
    for index in range(len(others) - 1, -1, -1):
        cost = _message_tokens(others[index])
        if total + cost > available:
            omitted = index + 1
            break
        total += cost
        kept.insert(0, others[index])

    optimized: list[dict[str, str]] = [system] if system else []
    if omitted:
        optimized.append(
            {"role": "system", "content": OMITTED_TEMPLATE.format(count=omitted)}
        )
    optimized.extend(kept)

    return ContextPlan(
        messages=optimized,
        truncated=True,
        estimated_tokens=total,
        original_tokens=original,
    )
