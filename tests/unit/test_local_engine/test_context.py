"""Tests for context-window fitting."""

from course_ai_proxy.local_engine.context import (
    DEFAULT_CONTEXT_LIMIT,
    context_limit,
    estimate_tokens,
    optimize_context,
)


def _msg(role: str, chars: int, tag: str = "") -> dict[str, str]:
    return {"role": role, "content": (tag or role[0]) * chars}


class TestContextLimit:
    def test_known_model(self) -> None:
        assert context_limit("llama3") == 8192
        assert context_limit("mistral") == 32768
        assert context_limit("phi3") == 4096

    def test_tagged_model_uses_base_name(self) -> None:
        assert context_limit("mistral:7b-instruct") == 32768

    def test_unknown_model(self) -> None:
        assert context_limit("tinyllama") == DEFAULT_CONTEXT_LIMIT


class TestEstimateTokens:
    def test_four_chars_per_token(self) -> None:
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0


class TestOptimizeContext:
    def test_short_conversation_untouched(self) -> None:
        messages = [_msg("system", 20), _msg("user", 40)]
        plan = optimize_context("llama3", messages)

        assert plan.truncated is False
        assert plan.messages == messages
        assert plan.estimated_tokens == plan.original_tokens == 5 + 4 + 10 + 4

    def test_keeps_system_and_recent_messages(self) -> None:
        # llama3: 8192 - 1024 - 200 = 6968 tokens available,
        # each 4000-char message costs 1004.
        system = {"role": "system", "content": "be brief"}
        history = [
            _msg("user" if i % 2 else "assistant", 4000, str(i)) for i in range(10)
        ]
        plan = optimize_context("llama3", [system, *history])

        assert plan.truncated is True
        assert plan.messages[0] == system
        placeholder = plan.messages[1]
        assert placeholder["role"] == "system"
        assert "4 earlier messages omitted" in placeholder["content"]
        assert plan.messages[2:] == history[4:]
        assert plan.estimated_tokens == 6 + 6 * 1004
        assert plan.estimated_tokens <= 6968

    def test_without_system_prompt(self) -> None:
        history = [_msg("user", 4000, str(i)) for i in range(10)]
        plan = optimize_context("llama3", history)

        assert plan.truncated is True
        assert "earlier messages omitted" in plan.messages[0]["content"]
        assert plan.messages[-1] == history[-1]

    def test_only_oldest_dropped_still_marked(self) -> None:
        history = [_msg("user", 4000, str(i)) for i in range(7)]
        plan = optimize_context("llama3", history)

        assert "1 earlier messages omitted" in plan.messages[0]["content"]
        assert plan.messages[1:] == history[1:]

    def test_larger_window_keeps_more(self) -> None:
        history = [_msg("user", 4000, str(i)) for i in range(10)]
        assert optimize_context("mistral", history).truncated is False

    def test_response_budget_reduces_room(self) -> None:
        history = [_msg("user", 4000, str(i)) for i in range(6)]
        assert optimize_context("llama3", history, 1024).truncated is False
        assert optimize_context("llama3", history, 2048).truncated is True
