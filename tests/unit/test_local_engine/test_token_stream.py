"""Tests for NDJSON splitting and token event augmentation."""

import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from course_ai_proxy.errors import StreamInterruptedError
from course_ai_proxy.local_engine.context import ContextPlan
from course_ai_proxy.local_engine.stats import EngineStats
from course_ai_proxy.local_engine.streaming import (
    DONE_EVENT,
    TokenStreamAugmenter,
    ndjson_lines,
)
from course_ai_proxy.relay import INTERRUPTED_EVENT


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def _line(content: str = "", *, done: bool = False, **extra: object) -> bytes:
    payload: dict[str, object] = {
        "model": "llama3",
        "message": {"role": "assistant", "content": content},
        "done": done,
        **extra,
    }
    return json.dumps(payload).encode() + b"\n"


def _decode(event: bytes) -> Any:
    text = event.decode()
    assert text.startswith("data: ") and text.endswith("\n\n")
    body = text[len("data: ") : -2]
    return body if body == "[DONE]" else json.loads(body)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _augmenter(
    clock: FakeClock, stats: EngineStats | None = None, **kwargs: object
) -> TokenStreamAugmenter:
    plan = ContextPlan(
        messages=[{"role": "user", "content": "hi"}],
        truncated=False,
        estimated_tokens=5,
        original_tokens=5,
    )
    return TokenStreamAugmenter(
        model="llama3",
        plan=plan,
        stats=stats or EngineStats(),
        started_at=clock.now,
        clock=clock,
        **kwargs,  # type: ignore[arg-type]
    )


class TestNdjsonLines:
    async def test_lines_split_across_chunks(self) -> None:
        lines = [
            line
            async for line in ndjson_lines(_chunks(b'{"a":', b' 1}\n{"b"', b": 2}\n"))
        ]
        assert lines == ['{"a": 1}', '{"b": 2}']

    async def test_trailing_line_without_newline(self) -> None:
        lines = [line async for line in ndjson_lines(_chunks(b"{}\n", b'{"x": 1}'))]
        assert lines == ["{}", '{"x": 1}']

    async def test_multibyte_character_split(self) -> None:
        encoded = '{"c": "ü"}\n'.encode()
        split = encoded.index(b"\xc3") + 1
        lines = [
            line
            async for line in ndjson_lines(_chunks(encoded[:split], encoded[split:]))
        ]
        assert json.loads(lines[0]) == {"c": "ü"}

    async def test_blank_lines_skipped(self) -> None:
        lines = [line async for line in ndjson_lines(_chunks(b"\n\n{}\n\n"))]
        assert lines == ["{}"]


class TestTokenStreamAugmenter:
    async def test_event_sequence(self) -> None:
        clock = FakeClock()
        stats = EngineStats()
        augmenter = _augmenter(clock, stats, queue_position=2)

        async def body() -> AsyncIterator[bytes]:
            clock.now += 0.125
            yield _line("Hel")
            clock.now += 0.125
            yield _line("lo")
            clock.now += 0.25
            yield _line(done=True, eval_count=2)

        events = [_decode(e) async for e in augmenter.events(body())]

        meta, first, second, done, terminator = events
        assert meta["type"] == "meta"
        assert meta["model"] == "llama3"
        assert meta["queuePosition"] == 2
        assert meta["contextOptimized"] is False

        assert first == {
            "type": "token",
            "content": "Hel",
            "done": False,
            "tokenIndex": 1,
            "elapsedMs": 125,
        }
        assert second["tokenIndex"] == 2
        assert second["elapsedMs"] == 250

        assert done["type"] == "done"
        assert done["done"] is True
        assert done["metrics"]["totalTokens"] == 2
        assert done["metrics"]["totalDurationMs"] == 500
        assert done["metrics"]["timeToFirstTokenMs"] == 125
        assert done["metrics"]["tokensPerSecond"] == 4
        assert terminator == "[DONE]"

        assert stats.completed == 1
        assert stats.total_tokens == 2

    async def test_empty_content_not_counted(self) -> None:
        augmenter = _augmenter(FakeClock())
        events = augmenter.handle_line(_line("").decode())
        assert events == []
        assert augmenter.token_count == 0

    async def test_malformed_line_skipped(self) -> None:
        augmenter = _augmenter(FakeClock())
        assert augmenter.handle_line("not json") == []
        assert augmenter.handle_line("[1, 2]") == []

    async def test_engine_error_forwarded(self) -> None:
        augmenter = _augmenter(FakeClock())
        events = augmenter.handle_line('{"error": "model \\"x\\" not found"}')
        assert _decode(events[0]) == {"type": "error", "error": 'model "x" not found'}

    async def test_done_reported_once(self) -> None:
        stats = EngineStats()
        augmenter = _augmenter(FakeClock(), stats)
        augmenter.handle_line(_line(done=True).decode())
        assert augmenter.handle_line(_line(done=True).decode()) == []
        assert stats.completed == 1

    async def test_interrupted_stream(self) -> None:
        stats = EngineStats()
        augmenter = _augmenter(FakeClock(), stats)

        async def body() -> AsyncIterator[bytes]:
            yield _line("partial")
            raise StreamInterruptedError("ollama: connection reset")

        events = [e async for e in augmenter.events(body())]

        assert events[-1] == INTERRUPTED_EVENT
        assert DONE_EVENT not in events
        assert _decode(events[1])["content"] == "partial"
        assert stats.errors == 1
        assert stats.completed == 0

    @pytest.mark.parametrize("truncated", [True, False])
    async def test_meta_reports_optimization(self, truncated: bool) -> None:
        plan = ContextPlan(
            messages=[], truncated=truncated, estimated_tokens=9, original_tokens=20
        )
        augmenter = TokenStreamAugmenter(
            model="phi3", plan=plan, stats=EngineStats(), started_at=0.0
        )
        meta = _decode(augmenter.meta_event())
        assert meta["contextOptimized"] is truncated
        assert meta["estimatedInputTokens"] == 9
