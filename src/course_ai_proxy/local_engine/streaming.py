"""Turn Ollama's NDJSON chat stream into metadata-rich SSE events.

Event sequence: one ``meta`` event, one ``token`` event per non-empty
content piece, one ``done`` event with metrics when Ollama reports
completion, then ``data: [DONE]``. A dropped engine connection ends the
stream with the ``Stream interrupted`` error event instead.
"""

from __future__ import annotations

import codecs
import json
import time
from collections.abc import AsyncGenerator, AsyncIterable, Callable
from typing import Any

import structlog

from course_ai_proxy.errors import StreamInterruptedError
from course_ai_proxy.local_engine.context import ContextPlan
from course_ai_proxy.local_engine.stats import EngineStats
from course_ai_proxy.relay import INTERRUPTED_EVENT, sse_event

logger = structlog.get_logger()

DONE_EVENT = sse_event("[DONE]")


async def ndjson_lines(chunks: AsyncIterable[bytes]) -> AsyncGenerator[str, None]:
    """Split a byte stream into lines, keeping partial lines across chunks."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            if line.strip():
                yield line
    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield buffer


class TokenStreamAugmenter:
    """Annotate each streamed token with timing and count metadata."""

    def __init__(
        self,
        *,
        model: str,
        plan: ContextPlan,
        stats: EngineStats,
        started_at: float,
        queue_position: int = 0,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.model = model
        self.plan = plan
        self.stats = stats
        self.started_at = started_at
        self.queue_position = queue_position
        self._clock = clock
        self.token_count = 0
        self.first_token_at: float | None = None
        self.finished = False

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self.started_at) * 1000)

    def meta_event(self) -> bytes:
        return sse_event(
            {
                "type": "meta",
                "model": self.model,
                "contextOptimized": self.plan.truncated,
                "estimatedInputTokens": self.plan.estimated_tokens,
                "queuePosition": self.queue_position,
                "startTime": int(time.time() * 1000),
            }
        )

    def handle_line(self, line: str) -> list[bytes]:
        """Events produced by one NDJSON line (malformed lines yield none)."""
        try:
            parsed: Any = json.loads(line)
        except ValueError:
            logger.debug("engine_line_skipped", line=line[:200])
            return []
        if not isinstance(parsed, dict):
            return []

        events: list[bytes] = []
        if parsed.get("error"):
            events.append(sse_event({"type": "error", "error": str(parsed["error"])}))

        message = parsed.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if content:
            self.token_count += 1
            if self.first_token_at is None:
                self.first_token_at = self._clock()
            events.append(
                sse_event(
                    {
                        "type": "token",
                        "content": content,
                        "done": False,
                        "tokenIndex": self.token_count,
                        "elapsedMs": self._elapsed_ms(),
                    }
                )
            )

        if parsed.get("done") and not self.finished:
            events.append(self._done_event())
        return events

    def _done_event(self) -> bytes:
        self.finished = True
        duration_ms = self._elapsed_ms()
        first_token_ms = (
            int((self.first_token_at - self.started_at) * 1000)
            if self.first_token_at is not None
            else 0
        )
        tokens_per_second = (
            round(self.token_count / (duration_ms / 1000))
            if self.token_count and duration_ms > 0
            else 0
        )
        self.stats.record_completion(self.token_count, duration_ms)
        return sse_event(
            {
                "type": "done",
                "content": "",
                "done": True,
                "metrics": {
                    "totalTokens": self.token_count,
                    "totalDurationMs": duration_ms,
                    "timeToFirstTokenMs": first_token_ms,
                    "tokensPerSecond": tokens_per_second,
                    "model": self.model,
                    "contextOptimized": self.plan.truncated,
                },
            }
        )

    async def events(self, chunks: AsyncIterable[bytes]) -> AsyncGenerator[bytes, None]:
        yield self.meta_event()
        try:
            async for line in ndjson_lines(chunks):
                for event in self.handle_line(line):
                    yield event
        except StreamInterruptedError as exc:
            self.stats.record_error()
            logger.warning(
                "engine_stream_interrupted",
                model=self.model,
                tokens=self.token_count,
                error=str(exc),
            )
            yield INTERRUPTED_EVENT
            return
        yield DONE_EVENT
