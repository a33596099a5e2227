"""In-memory performance counters for the local engine."""

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class EngineStats:
    total_requests: int = 0
    total_tokens: int = 0
    completed: int = 0
    avg_response_time_ms: float = 0.0
    errors: int = 0
    model_usage: dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)

    def record_request(self, model: str) -> None:
        self.total_requests += 1
        self.model_usage[model] = self.model_usage.get(model, 0) + 1

    def record_completion(self, tokens: int, duration_ms: float) -> None:
        """Fold one finished generation into the running average."""
        self.completed += 1
        self.total_tokens += tokens
        self.avg_response_time_ms += (
            duration_ms - self.avg_response_time_ms
        ) / self.completed

    def record_error(self) -> None:
        self.errors += 1

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    def snapshot(self) -> dict[str, Any]:
        """Wire representation (camelCase, as the dashboard reads it)."""
        return {
            "totalRequests": self.total_requests,
            "totalTokens": self.total_tokens,
            "avgResponseTimeMs": round(self.avg_response_time_ms),
            "modelUsage": dict(self.model_usage),
            "errors": self.errors,
        }
