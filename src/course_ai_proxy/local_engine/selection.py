"""Active-model selection and warm-up for the local engine."""

from __future__ import annotations

import asyncio

import structlog

from course_ai_proxy.errors import EngineUnavailableError
from course_ai_proxy.local_engine.ollama import PROVIDER_NAME, OllamaClient

logger = structlog.get_logger()


class ModelSelector:
    """Holds the model used when a request does not name one.

    Switching only affects requests that start afterwards; generations
    already streaming keep the model they started with.
    """

    def __init__(self, default_model: str) -> None:
        self._active = default_model

    @property
    def active(self) -> str:
        return self._active

    def resolve(self, requested: str | None) -> str:
        return requested or self._active

    def switch(self, model: str) -> str:
        """Make ``model`` active; returns the previously active model."""
        previous = self._active
        if model != previous:
            self._active = model
            logger.info("model_switched", previous=previous, model=model)
        return previous


class WarmupCoordinator:
    """Idempotent model preloading.

    Concurrent warm-ups of the same model share one engine call. Warm-up
    does not take an admission slot, so it can run next to generations.
    """

    def __init__(self, engine: OllamaClient, timeout: float = 120.0) -> None:
        self._engine = engine
        self._timeout = timeout
        self._inflight: dict[str, asyncio.Task[None]] = {}
        self.warmed: set[str] = set()

    def in_progress(self, model: str) -> bool:
        return model in self._inflight

    async def warmup(self, model: str) -> None:
        task = self._inflight.get(model)
        if task is None:
            task = asyncio.create_task(self._run(model))
            self._inflight[model] = task
            task.add_done_callback(lambda _t: self._inflight.pop(model, None))
        # One impatient caller must not cancel the load for everyone else.
        await asyncio.shield(task)

    async def _run(self, model: str) -> None:
        logger.info("model_warmup_started", model=model)
        try:
            await asyncio.wait_for(self._engine.warmup(model), self._timeout)
        except TimeoutError as exc:
            raise EngineUnavailableError(
                PROVIDER_NAME,
                f"warm-up of {model} timed out after {self._timeout:g}s",
                label="Ollama",
            ) from exc
        self.warmed.add(model)
        logger.info("model_warmup_finished", model=model)
