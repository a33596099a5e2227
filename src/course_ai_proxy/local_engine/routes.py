"""Local-engine HTTP endpoints.

Routes
------
- ``GET   /health``     — Engine connectivity, installed models, stats
- ``GET   /models``     — Installed models with context lengths
- ``POST  /warmup``     — Preload a model
- ``GET   /model``      — Currently active model
- ``PUT   /model``      — Hot-switch the active model
- ``POST  /chat``       — Streamed chat with per-token metadata
- ``POST  /chat/sync``  — Non-streaming chat
- ``GET   /stats``      — Counters, gate occupancy, uptime
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Annotated, Any, cast

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from course_ai_proxy.errors import (
    EngineBusyError,
    EngineUnavailableError,
    ProviderError,
    UpstreamRejectedError,
)
from course_ai_proxy.local_engine.context import context_limit, optimize_context
from course_ai_proxy.local_engine.runtime import EngineRuntime
from course_ai_proxy.local_engine.schemas import (
    LocalChatRequest,
    ModelSwitchRequest,
    WarmupRequest,
)
from course_ai_proxy.local_engine.streaming import TokenStreamAugmenter
from course_ai_proxy.relay import EventStreamResponse

logger = structlog.get_logger()

router = APIRouter(tags=["local-engine"])


async def get_runtime(request: Request) -> EngineRuntime:
    """Retrieve EngineRuntime from app state (set during lifespan)."""
    return cast(EngineRuntime, request.app.state.runtime)


RuntimeDep = Annotated[EngineRuntime, Depends(get_runtime)]


def _busy_response(exc: EngineBusyError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "error": "AI is busy, please retry shortly",
            "activeRequests": exc.active,
            "queuedRequests": exc.queued,
        },
        headers={"Retry-After": str(exc.retry_after)},
    )


def _engine_error_response(exc: ProviderError, error: str) -> JSONResponse:
    if isinstance(exc, UpstreamRejectedError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": error, "details": exc.body},
        )
    return JSONResponse(
        status_code=503,
        content={"error": "AI is temporarily unavailable", "details": str(exc)},
    )


@router.get("/health")
async def health(runtime: RuntimeDep) -> dict[str, Any]:
    """Report engine connectivity; the server itself is always online."""
    try:
        models, latency_ms = await runtime.engine.probe()
    except ProviderError as exc:
        return {"status": "online", "ollama": "disconnected", "error": str(exc)}

    return {
        "status": "online",
        "ollama": "connected",
        "latencyMs": latency_ms,
        "models": models,
        "activeModel": runtime.selector.active,
        "stats": {
            "totalRequests": runtime.stats.total_requests,
            "totalTokens": runtime.stats.total_tokens,
            "avgResponseTimeMs": round(runtime.stats.avg_response_time_ms),
            "activeRequests": runtime.gate.active,
            "queuedRequests": runtime.gate.queued,
        },
        "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
    }


@router.get("/models", response_model=None)
async def list_models(runtime: RuntimeDep) -> dict[str, Any] | JSONResponse:
    try:
        models = await runtime.engine.list_models()
    except ProviderError as exc:
        return JSONResponse(
            status_code=503,
            content={"error": "Ollama is offline", "details": str(exc)},
        )

    return {
        "models": [
            {
                "name": m.get("name"),
                "size": m.get("size"),
                "modified_at": m.get("modified_at"),
                "contextLength": context_limit(str(m.get("name", ""))),
                "details": m.get("details") or {},
            }
            for m in models
        ],
        "activeModel": runtime.selector.active,
    }


@router.post("/warmup", response_model=None)
async def warmup(body: WarmupRequest, runtime: RuntimeDep) -> Response:
    """Preload a model. Safe to repeat and to run during generations."""
    if not body.model:
        return JSONResponse(status_code=400, content={"error": "model is required"})

    try:
        await runtime.warmup.warmup(body.model)
    except EngineUnavailableError as exc:
        return JSONResponse(
            status_code=503,
            content={"error": "Ollama offline", "details": str(exc)},
        )
    except UpstreamRejectedError as exc:
        return JSONResponse(
            status_code=500,
            content={"error": "Warmup failed", "details": exc.body},
        )
    return JSONResponse(content={"status": "warmed_up", "model": body.model})


@router.get("/model")
async def get_active_model(runtime: RuntimeDep) -> dict[str, str]:
    return {"model": runtime.selector.active}


@router.put("/model")
async def switch_model(body: ModelSwitchRequest, runtime: RuntimeDep) -> dict[str, str]:
    """Change the model used by subsequent requests; no restart needed."""
    previous = runtime.selector.switch(body.model)
    return {"model": runtime.selector.active, "previous": previous}


@router.post("/chat", response_model=None)
async def chat(body: LocalChatRequest, runtime: RuntimeDep) -> Response:
    """Stream a chat completion through the admission gate.

    The slot is held until the outward stream ends, whichever way it ends.
    """
    model = runtime.selector.resolve(body.model)
    options = body.generation_options()
    plan = optimize_context(model, body.wire_messages(), options.max_tokens or 0)
    runtime.stats.record_request(model)
    started_at = time.perf_counter()

    try:
        slot = await runtime.gate.acquire()
    except EngineBusyError as exc:
        runtime.stats.record_error()
        return _busy_response(exc)

    try:
        handle = await runtime.engine.open_chat_stream(model, plan.messages, options)
    except ProviderError as exc:
        slot.release()
        runtime.stats.record_error()
        logger.warning("engine_chat_failed", model=model, error=str(exc))
        return _engine_error_response(exc, "Ollama request failed")
    except BaseException:
        slot.release()
        raise

    if body.model:
        runtime.selector.switch(body.model)

    logger.info(
        "engine_chat_started",
        model=model,
        context_optimized=plan.truncated,
        estimated_tokens=plan.estimated_tokens,
        queue_position=slot.queue_position,
    )
    augmenter = TokenStreamAugmenter(
        model=model,
        plan=plan,
        stats=runtime.stats,
        started_at=started_at,
        queue_position=slot.queue_position,
    )
    return EventStreamResponse(
        augmenter.events(handle),
        on_close=[handle.aclose, slot.aclose],
    )


@router.post("/chat/sync", response_model=None)
async def chat_sync(body: LocalChatRequest, runtime: RuntimeDep) -> Response:
    model = runtime.selector.resolve(body.model)
    options = body.generation_options()
    plan = optimize_context(model, body.wire_messages(), options.max_tokens or 0)
    runtime.stats.record_request(model)

    try:
        slot = await runtime.gate.acquire()
    except EngineBusyError as exc:
        runtime.stats.record_error()
        return _busy_response(exc)

    started_at = time.perf_counter()
    async with slot:
        try:
            data = await runtime.engine.chat(model, plan.messages, options)
        except ProviderError as exc:
            runtime.stats.record_error()
            return _engine_error_response(exc, "Ollama request failed")

    duration_ms = (time.perf_counter() - started_at) * 1000
    runtime.stats.record_completion(int(data.get("eval_count") or 0), duration_ms)
    message = data.get("message")
    return JSONResponse(
        content={
            "content": (message.get("content") if isinstance(message, dict) else "")
            or "",
            "model": data.get("model", model),
            "total_duration": data.get("total_duration"),
        }
    )


@router.get("/stats")
async def stats(runtime: RuntimeDep) -> dict[str, Any]:
    return {
        **runtime.stats.snapshot(),
        "activeRequests": runtime.gate.active,
        "queuedRequests": runtime.gate.queued,
        "activeModel": runtime.selector.active,
        "uptime": round(runtime.stats.uptime_seconds, 1),
    }
