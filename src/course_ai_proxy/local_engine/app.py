"""Companion server in front of a local Ollama engine."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from course_ai_proxy.api.middleware import RequestLoggingMiddleware
from course_ai_proxy.config import settings
from course_ai_proxy.errors import ProviderError
from course_ai_proxy.local_engine.routes import router
from course_ai_proxy.local_engine.runtime import create_runtime
from course_ai_proxy.logging_config import configure_logging

logger = structlog.get_logger()

ENGINE_CONNECT_TIMEOUT = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the engine runtime and probe Ollama once at startup."""
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
        service="local-engine",
    )
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(ENGINE_CONNECT_TIMEOUT, read=None),
    )
    runtime = create_runtime(settings, client)
    app.state.runtime = runtime

    try:
        models, _latency = await runtime.engine.probe()
        logger.info("engine_connected", ollama_url=settings.ollama_url, models=models)
    except ProviderError as exc:
        logger.warning(
            "engine_offline",
            ollama_url=settings.ollama_url,
            error=str(exc),
            hint="start it with: ollama serve",
        )

    logger.info(
        "local_engine_started",
        port=settings.ai_port,
        max_concurrent=runtime.gate.max_concurrent,
        admission_mode=str(runtime.gate.mode),
        active_model=runtime.selector.active,
    )
    try:
        yield
    finally:
        await client.aclose()
        logger.info("local_engine_stopped")


app = FastAPI(
    title="Course AI Local Engine",
    description="Queued, metadata-streaming front for a local Ollama engine",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.is_dev,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Same 400 shape the dashboard already handles."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "messages[] with {role, content} entries is required",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all: keep the companion's ``{error, details}`` body shape."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
    )


app.include_router(router)
