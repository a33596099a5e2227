"""FastAPI application with lifespan management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from course_ai_proxy.api.middleware import RequestLoggingMiddleware
from course_ai_proxy.api.routes.chat import router as chat_router
from course_ai_proxy.config import settings
from course_ai_proxy.llm import create_fallback_controller, create_http_client
from course_ai_proxy.llm.fallback import FallbackController
from course_ai_proxy.logging_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    Startup:
        - Configure logging.
        - Open the shared outbound HTTP client.
        - Build the provider chain.
    Shutdown:
        - Close the outbound HTTP client (drops pooled connections).
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
        service="proxy",
    )
    client = create_http_client(settings)
    app.state.http_client = client
    app.state.fallback_controller = create_fallback_controller(settings, client)

    logger.info("app_started", environment=str(settings.environment))
    try:
        yield
    finally:
        await client.aclose()
        logger.info("app_stopped")


app = FastAPI(
    title="Course AI Proxy",
    description="Streaming chat-completion proxy with cloud/local fallback",
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


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness plus the configured provider chain."""
    controller: FallbackController | None = getattr(
        app.state, "fallback_controller", None
    )
    providers = [p.name for p in controller.providers] if controller else []
    return JSONResponse(
        status_code=200 if providers else 503,
        content={
            "status": "ok" if providers else "starting",
            "providers": providers,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Reject malformed chat requests before any upstream work."""
    message = _format_validation_errors(exc)
    logger.info("request_validation_failed", path=request.url.path, error=message)
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": str(exc) or "Internal server error"},
    )


app.include_router(chat_router, prefix="/api")
