"""Chat completion proxy endpoint.

Routes
------
- ``POST  /api/chat``  — Stream a chat completion from the provider chain

Failures before the first upstream byte become regular error responses.
Once streaming has started the only option left is ending the stream,
which StreamRelay handles.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from course_ai_proxy.api.deps import get_fallback_controller
from course_ai_proxy.errors import (
    AllProvidersFailedError,
    CredentialMissingError,
    ProviderError,
    UpstreamRejectedError,
)
from course_ai_proxy.llm.fallback import FallbackController
from course_ai_proxy.llm.schemas import ChatRequest
from course_ai_proxy.relay import relay_response

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])

ControllerDep = Annotated[FallbackController, Depends(get_fallback_controller)]


def provider_error_response(error: ProviderError | None) -> Response:
    """Map the reported provider failure to the caller-visible response.

    - missing credential   -> 500 JSON with the fixed message
    - upstream non-2xx     -> same status, ``<Label> API Error: <body>``
    - upstream unreachable -> 502 JSON
    """
    if error is None:
        return JSONResponse(
            status_code=500,
            content={"error": "No upstream provider configured"},
        )
    if isinstance(error, CredentialMissingError):
        return JSONResponse(status_code=500, content={"error": str(error)})
    if isinstance(error, UpstreamRejectedError):
        return PlainTextResponse(
            f"{error.label} API Error: {error.body}",
            status_code=error.status_code,
        )
    return JSONResponse(status_code=502, content={"error": str(error)})


@router.post("/chat", response_model=None)
async def chat(body: ChatRequest, controller: ControllerDep) -> Response:
    """Relay a streamed completion as ``text/event-stream``."""
    try:
        handle = await controller.open_stream(body)
    except AllProvidersFailedError as exc:
        logger.warning(
            "chat_request_failed",
            providers=[e.provider for e in exc.errors],
            error=str(exc.primary) if exc.primary else None,
        )
        return provider_error_response(exc.primary)

    logger.info(
        "chat_stream_started",
        provider=handle.provider,
        messages=len(body.messages),
        model=body.model,
    )
    return relay_response(handle)
