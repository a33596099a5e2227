"""FastAPI dependency injection."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from course_ai_proxy.llm.fallback import FallbackController

__all__ = ["get_fallback_controller"]


async def get_fallback_controller(request: Request) -> FallbackController:
    """Retrieve FallbackController from app state.

    Initialized during lifespan startup.
    """
    return cast(FallbackController, request.app.state.fallback_controller)
