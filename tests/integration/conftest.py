"""Shared fixtures for integration tests requiring a live Ollama."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from course_ai_proxy.config import get_settings
from course_ai_proxy.local_engine.app import app
from course_ai_proxy.local_engine.runtime import EngineRuntime, create_runtime


@pytest.fixture()
async def runtime() -> AsyncGenerator[EngineRuntime]:
    """Runtime wired to the Ollama instance named by OLLAMA_URL."""
    async with httpx.AsyncClient(timeout=httpx.Timeout(5.0, read=None)) as client:
        yield create_runtime(get_settings(), client)


@pytest.fixture()
async def local_api(runtime: EngineRuntime) -> AsyncGenerator[AsyncClient]:
    app.state.runtime = runtime
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            timeout=None,
        ) as client:
            yield client
    finally:
        del app.state.runtime
