"""Tests for structured logging configuration and request middleware."""

import json
import logging
import re
from collections.abc import Iterator
from io import StringIO
from unittest.mock import patch

import pytest
import structlog
from httpx import ASGITransport, AsyncClient

from course_ai_proxy.logging_config import REDACTED, configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Reset structlog state after each test."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


def _capture_log_output(
    environment: str,
    log_level: str = "DEBUG",
    **fields: object,
) -> str:
    """Configure logging, emit a message, return captured output."""
    configure_logging(environment=environment, log_level=log_level, service="proxy")

    stream = StringIO()
    root = logging.getLogger()
    if not root.handlers or not isinstance(root.handlers[0], logging.StreamHandler):
        raise RuntimeError("Expected configure_logging to set up a StreamHandler")

    original_stream = root.handlers[0].stream
    root.handlers[0].stream = stream

    logger = structlog.get_logger()
    logger.info("test_event", key="value", **fields)

    root.handlers[0].stream = original_stream
    return stream.getvalue()


class TestConfigureLogging:
    def test_configure_production_json(self) -> None:
        output = _capture_log_output("production")
        parsed = json.loads(output)
        assert parsed["event"] == "test_event"
        assert parsed["key"] == "value"
        assert parsed["level"] == "info"

    def test_configure_development_console(self) -> None:
        output = _capture_log_output("development")
        plain = re.sub(r"\x1b\[[0-9;]*m", "", output)
        assert "test_event" in plain
        assert "key=value" in plain

    def test_configure_sets_log_level(self) -> None:
        configure_logging(log_level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_configure_includes_timestamp(self) -> None:
        parsed = json.loads(_capture_log_output("production"))
        assert "T" in parsed["timestamp"]

    def test_service_name_bound(self) -> None:
        parsed = json.loads(_capture_log_output("production"))
        assert parsed["service"] == "proxy"

    def test_credentials_redacted(self) -> None:
        """Secrets passed as log fields never reach the output."""
        output = _capture_log_output(
            "production",
            api_key="gsk_live_123",
            Authorization="Bearer gsk_live_123",
        )
        parsed = json.loads(output)
        assert "gsk_live_123" not in output
        assert parsed["api_key"] == REDACTED
        assert parsed["Authorization"] == REDACTED

    def test_httpx_logger_quieted(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestRequestLoggingMiddleware:
    @pytest.fixture()
    def test_app(self):
        """Minimal FastAPI app with the middleware, isolated from the proxy."""
        from fastapi import FastAPI

        from course_ai_proxy.api.middleware import RequestLoggingMiddleware

        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware)

        @app.post("/api/chat")
        async def _chat() -> dict[str, str]:
            return {"ok": "true"}

        @app.get("/health")
        async def _health() -> dict[str, str]:
            return {"status": "ok"}

        return app

    async def test_middleware_logs_request(self, test_app) -> None:
        with patch("course_ai_proxy.api.middleware.logger") as mock_logger:
            async with AsyncClient(
                transport=ASGITransport(app=test_app),
                base_url="http://test",
            ) as client:
                await client.post("/api/chat")

            mock_logger.info.assert_called_once()
            call_args = mock_logger.info.call_args
            assert call_args[0][0] == "http_request"
            assert call_args[1]["method"] == "POST"
            assert call_args[1]["path"] == "/api/chat"
            assert call_args[1]["status_code"] == 200
            assert call_args[1]["streaming"] is False
            assert "latency_ms" in call_args[1]

    async def test_middleware_skips_health(self, test_app) -> None:
        with patch("course_ai_proxy.api.middleware.logger") as mock_logger:
            async with AsyncClient(
                transport=ASGITransport(app=test_app),
                base_url="http://test",
            ) as client:
                await client.get("/health")

            mock_logger.info.assert_not_called()

    async def test_request_id_echoed(self, test_app) -> None:
        async with AsyncClient(
            transport=ASGITransport(app=test_app),
            base_url="http://test",
        ) as client:
            given = await client.post("/api/chat", headers={"X-Request-ID": "abc123"})
            generated = await client.post("/api/chat")

        assert given.headers["X-Request-ID"] == "abc123"
        assert len(generated.headers["X-Request-ID"]) == 32
