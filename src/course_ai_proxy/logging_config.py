"""Structured logging shared by the proxy and the local engine.

Production renders one JSON object per line; every other environment gets
the colored console renderer. Both ASGI apps call configure_logging()
from their lifespan, before the first request is served.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "groq_api_key",
        "authorization",
        "credential",
        "password",
        "secret",
        "token",
    }
)

REDACTED = "***REDACTED***"

NOISY_LOGGERS: tuple[str, ...] = ("uvicorn.access", "httpx", "httpcore")


def _mask_credentials(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask credential-bearing fields, whatever their casing."""
    for key in [k for k in event_dict if k.lower() in SENSITIVE_KEYS]:
        event_dict[key] = REDACTED
    return event_dict


def _pre_chain(json_output: bool) -> list[Processor]:
    """Processors applied to structlog and foreign stdlib records alike."""
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _mask_credentials,
    ]
    if json_output:
        # Console renderer pretty-prints exc_info itself.
        chain.append(structlog.processors.format_exc_info)
    return chain


def _route_to_stdout(formatter: logging.Formatter, level: str) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    *,
    service: str | None = None,
) -> None:
    """Wire structlog through the stdlib root logger.

    Args:
        environment: 'production' selects JSON lines, anything else
            the colored console renderer.
        log_level: Root level name (DEBUG, INFO, WARNING, ...).
        service: Stamped on every event when given, so proxy and
            local-engine output can be told apart in one sink.
    """
    json_output = environment == "production"
    pre_chain = _pre_chain(json_output)
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _route_to_stdout(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        ),
        log_level,
    )

    structlog.contextvars.clear_contextvars()
    if service:
        structlog.contextvars.bind_contextvars(service=service)
