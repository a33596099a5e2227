"""Run the local-engine server.

Usage::

    uv run python -m course_ai_proxy.local_engine [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse

import uvicorn

from course_ai_proxy.config import settings


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Local AI engine companion server")
    parser.add_argument("--host", default=settings.ai_host)
    parser.add_argument("--port", type=int, default=settings.ai_port)
    args = parser.parse_args(argv)

    uvicorn.run(
        "course_ai_proxy.local_engine.app:app",
        host=args.host,
        port=args.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
