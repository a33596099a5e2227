"""Shared pytest fixtures."""

import os

import pytest

# Must be set before course_ai_proxy.config is imported by any test module.
os.environ.setdefault("ENVIRONMENT", "testing")


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-ollama",
        action="store_true",
        default=False,
        help="Run tests that require a live Ollama instance",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--run-ollama"):
        return
    skip = pytest.mark.skip(reason="needs --run-ollama flag")
    for item in items:
        if "requires_ollama" in item.keywords:
            item.add_marker(skip)
