"""Completion proxy core: schemas, credentials, providers, fallback.

Quick start::

    from course_ai_proxy.config import get_settings
    from course_ai_proxy.llm import create_fallback_controller

    controller = create_fallback_controller(get_settings(), client)
    handle = await controller.open_stream(ChatRequest(messages=[...]))
"""

from course_ai_proxy.llm.credentials import CredentialProvider, CredentialResolver
from course_ai_proxy.llm.fallback import FallbackController, FallbackState
from course_ai_proxy.llm.schemas import ChatMessage, ChatRequest
from course_ai_proxy.llm.setup import (
    create_credential_resolver,
    create_fallback_controller,
    create_http_client,
)

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "CredentialProvider",
    "CredentialResolver",
    "FallbackController",
    "FallbackState",
    "create_credential_resolver",
    "create_fallback_controller",
    "create_http_client",
]
