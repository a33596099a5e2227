"""One-stop factory for assembling the proxy's provider chain.

Usage::

    from course_ai_proxy.config import get_settings
    from course_ai_proxy.llm import create_fallback_controller

    async with httpx.AsyncClient() as client:
        controller = create_fallback_controller(get_settings(), client)
        handle = await controller.open_stream(request)
"""

import httpx
import structlog

from course_ai_proxy.config import Settings
from course_ai_proxy.llm.credentials import (
    CredentialProvider,
    CredentialResolver,
    SettingsDocumentCredentialProvider,
    StaticCredentialProvider,
)
from course_ai_proxy.llm.fallback import FallbackController
from course_ai_proxy.llm.providers import CloudProvider, LocalProvider, UpstreamProvider

logger = structlog.get_logger()


def create_credential_resolver(
    settings: Settings,
    client: httpx.AsyncClient,
) -> CredentialResolver:
    """Environment secret first, then the remote settings document."""
    secret = settings.groq_api_key
    token = settings.settings_store_token
    sources: list[CredentialProvider] = [
        StaticCredentialProvider(secret.get_secret_value() if secret else None),
        SettingsDocumentCredentialProvider(
            client,
            project_id=settings.firebase_project_id,
            base_url=settings.firestore_base_url,
            collection=settings.settings_collection,
            document=settings.settings_document,
            field=settings.settings_api_key_field,
            token=token.get_secret_value() if token else None,
            timeout=settings.settings_lookup_timeout,
        ),
    ]
    return CredentialResolver(sources)


def create_fallback_controller(
    settings: Settings,
    client: httpx.AsyncClient,
) -> FallbackController:
    """Assemble FallbackController: cloud first, local when enabled.

    Args:
        settings: Application settings with provider endpoints.
        client: Shared outbound HTTP client (owned by the caller).

    Returns:
        Configured FallbackController ready for use.
    """
    providers: list[UpstreamProvider] = [
        CloudProvider(
            client,
            create_credential_resolver(settings, client),
            base_url=settings.cloud_base_url,
            default_model=settings.cloud_default_model,
            label=settings.cloud_provider_label,
            temperature=settings.default_temperature,
            max_tokens=settings.default_max_tokens,
        )
    ]
    if settings.local_fallback_enabled:
        providers.append(
            LocalProvider(
                client,
                base_url=settings.local_provider_url,
                model=settings.local_model,
                label=settings.local_provider_label,
                temperature=settings.default_temperature,
                max_tokens=settings.default_max_tokens,
            )
        )

    logger.info(
        "fallback_controller_created",
        providers=[p.name for p in providers],
    )
    return FallbackController(providers)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Outbound client: bounded connect, unbounded reads for long streams."""
    timeout = httpx.Timeout(
        connect=settings.upstream_connect_timeout,
        read=None,
        write=settings.upstream_connect_timeout,
        pool=settings.upstream_connect_timeout,
    )
    return httpx.AsyncClient(timeout=timeout)
