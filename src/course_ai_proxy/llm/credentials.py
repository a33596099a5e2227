"""Credential resolution for the cloud provider.

An ordered chain of credential providers, each answering "here is the
secret" or "miss". The resolver stops at the first hit. Nothing is
cached between requests; the settings store may change at any time.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from course_ai_proxy.errors import CredentialMissingError

logger = structlog.get_logger()


class CredentialProvider(abc.ABC):
    """One source of the provider secret."""

    source: str = ""

    @abc.abstractmethod
    async def resolve(self) -> str | None:
        """Return the secret, or ``None`` when this source has none."""
        ...


class StaticCredentialProvider(CredentialProvider):
    """Secret configured on the process (environment / .env)."""

    source = "environment"

    def __init__(self, secret: str | None) -> None:
        self._secret = secret

    async def resolve(self) -> str | None:
        return self._secret or None


class SettingsDocumentCredentialProvider(CredentialProvider):
    """Secret stored in a Firestore settings document.

    Performs one read-only GET against the Firestore REST interface and
    extracts ``fields.<field>.stringValue``. A missing document, missing
    field, non-2xx answer, timeout or malformed payload is a miss.
    """

    source = "settings_document"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        project_id: str | None,
        base_url: str = "https://firestore.googleapis.com/v1",
        collection: str = "ai_settings",
        document: str = "default",
        field: str = "groqApiKey",
        token: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._client = client
        self._project_id = project_id
        self._base_url = base_url.rstrip("/")
        self._collection = collection
        self._document = document
        self._field = field
        self._token = token
        self._timeout = timeout

    @property
    def url(self) -> str:
        return (
            f"{self._base_url}/projects/{self._project_id}"
            f"/databases/(default)/documents/{self._collection}/{self._document}"
        )

    async def resolve(self) -> str | None:
        if not self._project_id:
            return None

        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = await self._client.get(
                self.url, headers=headers, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "settings_document_unreachable",
                url=self.url,
                error=type(exc).__name__,
            )
            return None

        if not response.is_success:
            logger.warning(
                "settings_document_miss",
                url=self.url,
                status_code=response.status_code,
            )
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("settings_document_malformed", url=self.url)
            return None

        return self._extract(payload)

    def _extract(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        fields = payload.get("fields")
        if not isinstance(fields, dict):
            return None
        entry = fields.get(self._field)
        if not isinstance(entry, dict):
            return None
        value = entry.get("stringValue")
        if not isinstance(value, str) or not value:
            return None
        return value


class CredentialResolver:
    """Try credential providers in order, first hit wins."""

    def __init__(self, providers: Sequence[CredentialProvider]) -> None:
        self._providers = list(providers)

    @property
    def sources(self) -> list[str]:
        return [p.source for p in self._providers]

    async def resolve(self) -> str:
        """Return the first available secret.

        Raises:
            CredentialMissingError: No provider produced a secret.
        """
        for provider in self._providers:
            secret = await provider.resolve()
            if secret:
                logger.debug("credential_resolved", source=provider.source)
                return secret
            logger.debug("credential_miss", source=provider.source)

        logger.warning("credential_missing", sources=self.sources)
        raise CredentialMissingError()
