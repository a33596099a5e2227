"""Domain-specific exceptions for the completion proxy."""

from __future__ import annotations

CREDENTIAL_MISSING_MESSAGE = "API key not configured on the server"


class ProxyError(Exception):
    """Base class for every failure the proxy knows how to report."""


class ProviderError(ProxyError):
    """A single upstream provider could not start a stream.

    Attributes:
        provider: Name of the provider that failed (``cloud``, ``local``).
        label: Human label used in caller-visible messages.
    """

    def __init__(self, provider: str, message: str, *, label: str = "") -> None:
        self.provider = provider
        self.label = label or provider
        super().__init__(message)


class CredentialMissingError(ProviderError):
    """No usable secret was found anywhere in the resolution chain."""

    def __init__(self, provider: str = "cloud", *, label: str = "") -> None:
        super().__init__(provider, CREDENTIAL_MISSING_MESSAGE, label=label)


class UpstreamRejectedError(ProviderError):
    """Provider answered with a non-2xx status.

    The raw body is kept verbatim so rate limits, bad model names and
    auth failures reach the caller as the provider reported them.
    """

    def __init__(
        self,
        provider: str,
        status_code: int,
        body: str,
        *,
        label: str = "",
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            provider,
            f"{provider} rejected request with HTTP {status_code}",
            label=label,
        )


class UpstreamUnreachableError(ProviderError):
    """Network-level failure (connect, DNS, timeout) reaching a provider."""


class StreamInterruptedError(ProxyError):
    """Upstream connection dropped after streaming had started."""


class AllProvidersFailedError(ProxyError):
    """Every provider in the fallback chain failed before streaming."""

    def __init__(self, errors: list[ProviderError]) -> None:
        self.errors = errors
        details = "; ".join(f"{e.provider}: {e}" for e in errors)
        super().__init__(f"All providers failed: {details or 'none configured'}")

    @property
    def primary(self) -> ProviderError | None:
        """Failure of the first provider tried, the one reported to callers."""
        return self.errors[0] if self.errors else None


class EngineUnavailableError(UpstreamUnreachableError):
    """Local inference engine is not running or did not answer in time."""


class EngineBusyError(ProxyError):
    """Admission gate is full and not queuing; the caller may retry."""

    def __init__(self, active: int, queued: int, *, retry_after: int = 1) -> None:
        self.active = active
        self.queued = queued
        self.retry_after = retry_after
        super().__init__(f"Local engine busy ({active} active, {queued} queued)")
