"""FallbackController -- ordered provider chain for one chat request.

The chain is cloud first, then the local engine when it is enabled.
Each provider gets exactly one dispatch; there is no retry loop and no
backoff. A missing key and a stopped local engine are different
failures and neither is fixed by asking the same provider again.
"""

from collections.abc import Sequence
from enum import StrEnum

import structlog

from course_ai_proxy.errors import (
    AllProvidersFailedError,
    CredentialMissingError,
    ProviderError,
)
from course_ai_proxy.llm.providers.base import StreamHandle, UpstreamProvider
from course_ai_proxy.llm.schemas import ChatRequest

logger = structlog.get_logger()


class FallbackState(StrEnum):
    RESOLVING_CREDENTIAL = "resolving_credential"
    DISPATCHING_PRIMARY = "dispatching_primary"
    DISPATCH_FAILED = "dispatch_failed"
    DISPATCHING_SECONDARY = "dispatching_secondary"
    SUCCESS = "success"
    TERMINAL_FAILURE = "terminal_failure"


class FallbackController:
    """Walk the provider chain until one starts streaming.

    Success means the upstream accepted the request and returned its
    live body; the stream itself is consumed later by StreamRelay.
    """

    def __init__(self, providers: Sequence[UpstreamProvider]) -> None:
        self._providers = list(providers)

    @property
    def providers(self) -> list[UpstreamProvider]:
        return list(self._providers)

    async def open_stream(self, request: ChatRequest) -> StreamHandle:
        """Return the first provider stream that opens.

        Raises:
            AllProvidersFailedError: Every provider failed; ``primary``
                holds the first failure.
        """
        errors: list[ProviderError] = []

        for index, provider in enumerate(self._providers):
            state = (
                FallbackState.DISPATCHING_PRIMARY
                if index == 0
                else FallbackState.DISPATCHING_SECONDARY
            )
            if provider.requires_credential:
                self._transition(
                    FallbackState.RESOLVING_CREDENTIAL, provider=provider.name
                )
            self._transition(state, provider=provider.name)
            try:
                handle = await provider.dispatch(request)
            except ProviderError as exc:
                errors.append(exc)
                self._transition(
                    FallbackState.DISPATCH_FAILED,
                    provider=provider.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    credential_missing=isinstance(exc, CredentialMissingError),
                )
                continue

            self._transition(
                FallbackState.SUCCESS,
                provider=provider.name,
                attempts=index + 1,
            )
            return handle

        self._transition(
            FallbackState.TERMINAL_FAILURE,
            attempts=len(errors),
            providers=[p.name for p in self._providers],
        )
        raise AllProvidersFailedError(errors)

    @staticmethod
    def _transition(state: FallbackState, **fields: object) -> None:
        if state in (FallbackState.DISPATCH_FAILED, FallbackState.TERMINAL_FAILURE):
            logger.warning("fallback_transition", state=str(state), **fields)
        else:
            logger.info("fallback_transition", state=str(state), **fields)
