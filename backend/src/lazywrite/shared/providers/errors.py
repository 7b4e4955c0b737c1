"""Error taxonomy for provider calls.

Every failure that leaves the resilience layer is a ``ProviderCallError``
carrying an ``ErrorKind``.  Callers (HTTP handlers, the book service)
discriminate on the kind or subclass, never on the message text.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from lazywrite.domain.exceptions import DomainError


class ErrorKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    CONTENT_REJECTED = "content_rejected"
    TRANSIENT = "transient"
    FATAL = "fatal"
    POOL_EXHAUSTED = "pool_exhausted"
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"


_RATE_LIMIT_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.POOL_EXHAUSTED})


class ProviderCallError(DomainError):
    """Base class for everything the resilience layer raises."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(self, message: str, *, provider_id: str | None = None) -> None:
        self.provider_id = provider_id
        super().__init__(message, code=self.kind.value.upper())

    @property
    def rate_limited(self) -> bool:
        return self.kind in _RATE_LIMIT_KINDS


class RateLimitedError(ProviderCallError):
    """Provider signalled quota or rate exhaustion and nothing is left to rotate to."""

    kind = ErrorKind.RATE_LIMITED


class ContentRejectedError(ProviderCallError):
    """Provider refused the prompt on policy grounds. Never retried."""

    kind = ErrorKind.CONTENT_REJECTED


class TransientError(ProviderCallError):
    """Retry budget for network-class failures ran out on one provider."""

    kind = ErrorKind.TRANSIENT


class FatalProviderError(ProviderCallError):
    """Terminal failure.

    ``network_origin`` is set when the failure is an exhausted transient
    error re-classified as terminal, so the HTTP layer can answer 503.
    """

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        *,
        provider_id: str | None = None,
        network_origin: bool = False,
    ) -> None:
        self.network_origin = network_origin
        super().__init__(message, provider_id=provider_id)


class PoolExhaustedError(ProviderCallError):
    """Every key in a pool is blocked, or the pool is empty."""

    kind = ErrorKind.POOL_EXHAUSTED

    def __init__(self, provider_id: str, *, pool_size: int = 0) -> None:
        self.pool_size = pool_size
        if pool_size:
            message = f"All {pool_size} API keys for {provider_id} are rate limited or blocked"
        else:
            message = f"No API keys configured for {provider_id}"
        super().__init__(message, provider_id=provider_id)


@dataclass(frozen=True)
class ProviderFailure:
    """Last error seen from one provider, kept for diagnostics."""

    provider_id: str
    kind: ErrorKind
    message: str


class AllProvidersExhaustedError(ProviderCallError):
    """Raised when no provider succeeded after walking the whole chain."""

    kind = ErrorKind.ALL_PROVIDERS_EXHAUSTED

    def __init__(self, failures: list[ProviderFailure]) -> None:
        self.failures = failures
        providers = ", ".join(f.provider_id for f in failures) or "none"
        super().__init__(f"All providers exhausted: {providers}")

    @property
    def errors(self) -> dict[str, str]:
        return {f.provider_id: f.message for f in self.failures}

    @property
    def rate_limited(self) -> bool:
        """True when any provider in the chain ran out of keys or quota."""
        return any(f.kind in _RATE_LIMIT_KINDS for f in self.failures)

    @property
    def network_origin(self) -> bool:
        return bool(self.failures) and all(
            f.kind == ErrorKind.TRANSIENT for f in self.failures
        )
