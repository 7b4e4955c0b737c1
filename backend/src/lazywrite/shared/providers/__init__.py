"""Key rotation and resilient-call framework.

Provides round-robin key pools with dynamic blocking, bounded retry with
exponential backoff, and ordered fallback across providers for any
rate-limited outbound API.
"""

from lazywrite.shared.providers.chain import ProviderChain
from lazywrite.shared.providers.errors import (
    AllProvidersExhaustedError,
    ContentRejectedError,
    ErrorKind,
    FatalProviderError,
    PoolExhaustedError,
    ProviderCallError,
    ProviderFailure,
    RateLimitedError,
    TransientError,
)
from lazywrite.shared.providers.health import ProviderHealthTracker
from lazywrite.shared.providers.invoker import ResilientInvoker, classify_exception
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.orchestrator import CallOrchestrator
from lazywrite.shared.providers.types import (
    Attempt,
    AttemptOutcome,
    CallBudget,
    ProviderConfig,
    ProviderHealth,
    ProviderKind,
)

__all__ = [
    "AllProvidersExhaustedError",
    "Attempt",
    "AttemptOutcome",
    "CallBudget",
    "CallOrchestrator",
    "ContentRejectedError",
    "ErrorKind",
    "FatalProviderError",
    "KeyPool",
    "PoolExhaustedError",
    "ProviderCallError",
    "ProviderChain",
    "ProviderConfig",
    "ProviderFailure",
    "ProviderHealth",
    "ProviderHealthTracker",
    "ProviderKind",
    "RateLimitedError",
    "ResilientInvoker",
    "TransientError",
    "classify_exception",
]
