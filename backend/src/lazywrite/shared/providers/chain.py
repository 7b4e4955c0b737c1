"""Provider chain — ordered fallback across independent providers.

The chain holds nothing but its static provider list and the pools bound to
it.  Providers are tried strictly in order; a key-pool provider has to run
out of keys (or transient retries) before the next one is tried.  Content
rejections and fatal errors stop the walk immediately; a fatal error from a
fallback is reported together with the failures that led to it.
"""

from __future__ import annotations

from typing import Mapping, Sequence, TypeVar

import structlog

from lazywrite.shared.providers.errors import (
    AllProvidersExhaustedError,
    FatalProviderError,
    PoolExhaustedError,
    ProviderCallError,
    ProviderFailure,
    RateLimitedError,
    TransientError,
)
from lazywrite.shared.providers.invoker import RequestFn, ResilientInvoker
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.types import CallBudget, ProviderConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Failures that mean "this provider is used up, try the next one".
_EXHAUSTION_ERRORS = (PoolExhaustedError, RateLimitedError, TransientError)


class ProviderChain:
    """Tries providers in order until one succeeds."""

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        *,
        pools: Mapping[str, KeyPool] | None = None,
        invoker: ResilientInvoker | None = None,
    ) -> None:
        self._providers = tuple(providers)
        self._invoker = invoker or ResilientInvoker()

        shared = dict(pools or {})
        self._pools: dict[str, KeyPool] = {}
        for cfg in self._providers:
            if cfg.is_keyless:
                continue
            pid = cfg.provider_id
            self._pools[pid] = shared.get(pid) or KeyPool(cfg.api_keys, provider_id=pid)

    @property
    def providers(self) -> tuple[ProviderConfig, ...]:
        return self._providers

    @property
    def pools(self) -> dict[str, KeyPool]:
        return dict(self._pools)

    def pool(self, provider_id: str) -> KeyPool | None:
        return self._pools.get(provider_id)

    def new_budget(self) -> CallBudget:
        sizes = {pid: pool.size for pid, pool in self._pools.items()}
        return CallBudget.for_providers(self._providers, sizes)

    async def invoke(self, request_fn: RequestFn[T], *, budget: CallBudget | None = None) -> T:
        """Return the first successful result.

        Raises:
            ContentRejectedError: on first occurrence, from any provider.
            FatalProviderError: from the first provider tried.
            PoolExhaustedError / FatalProviderError(network_origin=True):
                single-provider chain ran out of keys / transient retries.
            AllProvidersExhaustedError: a longer chain escalated and nothing
                succeeded; ``failures`` holds the last error of each provider.
        """
        budget = budget or self.new_budget()
        failures: list[ProviderFailure] = []
        last_error: ProviderCallError | None = None

        for position, cfg in enumerate(self._providers):
            pid = cfg.provider_id
            if position > 0:
                if not budget.can_escalate:
                    logger.warning(
                        "provider_escalation_limit",
                        escalations=budget.escalations,
                        skipped_provider=pid,
                    )
                    break
                budget.record_escalation()
                logger.warning(
                    "provider_escalating",
                    from_provider=failures[-1].provider_id,
                    to_provider=pid,
                    reason=failures[-1].kind.value,
                )
            try:
                result = await self._invoker.invoke(cfg, self._pools.get(pid), request_fn, budget)
            except _EXHAUSTION_ERRORS as exc:
                failures.append(ProviderFailure(provider_id=pid, kind=exc.kind, message=exc.message))
                last_error = exc
                continue
            except FatalProviderError as exc:
                if not failures:
                    raise
                # A fallback failing outright still reports why the earlier providers gave up.
                failures.append(ProviderFailure(provider_id=pid, kind=exc.kind, message=exc.message))
                last_error = exc
                break

            if failures:
                logger.info(
                    "provider_failover_success",
                    provider=pid,
                    failed_providers=[f.provider_id for f in failures],
                )
            return result

        if len(self._providers) == 1 and last_error is not None:
            if isinstance(last_error, TransientError):
                raise FatalProviderError(
                    last_error.message,
                    provider_id=last_error.provider_id,
                    network_origin=True,
                ) from last_error
            raise last_error
        raise AllProvidersExhaustedError(failures) from last_error
