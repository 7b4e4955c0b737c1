"""Call orchestrator — the main entry-point for provider calls.

Composes KeyPool, ResilientInvoker and ProviderChain into a single
"generate content" operation with a bounded attempt budget.  Callers hand
in a request function and the orchestrator handles key rotation, retries,
backoff, failover and health recording.
"""

from __future__ import annotations

import asyncio
import time
from typing import Mapping, Sequence, TypeVar

import structlog

from lazywrite.shared.observability.metrics import (
    GENERATION_CALLS_TOTAL,
    GENERATION_LATENCY,
    PROVIDER_ATTEMPTS_TOTAL,
    PROVIDER_ESCALATIONS_TOTAL,
)
from lazywrite.shared.providers.chain import ProviderChain
from lazywrite.shared.providers.errors import ProviderCallError
from lazywrite.shared.providers.health import ProviderHealthTracker
from lazywrite.shared.providers.invoker import RequestFn, ResilientInvoker, SleepFn
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.types import Attempt, ProviderConfig, ProviderHealth

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CallOrchestrator:
    """Resilient entry-point shared by every request for one operation.

    Usage::

        orchestrator = CallOrchestrator(providers, pools=pools, operation="text")

        text = await orchestrator.execute(
            lambda cfg, key: call_openrouter(cfg, key, prompt),
        )

    ``request_fn`` receives the ``ProviderConfig`` and the selected API key
    (empty for keyless providers) and must return the decoded payload or
    raise.  ``httpx`` errors are classified automatically.
    """

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        *,
        pools: Mapping[str, KeyPool] | None = None,
        operation: str = "generate",
        sleep: SleepFn = asyncio.sleep,
        health_window_s: float = 300.0,
    ) -> None:
        self.operation = operation
        self._health: dict[str, ProviderHealthTracker] = {
            cfg.provider_id: ProviderHealthTracker(cfg.provider_id, window_seconds=health_window_s)
            for cfg in providers
        }
        self._invoker = ResilientInvoker(sleep=sleep, on_attempt=self._record_attempt)
        self._chain = ProviderChain(providers, pools=pools, invoker=self._invoker)

    @property
    def chain(self) -> ProviderChain:
        return self._chain

    # ── Main entry-point ─────────────────────────────────────
    async def execute(self, request_fn: RequestFn[T]) -> T:
        """Run ``request_fn`` through the provider chain.

        Returns:
            The payload from the first provider that succeeds.

        Raises:
            ProviderCallError: one of the terminal kinds in ``ErrorKind``.
        """
        budget = self._chain.new_budget()
        log = logger.bind(operation=self.operation)
        start = time.monotonic()
        try:
            result = await self._chain.invoke(request_fn, budget=budget)
        except ProviderCallError as exc:
            GENERATION_CALLS_TOTAL.labels(operation=self.operation, result=exc.kind.value).inc()
            log.warning(
                "generation_failed",
                kind=exc.kind.value,
                provider=exc.provider_id,
                calls=budget.calls,
                retries=budget.total_retries,
                rotations=budget.total_rotations,
                escalations=budget.escalations,
                error=exc.message,
            )
            raise
        finally:
            GENERATION_LATENCY.labels(operation=self.operation).observe(time.monotonic() - start)
            if budget.escalations:
                PROVIDER_ESCALATIONS_TOTAL.labels(operation=self.operation).inc(budget.escalations)

        GENERATION_CALLS_TOTAL.labels(operation=self.operation, result="success").inc()
        log.info(
            "generation_completed",
            calls=budget.calls,
            retries=budget.total_retries,
            rotations=budget.total_rotations,
            escalations=budget.escalations,
        )
        return result

    # ── Health observation ───────────────────────────────────
    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._health

    def get_health(self, provider_id: str) -> ProviderHealth | None:
        tracker = self._health.get(provider_id)
        if tracker is None:
            return None
        health = tracker.health
        cfg = next(c for c in self._chain.providers if c.provider_id == provider_id)
        health.kind = cfg.kind.value
        pool = self._chain.pool(provider_id)
        if pool is not None:
            snap = pool.snapshot()
            health.pool_size = snap.size
            health.blocked_keys = snap.blocked
            health.cursor = snap.cursor
        return health

    def get_all_health(self) -> list[ProviderHealth]:
        results: list[ProviderHealth] = []
        for cfg in self._chain.providers:
            health = self.get_health(cfg.provider_id)
            if health is not None:
                results.append(health)
        return results

    # ── Admin ────────────────────────────────────────────────
    def unblock(self, provider_id: str, key_index: int) -> bool:
        pool = self._chain.pool(provider_id)
        if pool is None:
            return False
        return pool.unblock_at(key_index)

    def reset_provider(self, provider_id: str) -> None:
        """Admin reset — unblocks every key of a provider."""
        pool = self._chain.pool(provider_id)
        if pool is not None:
            pool.reset_all()
        logger.info("provider_admin_reset", provider=provider_id, operation=self.operation)

    def _record_attempt(self, attempt: Attempt) -> None:
        PROVIDER_ATTEMPTS_TOTAL.labels(provider=attempt.provider_id, outcome=attempt.outcome.value).inc()
        tracker = self._health.get(attempt.provider_id)
        if tracker is not None:
            tracker.record(attempt)
