"""Tests for the key-rotation and resilient-call framework.

Covers KeyPool, classification, ResilientInvoker, ProviderChain,
CallOrchestrator and ProviderHealthTracker.
"""

from __future__ import annotations

import asyncio
import threading
from collections import Counter

import httpx
import pytest

from lazywrite.shared.providers.chain import ProviderChain
from lazywrite.shared.providers.errors import (
    AllProvidersExhaustedError,
    ContentRejectedError,
    ErrorKind,
    FatalProviderError,
    PoolExhaustedError,
    RateLimitedError,
    TransientError,
)
from lazywrite.shared.providers.health import ProviderHealthTracker
from lazywrite.shared.providers.invoker import ResilientInvoker, classify_exception, classify_status
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.orchestrator import CallOrchestrator
from lazywrite.shared.providers.types import (
    Attempt,
    AttemptOutcome,
    CallBudget,
    ProviderConfig,
    ProviderKind,
    mask_credential,
)


# ═══════════════════════════════════════════════════════════════
#  KeyPool
# ═══════════════════════════════════════════════════════════════
class TestKeyPool:
    def test_drops_empty_and_duplicate_keys(self) -> None:
        pool = KeyPool(["k1", "", "  ", "k2", "k1", " k3 "], provider_id="p")
        assert pool.keys == ("k1", "k2", "k3")
        assert pool.size == 3
        assert len(pool) == 3

    def test_first_draw_skips_cursor_slot(self) -> None:
        pool = KeyPool(["k1", "k2", "k3"])
        assert pool.next() == "k2"
        assert pool.cursor == 1

    def test_single_key_pool_returns_that_key(self) -> None:
        pool = KeyPool(["only"])
        assert [pool.next() for _ in range(3)] == ["only", "only", "only"]

    @pytest.mark.parametrize("warmup", [0, 1, 2, 5])
    def test_round_robin_covers_every_key_once(self, warmup: int) -> None:
        keys = ["k1", "k2", "k3"]
        pool = KeyPool(keys)
        for _ in range(warmup):
            pool.next()

        drawn = [pool.next() for _ in range(len(keys))]
        assert sorted(drawn) == sorted(keys)
        # Fixed rotation order: each draw is the key after the previous one
        for prev, nxt in zip(drawn, drawn[1:]):
            assert keys.index(nxt) == (keys.index(prev) + 1) % len(keys)

    def test_blocked_key_is_never_returned(self) -> None:
        pool = KeyPool(["k1", "k2", "k3"])
        pool.block("k2")
        drawn = {pool.next() for _ in range(12)}
        assert drawn == {"k1", "k3"}
        assert pool.available == 2

    def test_unblock_returns_key_to_rotation(self) -> None:
        pool = KeyPool(["k1", "k2"])
        pool.block("k1")
        assert {pool.next() for _ in range(4)} == {"k2"}

        assert pool.unblock("k1") is True
        assert {pool.next() for _ in range(4)} == {"k1", "k2"}

    def test_unblock_unknown_or_unblocked_key(self) -> None:
        pool = KeyPool(["k1"])
        assert pool.unblock("k1") is False
        assert pool.unblock("nope") is False

    def test_block_is_idempotent_and_ignores_unknown_keys(self) -> None:
        pool = KeyPool(["k1", "k2"])
        pool.block("k1")
        pool.block("k1")
        pool.block("stranger")
        assert pool.blocked == frozenset({"k1"})

    def test_unblock_at_index(self) -> None:
        pool = KeyPool(["k1", "k2"])
        pool.block("k2")
        assert pool.unblock_at(1) is True
        assert pool.blocked == frozenset()
        with pytest.raises(IndexError):
            pool.unblock_at(5)

    def test_reset_all_keeps_cursor(self) -> None:
        pool = KeyPool(["k1", "k2", "k3"])
        pool.next()
        pool.block("k1")
        pool.block("k3")
        pool.reset_all()
        assert pool.blocked == frozenset()
        assert pool.cursor == 1

    def test_empty_pool_is_exhausted(self) -> None:
        pool = KeyPool([], provider_id="empty")
        assert pool.is_exhausted
        with pytest.raises(PoolExhaustedError) as exc_info:
            pool.next()
        assert exc_info.value.provider_id == "empty"
        assert "No API keys configured" in exc_info.value.message

    def test_single_blocked_key_is_exhausted(self) -> None:
        pool = KeyPool(["k1"])
        pool.block("k1")
        with pytest.raises(PoolExhaustedError):
            pool.next()

    def test_all_blocked_is_exhausted(self) -> None:
        pool = KeyPool(["k1", "k2", "k3"], provider_id="p")
        for key in pool.keys:
            pool.block(key)
        assert pool.is_exhausted
        with pytest.raises(PoolExhaustedError) as exc_info:
            pool.next()
        assert exc_info.value.kind == ErrorKind.POOL_EXHAUSTED
        assert "All 3 API keys" in exc_info.value.message

    def test_snapshot(self) -> None:
        pool = KeyPool(["k1", "k2"], provider_id="p")
        pool.next()
        pool.block("k1")
        snap = pool.snapshot()
        assert (snap.provider_id, snap.size, snap.blocked, snap.cursor) == ("p", 2, 1, 1)

    def test_concurrent_draws_stay_fair(self) -> None:
        pool = KeyPool(["k1", "k2", "k3", "k4"])
        drawn: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(50):
                key = pool.next()
                with lock:
                    drawn.append(key)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert Counter(drawn) == {"k1": 100, "k2": 100, "k3": 100, "k4": 100}

    def test_mask_credential(self) -> None:
        assert mask_credential("") == "<none>"
        assert mask_credential("abc") == "****"
        assert mask_credential("sk-or-123456") == "****3456"


# ═══════════════════════════════════════════════════════════════
#  Classification
# ═══════════════════════════════════════════════════════════════
class TestClassification:
    @pytest.mark.parametrize(
        ("status", "text", "expected"),
        [
            (429, "", AttemptOutcome.RATE_LIMITED),
            (500, "", AttemptOutcome.TRANSIENT),
            (503, "overloaded", AttemptOutcome.TRANSIENT),
            (400, "Content filter triggered", AttemptOutcome.CONTENT_REJECTED),
            (422, "NSFW content detected", AttemptOutcome.CONTENT_REJECTED),
            (403, "Request blocked by moderation", AttemptOutcome.CONTENT_REJECTED),
            (400, "bad request", AttemptOutcome.FATAL),
            (400, "Invalid content type", AttemptOutcome.FATAL),
            (400, "Unknown policy id", AttemptOutcome.FATAL),
            (404, "content policy not found", AttemptOutcome.FATAL),
            (401, "invalid api key", AttemptOutcome.FATAL),
        ],
    )
    def test_classify_status(self, status: int, text: str, expected: AttemptOutcome) -> None:
        assert classify_status(status, text) == expected

    def test_classify_http_status_error_reads_body(self, http_error) -> None:
        exc = http_error(400, {"error": {"message": "Prompt violates safety policy"}})
        assert classify_exception(exc) == AttemptOutcome.CONTENT_REJECTED

    def test_network_errors_are_transient(self) -> None:
        request = httpx.Request("GET", "https://provider.test")
        assert classify_exception(httpx.ConnectError("refused", request=request)) == AttemptOutcome.TRANSIENT
        assert classify_exception(httpx.ReadTimeout("slow", request=request)) == AttemptOutcome.TRANSIENT
        assert classify_exception(ConnectionResetError()) == AttemptOutcome.TRANSIENT
        assert classify_exception(asyncio.TimeoutError()) == AttemptOutcome.TRANSIENT

    def test_programming_errors_are_fatal(self) -> None:
        assert classify_exception(KeyError("choices")) == AttemptOutcome.FATAL
        assert classify_exception(FatalProviderError("bad payload")) == AttemptOutcome.FATAL


# ═══════════════════════════════════════════════════════════════
#  CallBudget
# ═══════════════════════════════════════════════════════════════
class TestCallBudget:
    def test_max_calls_from_pool_sizes(self, pooled_provider, keyless_provider) -> None:
        budget = CallBudget.for_providers([pooled_provider, keyless_provider], {"alpha": 3})
        # (3 keys * 3 attempts) + (1 * 3 attempts)
        assert budget.max_calls == 12
        assert budget.max_escalations == 1

    def test_empty_pool_still_counts_one_slot(self, pooled_provider) -> None:
        budget = CallBudget.for_providers([pooled_provider], {"alpha": 0})
        assert budget.max_calls == 3

    def test_spend_call_stops_at_ceiling(self) -> None:
        budget = CallBudget(max_calls=2, max_escalations=0)
        assert budget.spend_call() and budget.spend_call()
        assert budget.spend_call() is False
        assert budget.calls_remaining == 0

    def test_escalation_resets_per_provider_counters(self) -> None:
        budget = CallBudget(max_calls=10, max_escalations=1)
        budget.record_retry()
        budget.record_rotation()
        assert budget.can_escalate
        budget.record_escalation()
        assert (budget.retries, budget.rotations) == (0, 0)
        assert (budget.total_retries, budget.total_rotations, budget.escalations) == (1, 1, 1)
        assert not budget.can_escalate


# ═══════════════════════════════════════════════════════════════
#  ResilientInvoker
# ═══════════════════════════════════════════════════════════════
class TestResilientInvoker:
    @pytest.mark.asyncio
    async def test_success_first_attempt(self, pooled_provider, fake_sleep) -> None:
        pool = KeyPool(pooled_provider.api_keys)
        invoker = ResilientInvoker(sleep=fake_sleep)
        budget = CallBudget.for_providers([pooled_provider], {"alpha": pool.size})

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            return f"ok:{key}"

        assert await invoker.invoke(pooled_provider, pool, _fn, budget) == "ok:key-a2"
        assert budget.calls == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_rotates_without_backoff(
        self, pooled_provider, fake_sleep, http_error
    ) -> None:
        pool = KeyPool(pooled_provider.api_keys)
        invoker = ResilientInvoker(sleep=fake_sleep)
        budget = CallBudget.for_providers([pooled_provider], {"alpha": pool.size})
        used: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            used.append(key)
            if key == "key-a2":
                raise http_error(429, {"error": "Rate limit exceeded"})
            return key

        assert await invoker.invoke(pooled_provider, pool, _fn, budget) == "key-a3"
        assert used == ["key-a2", "key-a3"]
        assert pool.blocked == frozenset({"key-a2"})
        assert budget.rotations == 1
        assert budget.retries == 0
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_bounded_transient_retries(self, keyless_provider, fake_sleep) -> None:
        invoker = ResilientInvoker(sleep=fake_sleep)
        budget = CallBudget.for_providers([keyless_provider])
        calls = 0

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=httpx.Request("POST", "https://x"))

        with pytest.raises(TransientError) as exc_info:
            await invoker.invoke(keyless_provider, None, _fn, budget)

        assert calls == keyless_provider.max_retries + 1
        assert fake_sleep.delays == [2.0, 4.0]
        assert all(a < b for a, b in zip(fake_sleep.delays, fake_sleep.delays[1:]))
        assert exc_info.value.provider_id == "beta"

    @pytest.mark.asyncio
    async def test_backoff_strictly_increases(self, fake_sleep) -> None:
        cfg = ProviderConfig(provider_id="slow", kind=ProviderKind.KEYLESS, max_retries=6)
        invoker = ResilientInvoker(sleep=fake_sleep)

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise httpx.ConnectError("down", request=httpx.Request("POST", "https://x"))

        with pytest.raises(TransientError):
            await invoker.invoke(cfg, None, _fn, CallBudget.for_providers([cfg]))
        assert fake_sleep.delays == [2.0, 4.0, 8.0, 16.0, 32.0, 64.0]
        assert all(a < b for a, b in zip(fake_sleep.delays, fake_sleep.delays[1:]))

    @pytest.mark.asyncio
    async def test_transient_then_success_redraws_key(self, fake_sleep, http_error) -> None:
        cfg = ProviderConfig(provider_id="alpha", api_keys=("k1", "k2"))
        pool = KeyPool(cfg.api_keys)
        invoker = ResilientInvoker(sleep=fake_sleep)
        used: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            used.append(key)
            if len(used) == 1:
                raise http_error(502)
            return "done"

        result = await invoker.invoke(cfg, pool, _fn, CallBudget.for_providers([cfg], {"alpha": 2}))
        assert result == "done"
        assert used == ["k2", "k1"]
        assert fake_sleep.delays == [2.0]
        assert pool.blocked == frozenset()

    @pytest.mark.asyncio
    async def test_per_attempt_timeout_is_transient(self, fake_sleep) -> None:
        cfg = ProviderConfig(
            provider_id="hang",
            kind=ProviderKind.KEYLESS,
            timeout_s=0.01,
            max_retries=1,
        )
        invoker = ResilientInvoker(sleep=fake_sleep)

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            await asyncio.sleep(5)
            return "never"

        with pytest.raises(TransientError) as exc_info:
            await invoker.invoke(cfg, None, _fn, CallBudget.for_providers([cfg]))
        assert "Timeout" in exc_info.value.message
        assert len(fake_sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_content_rejection_is_never_retried(
        self, pooled_provider, fake_sleep, http_error
    ) -> None:
        pool = KeyPool(pooled_provider.api_keys)
        invoker = ResilientInvoker(sleep=fake_sleep)
        budget = CallBudget.for_providers([pooled_provider], {"alpha": pool.size})

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise http_error(400, {"error": "Content filter triggered"})

        with pytest.raises(ContentRejectedError):
            await invoker.invoke(pooled_provider, pool, _fn, budget)

        assert budget.calls == 1
        assert (budget.total_retries, budget.total_rotations) == (0, 0)
        assert pool.blocked == frozenset()
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_fatal_is_never_retried(self, keyless_provider, fake_sleep, http_error) -> None:
        invoker = ResilientInvoker(sleep=fake_sleep)
        budget = CallBudget.for_providers([keyless_provider])

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise http_error(401, {"error": "invalid api key"})

        with pytest.raises(FatalProviderError) as exc_info:
            await invoker.invoke(keyless_provider, None, _fn, budget)
        assert exc_info.value.network_origin is False
        assert budget.calls == 1

    @pytest.mark.asyncio
    async def test_keyless_rate_limit_raises(self, keyless_provider, fake_sleep, http_error) -> None:
        invoker = ResilientInvoker(sleep=fake_sleep)

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            assert key == ""
            raise http_error(429)

        with pytest.raises(RateLimitedError):
            await invoker.invoke(keyless_provider, None, _fn, CallBudget.for_providers([keyless_provider]))

    @pytest.mark.asyncio
    async def test_attempt_hook_sees_masked_key(self, fake_sleep, http_error) -> None:
        cfg = ProviderConfig(provider_id="alpha", api_keys=("secret-one", "secret-two"))
        pool = KeyPool(cfg.api_keys)
        attempts: list[Attempt] = []
        invoker = ResilientInvoker(sleep=fake_sleep, on_attempt=attempts.append)

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            if key == "secret-two":
                raise http_error(429)
            return "ok"

        await invoker.invoke(cfg, pool, _fn, CallBudget.for_providers([cfg], {"alpha": 2}))
        assert [a.outcome for a in attempts] == [AttemptOutcome.RATE_LIMITED, AttemptOutcome.SUCCESS]
        assert [a.credential for a in attempts] == ["****-two", "****-one"]
        assert attempts[0].error == "HTTP 429"

    @pytest.mark.asyncio
    async def test_call_budget_ceiling(self, pooled_provider, fake_sleep) -> None:
        pool = KeyPool(pooled_provider.api_keys)
        invoker = ResilientInvoker(sleep=fake_sleep)
        budget = CallBudget(max_calls=1, max_escalations=0)

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise httpx.ConnectError("down", request=httpx.Request("POST", "https://x"))

        with pytest.raises(TransientError, match="Call budget"):
            await invoker.invoke(pooled_provider, pool, _fn, budget)
        assert budget.calls == 1


# ═══════════════════════════════════════════════════════════════
#  ProviderChain
# ═══════════════════════════════════════════════════════════════
class TestProviderChain:
    @pytest.mark.asyncio
    async def test_escalates_to_keyless_fallback(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )
        seen: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            seen.append(cfg.provider_id)
            if cfg.provider_id == "alpha":
                raise http_error(429)
            return "from-beta"

        budget = chain.new_budget()
        assert await chain.invoke(_fn, budget=budget) == "from-beta"
        assert seen == ["alpha", "alpha", "alpha", "beta"]
        assert chain.pool("alpha").is_exhausted
        assert budget.escalations == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_exhaustion_escalates(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            if cfg.provider_id == "alpha":
                raise http_error(503)
            return "fallback"

        assert await chain.invoke(_fn) == "fallback"
        assert fake_sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_content_rejection_stops_chain(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )
        seen: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            seen.append(cfg.provider_id)
            raise http_error(400, {"error": "content policy violation"})

        with pytest.raises(ContentRejectedError):
            await chain.invoke(_fn)
        assert seen == ["alpha"]

    @pytest.mark.asyncio
    async def test_fatal_stops_chain(self, pooled_provider, keyless_provider, fake_sleep) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )
        seen: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            seen.append(cfg.provider_id)
            raise FatalProviderError("Unexpected response", provider_id=cfg.provider_id)

        with pytest.raises(FatalProviderError):
            await chain.invoke(_fn)
        assert seen == ["alpha"]

    @pytest.mark.asyncio
    async def test_fatal_fallback_keeps_earlier_rate_limit(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            if cfg.provider_id == "alpha":
                raise http_error(429)
            raise http_error(403, {"error": "forbidden"})

        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await chain.invoke(_fn)

        exc = exc_info.value
        assert [f.kind for f in exc.failures] == [ErrorKind.POOL_EXHAUSTED, ErrorKind.FATAL]
        assert exc.rate_limited is True
        assert exc.network_origin is False
        assert exc.errors["beta"] == "HTTP 403: forbidden"

    @pytest.mark.asyncio
    async def test_escalation_limit_is_enforced(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )
        seen: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            seen.append(cfg.provider_id)
            raise http_error(429)

        budget = CallBudget(max_calls=20, max_escalations=0)
        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await chain.invoke(_fn, budget=budget)

        assert set(seen) == {"alpha"}
        assert [f.provider_id for f in exc_info.value.failures] == ["alpha"]
        assert budget.escalations == 0

    @pytest.mark.asyncio
    async def test_spent_call_budget_escalates(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )
        seen: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            seen.append(cfg.provider_id)
            # Keys come back mid-request, so rotation alone never runs dry.
            chain.pool("alpha").reset_all()
            raise http_error(429)

        budget = chain.new_budget()
        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await chain.invoke(_fn, budget=budget)

        assert seen == ["alpha"] * budget.max_calls
        assert budget.escalations == 1
        failures = exc_info.value.failures
        assert [f.provider_id for f in failures] == ["alpha", "beta"]
        assert all("Call budget" in f.message for f in failures)

    @pytest.mark.asyncio
    async def test_all_providers_rate_limited(
        self, pooled_provider, keyless_provider, fake_sleep, http_error
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise http_error(429)

        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await chain.invoke(_fn)

        exc = exc_info.value
        assert exc.rate_limited is True
        assert exc.network_origin is False
        assert set(exc.errors) == {"alpha", "beta"}
        assert [f.kind for f in exc.failures] == [ErrorKind.POOL_EXHAUSTED, ErrorKind.RATE_LIMITED]

    @pytest.mark.asyncio
    async def test_all_providers_unreachable(
        self, pooled_provider, keyless_provider, fake_sleep
    ) -> None:
        chain = ProviderChain(
            [pooled_provider, keyless_provider],
            invoker=ResilientInvoker(sleep=fake_sleep),
        )

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise httpx.ConnectError("dns failure", request=httpx.Request("POST", "https://x"))

        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await chain.invoke(_fn)
        assert exc_info.value.network_origin is True
        assert exc_info.value.rate_limited is False

    @pytest.mark.asyncio
    async def test_single_provider_surfaces_pool_exhaustion(self, fake_sleep, http_error) -> None:
        cfg = ProviderConfig(provider_id="solo", api_keys=("k1", "k2", "k3"))
        pool = KeyPool(cfg.api_keys, provider_id="solo")
        pool.block("k1")
        pool.block("k2")
        chain = ProviderChain([cfg], pools={"solo": pool}, invoker=ResilientInvoker(sleep=fake_sleep))
        used: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            used.append(key)
            raise http_error(429)

        with pytest.raises(PoolExhaustedError):
            await chain.invoke(_fn)
        assert used == ["k3"]
        assert pool.blocked == frozenset({"k1", "k2", "k3"})

    @pytest.mark.asyncio
    async def test_single_provider_network_failure(self, keyless_provider, fake_sleep) -> None:
        chain = ProviderChain([keyless_provider], invoker=ResilientInvoker(sleep=fake_sleep))

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise httpx.ConnectError("refused", request=httpx.Request("POST", "https://x"))

        with pytest.raises(FatalProviderError) as exc_info:
            await chain.invoke(_fn)
        assert exc_info.value.network_origin is True

    @pytest.mark.asyncio
    async def test_unconfigured_pool_escalates_immediately(self, keyless_provider, fake_sleep) -> None:
        empty = ProviderConfig(provider_id="empty", api_keys=())
        chain = ProviderChain([empty, keyless_provider], invoker=ResilientInvoker(sleep=fake_sleep))
        seen: list[str] = []

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            seen.append(cfg.provider_id)
            return "beta-result"

        assert await chain.invoke(_fn) == "beta-result"
        assert seen == ["beta"]

    def test_shared_pools_are_reused(self, pooled_provider) -> None:
        shared = KeyPool(["x1"], provider_id="alpha")
        chain = ProviderChain([pooled_provider], pools={"alpha": shared})
        assert chain.pool("alpha") is shared


# ═══════════════════════════════════════════════════════════════
#  CallOrchestrator
# ═══════════════════════════════════════════════════════════════
class TestCallOrchestrator:
    @pytest.mark.asyncio
    async def test_execute_records_health(self, pooled_provider, fake_sleep, http_error) -> None:
        orch = CallOrchestrator([pooled_provider], sleep=fake_sleep, operation="text")

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            if key == "key-a2":
                raise http_error(429)
            return "hello"

        assert await orch.execute(_fn) == "hello"

        health = orch.get_health("alpha")
        assert health is not None
        assert health.total_attempts == 2
        assert health.outcomes == {"rate_limited": 1, "success": 1}
        assert health.consecutive_failures == 0
        assert (health.pool_size, health.blocked_keys, health.cursor) == (3, 1, 2)
        assert health.kind == "key_pool"

    @pytest.mark.asyncio
    async def test_execute_propagates_terminal_error(self, keyless_provider, fake_sleep) -> None:
        orch = CallOrchestrator([keyless_provider], sleep=fake_sleep)

        async def _fn(cfg: ProviderConfig, key: str) -> str:
            raise httpx.ConnectError("refused", request=httpx.Request("POST", "https://x"))

        with pytest.raises(FatalProviderError):
            await orch.execute(_fn)
        health = orch.get_health("beta")
        assert health.consecutive_failures == 3
        assert health.kind == "keyless"
        assert health.last_error.startswith("ConnectError")

    def test_unknown_provider_health(self, pooled_provider) -> None:
        orch = CallOrchestrator([pooled_provider])
        assert orch.get_health("nope") is None
        assert orch.has_provider("alpha")
        assert not orch.has_provider("nope")

    def test_unblock_and_reset(self, pooled_provider) -> None:
        pool = KeyPool(pooled_provider.api_keys, provider_id="alpha")
        orch = CallOrchestrator([pooled_provider], pools={"alpha": pool})
        for key in pool.keys:
            pool.block(key)

        assert orch.unblock("alpha", 0) is True
        assert pool.blocked == frozenset({"key-a2", "key-a3"})

        orch.reset_provider("alpha")
        assert pool.blocked == frozenset()

    def test_unblock_keyless_provider_is_noop(self, keyless_provider) -> None:
        orch = CallOrchestrator([keyless_provider])
        assert orch.unblock("beta", 0) is False

    def test_get_all_health_in_chain_order(self, pooled_provider, keyless_provider) -> None:
        orch = CallOrchestrator([pooled_provider, keyless_provider])
        assert [h.provider_id for h in orch.get_all_health()] == ["alpha", "beta"]


# ═══════════════════════════════════════════════════════════════
#  ProviderHealthTracker
# ═══════════════════════════════════════════════════════════════
class TestProviderHealthTracker:
    def _attempt(self, outcome: AttemptOutcome, latency: float = 50.0, error: str | None = None) -> Attempt:
        return Attempt(provider_id="t", credential="****", outcome=outcome, latency_ms=latency, error=error)

    def test_starts_healthy(self) -> None:
        h = ProviderHealthTracker("t").health
        assert h.success_rate == 1.0
        assert h.total_attempts == 0

    def test_success_resets_consecutive_failures(self) -> None:
        tracker = ProviderHealthTracker("t")
        tracker.record(self._attempt(AttemptOutcome.TRANSIENT, error="e1"))
        tracker.record(self._attempt(AttemptOutcome.RATE_LIMITED, error="e2"))
        assert tracker.consecutive_failures == 2
        tracker.record(self._attempt(AttemptOutcome.SUCCESS))
        assert tracker.consecutive_failures == 0
        assert tracker.health.last_error == "e2"

    def test_success_rate(self) -> None:
        tracker = ProviderHealthTracker("t")
        for _ in range(3):
            tracker.record(self._attempt(AttemptOutcome.SUCCESS))
        tracker.record(self._attempt(AttemptOutcome.FATAL, error="boom"))
        assert tracker.health.success_rate == 0.75

    def test_latency_percentiles(self) -> None:
        tracker = ProviderHealthTracker("t")
        for lat in [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]:
            tracker.record(self._attempt(AttemptOutcome.SUCCESS, latency=float(lat)))
        h = tracker.health
        assert 40 <= h.latency_p50_ms <= 60
        assert h.latency_p95_ms >= 90
