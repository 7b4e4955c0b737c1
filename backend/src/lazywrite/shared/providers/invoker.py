"""Resilient invoker — one provider, bounded attempts.

Performs individual calls against a single provider, classifies each
outcome and applies the policy:

    RATE_LIMITED      → block the key, draw the next one, retry at once
    TRANSIENT         → exponential backoff, retry up to ``max_retries``
    CONTENT_REJECTED  → raise, no retry
    FATAL             → raise, no retry

Every attempt is reported to an optional hook (health tracking, metrics).
"""

from __future__ import annotations

import asyncio
import socket
import time
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import structlog

from lazywrite.shared.providers.errors import (
    ContentRejectedError,
    ErrorKind,
    FatalProviderError,
    ProviderCallError,
    RateLimitedError,
    TransientError,
)
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.types import (
    Attempt,
    AttemptOutcome,
    CallBudget,
    ProviderConfig,
    mask_credential,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RequestFn = Callable[[ProviderConfig, str], Awaitable[T]]
AttemptHook = Callable[[Attempt], None]
SleepFn = Callable[[float], Awaitable[Any]]

CONTENT_POLICY_MARKERS = (
    "content policy",
    "content filter",
    "content_filter",
    "safety",
    "nsfw",
    "moderation",
)
CONTENT_POLICY_STATUSES = frozenset({400, 403, 422})

_KIND_OUTCOMES: dict[ErrorKind, AttemptOutcome] = {
    ErrorKind.RATE_LIMITED: AttemptOutcome.RATE_LIMITED,
    ErrorKind.POOL_EXHAUSTED: AttemptOutcome.RATE_LIMITED,
    ErrorKind.CONTENT_REJECTED: AttemptOutcome.CONTENT_REJECTED,
    ErrorKind.TRANSIENT: AttemptOutcome.TRANSIENT,
}


# ── Classification ───────────────────────────────────────────
def classify_status(status_code: int, error_text: str = "") -> AttemptOutcome:
    """Map an HTTP status (plus the provider's error text) to an outcome."""
    if status_code == 429:
        return AttemptOutcome.RATE_LIMITED
    if 500 <= status_code < 600:
        return AttemptOutcome.TRANSIENT
    if status_code in CONTENT_POLICY_STATUSES:
        lowered = error_text.lower()
        if any(marker in lowered for marker in CONTENT_POLICY_MARKERS):
            return AttemptOutcome.CONTENT_REJECTED
    return AttemptOutcome.FATAL


def classify_exception(exc: BaseException) -> AttemptOutcome:
    """Decide how the invoker should react to a failed call."""
    if isinstance(exc, ProviderCallError):
        return _KIND_OUTCOMES.get(exc.kind, AttemptOutcome.FATAL)
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code, response_error_text(exc.response))
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return AttemptOutcome.TRANSIENT
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, socket.gaierror)):
        return AttemptOutcome.TRANSIENT
    return AttemptOutcome.FATAL


def response_error_text(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's error message."""
    try:
        data = response.json()
    except (ValueError, httpx.ResponseNotRead):
        try:
            return response.text
        except httpx.ResponseNotRead:
            return ""
    if isinstance(data, dict):
        error = data.get("error") or data.get("message") or data.get("detail") or ""
        if isinstance(error, dict):
            error = error.get("message") or error.get("code") or ""
        return str(error)
    return str(data)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        text = response_error_text(exc.response)[:200]
        return f"HTTP {exc.response.status_code}: {text}" if text else f"HTTP {exc.response.status_code}"
    if isinstance(exc, ProviderCallError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


# ── Invoker ──────────────────────────────────────────────────
class ResilientInvoker:
    """Drives one provider until success, a terminal error, or exhaustion."""

    def __init__(
        self,
        *,
        sleep: SleepFn = asyncio.sleep,
        on_attempt: AttemptHook | None = None,
    ) -> None:
        self._sleep = sleep
        self._on_attempt = on_attempt

    async def invoke(
        self,
        cfg: ProviderConfig,
        pool: KeyPool | None,
        request_fn: RequestFn[T],
        budget: CallBudget,
    ) -> T:
        """Call ``request_fn`` against ``cfg`` within ``budget``.

        Raises:
            PoolExhaustedError:   every key in ``pool`` is blocked.
            RateLimitedError:     keyless provider answered with a rate limit.
            TransientError:       transient retries or the call budget ran out.
            ContentRejectedError: provider refused the content.
            FatalProviderError:   anything else.
        """
        pid = cfg.provider_id

        while True:
            credential = "" if pool is None else pool.next()
            if not budget.spend_call():
                # Reachable when keys are unblocked mid-request; let the chain move on.
                logger.warning("provider_call_budget_exhausted", provider=pid, calls=budget.calls)
                raise TransientError(
                    f"Call budget of {budget.max_calls} exhausted",
                    provider_id=pid,
                )

            log = logger.bind(provider=pid, call=budget.calls, key=mask_credential(credential))
            outcome, result, error = await self._attempt(cfg, credential, request_fn)

            if outcome == AttemptOutcome.SUCCESS:
                log.info("provider_call_succeeded", retries=budget.retries, rotations=budget.rotations)
                return result  # type: ignore[return-value]

            message = describe_error(error) if error is not None else outcome.value

            if outcome == AttemptOutcome.RATE_LIMITED:
                if pool is None:
                    log.warning("provider_rate_limited", error=message)
                    raise RateLimitedError(f"{pid} is rate limited: {message}", provider_id=pid) from error
                pool.block(credential)
                budget.record_rotation()
                log.info("provider_key_rotating", rotations=budget.rotations)
                continue

            if outcome == AttemptOutcome.CONTENT_REJECTED:
                log.warning("provider_content_rejected", error=message)
                raise ContentRejectedError(message, provider_id=pid) from error

            if outcome == AttemptOutcome.FATAL:
                log.error("provider_call_fatal", error=message)
                raise FatalProviderError(message, provider_id=pid) from error

            if budget.retries >= cfg.max_retries:
                log.warning("provider_retries_exhausted", error=message, retries=budget.retries)
                raise TransientError(
                    f"{pid} failed after {budget.retries + 1} attempts: {message}",
                    provider_id=pid,
                ) from error

            delay = cfg.backoff_delay(budget.retries)
            budget.record_retry()
            log.warning(
                "provider_transient_retry",
                error=message,
                retry=budget.retries,
                max_retries=cfg.max_retries,
                delay_s=delay,
            )
            await self._sleep(delay)

    async def _attempt(
        self,
        cfg: ProviderConfig,
        credential: str,
        request_fn: RequestFn[T],
    ) -> tuple[AttemptOutcome, T | None, BaseException | None]:
        start = time.monotonic()
        result: T | None = None
        error: BaseException | None = None
        try:
            result = await asyncio.wait_for(request_fn(cfg, credential), timeout=cfg.timeout_s)
            outcome = AttemptOutcome.SUCCESS
        except asyncio.TimeoutError:
            error = TimeoutError(f"Timeout after {cfg.timeout_s}s")
            outcome = AttemptOutcome.TRANSIENT
        except Exception as exc:
            error = exc
            outcome = classify_exception(exc)
        latency_ms = (time.monotonic() - start) * 1000

        if self._on_attempt is not None:
            self._on_attempt(
                Attempt(
                    provider_id=cfg.provider_id,
                    credential=mask_credential(credential),
                    outcome=outcome,
                    latency_ms=float(f"{latency_ms:.1f}"),
                    error=None if error is None else describe_error(error),
                )
            )
        return outcome, result, error
