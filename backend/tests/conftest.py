"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from lazywrite.shared.providers.types import ProviderConfig, ProviderKind


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that only records the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def http_error(status_code: int, body: Any = None) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://provider.test/v1/generate")
    response = httpx.Response(status_code, json=body if body is not None else {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def pooled_provider() -> ProviderConfig:
    return ProviderConfig(
        provider_id="alpha",
        kind=ProviderKind.KEY_POOL,
        api_keys=("key-a1", "key-a2", "key-a3"),
        timeout_s=5.0,
        max_retries=2,
    )


@pytest.fixture
def keyless_provider() -> ProviderConfig:
    return ProviderConfig(
        provider_id="beta",
        kind=ProviderKind.KEYLESS,
        timeout_s=5.0,
        max_retries=2,
    )


@pytest.fixture(name="http_error")
def http_error_factory():
    return http_error
