"""Text provider adapter — backed by the CallOrchestrator.

The OpenRouter HTTP call is a pure function.  The orchestrator handles key
rotation, retries, backoff and health tracking.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx
import structlog

from lazywrite.ports.outbound import TextGeneratorPort
from lazywrite.shared.providers.errors import FatalProviderError
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.orchestrator import CallOrchestrator
from lazywrite.shared.providers.types import ProviderConfig, ProviderKind

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You are a creative book-writing assistant."


def build_text_provider_configs(
    *,
    openrouter_keys: Sequence[str] = (),
    openrouter_base_url: str = "https://openrouter.ai/api/v1",
    openrouter_model: str = "gpt-4.1",
    timeout_s: float = 60.0,
    max_retries: int = 2,
    backoff_base_s: float = 2.0,
) -> list[ProviderConfig]:
    """Build the text provider chain from settings values."""
    return [
        ProviderConfig(
            provider_id="openrouter",
            kind=ProviderKind.KEY_POOL,
            api_keys=tuple(openrouter_keys),
            timeout_s=timeout_s,
            max_retries=max_retries,
            backoff_base_s=backoff_base_s,
            metadata={"model": openrouter_model, "base_url": openrouter_base_url},
        ),
    ]


class ResilientTextAdapter(TextGeneratorPort):
    """Chat-completion text generation with key rotation and retries."""

    def __init__(
        self,
        provider_configs: Sequence[ProviderConfig],
        *,
        client: httpx.AsyncClient,
        pools: dict[str, KeyPool] | None = None,
        orchestrator: CallOrchestrator | None = None,
    ) -> None:
        self._client = client
        self._orchestrator = orchestrator or CallOrchestrator(
            provider_configs,
            pools=pools,
            operation="text",
        )

    @property
    def orchestrator(self) -> CallOrchestrator:
        """Expose orchestrator for health inspection / admin reset."""
        return self._orchestrator

    async def generate_text(self, prompt: str) -> str:
        async def _call(cfg: ProviderConfig, api_key: str) -> str:
            if cfg.provider_id == "openrouter":
                return await self._invoke_openrouter(
                    api_key,
                    prompt,
                    model=cfg.metadata.get("model", "gpt-4.1"),
                    base_url=cfg.metadata.get("base_url", "https://openrouter.ai/api/v1"),
                )
            raise ValueError(f"Unknown text provider: {cfg.provider_id}")

        return await self._orchestrator.execute(_call)

    # ── Provider HTTP calls (pure, no retry logic) ───────────
    async def _invoke_openrouter(
        self,
        api_key: str,
        prompt: str,
        *,
        model: str,
        base_url: str,
    ) -> str:
        response = await self._client.post(
            f"{base_url.rstrip('/')}/chat/completions",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            },
        )
        response.raise_for_status()
        return self._extract_text(response.json())

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise FatalProviderError(
                "Unexpected response from OpenRouter.", provider_id="openrouter"
            ) from exc
        text = str(content or "").strip()
        if not text:
            raise FatalProviderError("OpenRouter returned an empty completion.", provider_id="openrouter")
        return text
