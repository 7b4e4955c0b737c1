"""Image provider adapter — Hugging Face first, Craiyon as keyless fallback."""

from __future__ import annotations

import base64
from typing import Any, Sequence

import httpx
import structlog

from lazywrite.ports.outbound import GeneratedImage, ImageGeneratorPort
from lazywrite.shared.providers.errors import FatalProviderError
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.orchestrator import CallOrchestrator
from lazywrite.shared.providers.types import ProviderConfig, ProviderKind

logger = structlog.get_logger(__name__)


def build_image_provider_configs(
    *,
    hugging_face_keys: Sequence[str] = (),
    hugging_face_model_url: str = (
        "https://api-inference.huggingface.co/models/stabilityai/stable-diffusion-2"
    ),
    craiyon_enabled: bool = True,
    craiyon_url: str = "https://backend.craiyon.com/generate",
    timeout_s: float = 60.0,
    max_retries: int = 2,
    backoff_base_s: float = 2.0,
) -> list[ProviderConfig]:
    """Build the image provider chain: key-pool primary, keyless fallback."""
    configs = [
        ProviderConfig(
            provider_id="huggingface",
            kind=ProviderKind.KEY_POOL,
            api_keys=tuple(hugging_face_keys),
            timeout_s=timeout_s,
            max_retries=max_retries,
            backoff_base_s=backoff_base_s,
            metadata={"url": hugging_face_model_url},
        ),
    ]
    if craiyon_enabled:
        configs.append(
            ProviderConfig(
                provider_id="craiyon",
                kind=ProviderKind.KEYLESS,
                timeout_s=timeout_s,
                max_retries=max_retries,
                backoff_base_s=backoff_base_s,
                metadata={"url": craiyon_url},
            )
        )
    return configs


class ResilientImageAdapter(ImageGeneratorPort):
    """Image generation across a provider chain with key rotation."""

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
            operation="image",
        )

    @property
    def orchestrator(self) -> CallOrchestrator:
        return self._orchestrator

    async def generate_image(self, prompt: str) -> GeneratedImage:
        async def _call(cfg: ProviderConfig, api_key: str) -> GeneratedImage:
            if cfg.provider_id == "huggingface":
                return await self._invoke_huggingface(api_key, prompt, url=cfg.metadata["url"])
            if cfg.provider_id == "craiyon":
                return await self._invoke_craiyon(prompt, url=cfg.metadata["url"])
            raise ValueError(f"Unknown image provider: {cfg.provider_id}")

        return await self._orchestrator.execute(_call)

    # ── Provider HTTP calls (pure, no retry logic) ───────────
    async def _invoke_huggingface(self, api_key: str, prompt: str, *, url: str) -> GeneratedImage:
        response = await self._client.post(
            url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={"inputs": prompt},
        )
        response.raise_for_status()

        # The inference API answers with raw image bytes; some hosted
        # pipelines wrap the result as [{"url": ...}] or [{"image": ...}].
        if response.headers.get("content-type", "").startswith("image/"):
            return GeneratedImage(base64=base64.b64encode(response.content).decode("ascii"))
        return self._parse_huggingface_json(response.json())

    async def _invoke_craiyon(self, prompt: str, *, url: str) -> GeneratedImage:
        response = await self._client.post(url, json={"prompt": prompt})
        response.raise_for_status()
        data = response.json()
        images = data.get("images") if isinstance(data, dict) else None
        if not images or not images[0]:
            raise FatalProviderError("Unexpected response from Craiyon.", provider_id="craiyon")
        return GeneratedImage(base64=str(images[0]))

    @staticmethod
    def _parse_huggingface_json(data: Any) -> GeneratedImage:
        first = data[0] if isinstance(data, list) and data else data
        if isinstance(first, dict):
            if first.get("url"):
                return GeneratedImage(url=str(first["url"]))
            if first.get("image"):
                return GeneratedImage(base64=str(first["image"]))
        raise FatalProviderError("Unexpected response from Hugging Face.", provider_id="huggingface")
