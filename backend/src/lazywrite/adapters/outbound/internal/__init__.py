"""Self-service client — calls this server's own generation endpoints.

Used when book assembly is configured to go through the public HTTP API
instead of calling the adapters in-process.  The server itself is modelled
as a keyless provider, so the same retry/backoff policy applies: 5xx and
network errors are retried, 429 and content rejections are surfaced with
their original kind.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from lazywrite.ports.outbound import GeneratedImage, ImageGeneratorPort, TextGeneratorPort
from lazywrite.shared.providers.errors import FatalProviderError
from lazywrite.shared.providers.orchestrator import CallOrchestrator
from lazywrite.shared.providers.types import ProviderConfig, ProviderKind

logger = structlog.get_logger(__name__)


def build_self_provider_config(
    base_url: str,
    *,
    timeout_s: float = 180.0,
    max_retries: int = 2,
    backoff_base_s: float = 2.0,
) -> ProviderConfig:
    return ProviderConfig(
        provider_id="self",
        kind=ProviderKind.KEYLESS,
        timeout_s=timeout_s,
        max_retries=max_retries,
        backoff_base_s=backoff_base_s,
        metadata={"base_url": base_url.rstrip("/")},
    )


class SelfServiceClient(TextGeneratorPort, ImageGeneratorPort):
    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient,
        orchestrator: CallOrchestrator | None = None,
    ) -> None:
        self._client = client
        self._orchestrator = orchestrator or CallOrchestrator([config], operation="internal")

    @property
    def orchestrator(self) -> CallOrchestrator:
        return self._orchestrator

    async def generate_text(self, prompt: str) -> str:
        data = await self._post("/generate-text", prompt)
        text = data.get("text")
        if not text:
            raise FatalProviderError(
                "Failed to generate book content: No text data returned from API",
                provider_id="self",
            )
        return str(text)

    async def generate_image(self, prompt: str) -> GeneratedImage:
        data = await self._post("/generate-image", prompt)
        if data.get("imageUrl"):
            return GeneratedImage(url=str(data["imageUrl"]))
        if data.get("imageBase64"):
            return GeneratedImage(base64=str(data["imageBase64"]))
        raise FatalProviderError("No image data returned from API", provider_id="self")

    async def _post(self, endpoint: str, prompt: str) -> dict[str, Any]:
        async def _call(cfg: ProviderConfig, _key: str) -> dict[str, Any]:
            url = f"{cfg.metadata['base_url']}{endpoint}"
            logger.debug("internal_call", url=url)
            response = await self._client.post(
                url, json={"prompt": prompt}, timeout=cfg.timeout_s
            )
            response.raise_for_status()
            payload = response.json()
            return payload if isinstance(payload, dict) else {}

        return await self._orchestrator.execute(_call)
