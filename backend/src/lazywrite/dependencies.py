"""Dependency injection container — wires adapters to ports.

Everything stateful (the shared HTTP client, the key pools, the provider
orchestrators) is built once per application in ``build_container`` and
stored on ``app.state``.  FastAPI's ``Depends()`` getters below read it back
for route handlers, so tests can swap the whole container.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog
from fastapi import Request

from lazywrite.adapters.outbound.imaging import ResilientImageAdapter, build_image_provider_configs
from lazywrite.adapters.outbound.internal import SelfServiceClient, build_self_provider_config
from lazywrite.adapters.outbound.llm import ResilientTextAdapter, build_text_provider_configs
from lazywrite.adapters.outbound.pdf import ReportLabBookRenderer
from lazywrite.application.services import BookGenerationService
from lazywrite.config import Settings
from lazywrite.ports.outbound import ImageGeneratorPort, TextGeneratorPort
from lazywrite.shared.providers.key_pool import KeyPool
from lazywrite.shared.providers.orchestrator import CallOrchestrator

logger = structlog.get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    http_client: httpx.AsyncClient | None
    text_generator: TextGeneratorPort
    image_generator: ImageGeneratorPort
    book_service: BookGenerationService
    orchestrators: list[CallOrchestrator] = field(default_factory=list)

    def orchestrator_for(self, provider_id: str) -> CallOrchestrator | None:
        for orchestrator in self.orchestrators:
            if orchestrator.has_provider(provider_id):
                return orchestrator
        return None

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()


def build_key_pools(settings: Settings) -> dict[str, KeyPool]:
    """One pool per key-backed provider, shared for the process lifetime."""
    return {
        "openrouter": KeyPool(settings.openrouter_keys, provider_id="openrouter"),
        "huggingface": KeyPool(settings.hugging_face_keys, provider_id="huggingface"),
    }


def build_container(settings: Settings) -> Container:
    client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    pools = build_key_pools(settings)
    knobs = {
        "timeout_s": settings.provider_timeout_seconds,
        "max_retries": settings.provider_max_retries,
        "backoff_base_s": settings.provider_backoff_base,
    }

    text = ResilientTextAdapter(
        build_text_provider_configs(
            openrouter_keys=settings.openrouter_keys,
            openrouter_base_url=settings.openrouter_base_url,
            openrouter_model=settings.openrouter_model,
            **knobs,
        ),
        client=client,
        pools=pools,
    )
    images = ResilientImageAdapter(
        build_image_provider_configs(
            hugging_face_keys=settings.hugging_face_keys,
            hugging_face_model_url=settings.hugging_face_model_url,
            craiyon_enabled=settings.craiyon_enabled,
            craiyon_url=settings.craiyon_url,
            **knobs,
        ),
        client=client,
        pools=pools,
    )
    orchestrators = [text.orchestrator, images.orchestrator]

    book_text: TextGeneratorPort = text
    book_images: ImageGeneratorPort = images
    if settings.book_use_internal_http:
        internal = SelfServiceClient(
            build_self_provider_config(
                settings.internal_base_url,
                timeout_s=settings.internal_timeout_seconds,
                max_retries=settings.provider_max_retries,
                backoff_base_s=settings.provider_backoff_base,
            ),
            client=client,
        )
        book_text = book_images = internal
        orchestrators.append(internal.orchestrator)

    book_service = BookGenerationService(
        book_text,
        book_images,
        ReportLabBookRenderer(),
        http_client=client,
        image_fetch_timeout=settings.image_fetch_timeout_seconds,
    )

    logger.info(
        "container_built",
        openrouter_keys=pools["openrouter"].size,
        huggingface_keys=pools["huggingface"].size,
        craiyon=settings.craiyon_enabled,
        internal_http=settings.book_use_internal_http,
    )
    return Container(
        settings=settings,
        http_client=client,
        text_generator=text,
        image_generator=images,
        book_service=book_service,
        orchestrators=orchestrators,
    )


# ── Request-scoped getters ───────────────────────────────────
def get_container(request: Request) -> Container:
    return request.app.state.container


def get_text_generator(request: Request) -> TextGeneratorPort:
    return get_container(request).text_generator


def get_image_generator(request: Request) -> ImageGeneratorPort:
    return get_container(request).image_generator


def get_book_service(request: Request) -> BookGenerationService:
    return get_container(request).book_service
