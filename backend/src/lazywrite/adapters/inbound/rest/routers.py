"""Health, Generation and Provider admin — REST routers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from lazywrite.application.dtos import (
    ErrorResponse,
    HealthResponse,
    ImageResponse,
    MessageResponse,
    PromptRequest,
    ProviderHealthResponse,
    TextResponse,
    UnblockRequest,
)
from lazywrite.application.services import BookGenerationService
from lazywrite.dependencies import (
    Container,
    get_book_service,
    get_container,
    get_image_generator,
    get_text_generator,
)
from lazywrite.domain.exceptions import ValidationError
from lazywrite.ports.outbound import ImageGeneratorPort, TextGeneratorPort
from lazywrite.shared.providers.orchestrator import CallOrchestrator

BOOK_FILENAME = "LazyWrite-Educational-Book.pdf"

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (400, 429, 500, 503)
}


def require_prompt(body: PromptRequest | None, message: str = "Prompt is required.") -> str:
    prompt = body.prompt if body is not None else None
    if not prompt:
        raise ValidationError(message)
    return prompt


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "💜 LazyWrite AI Backend is running!"


@health_router.get("/health", response_model=HealthResponse)
async def health_check(container: Container = Depends(get_container)) -> HealthResponse:
    providers: dict[str, str] = {}
    for orchestrator in container.orchestrators:
        for health in orchestrator.get_all_health():
            if health.pool_size and health.blocked_keys >= health.pool_size:
                providers[health.provider_id] = "exhausted"
            elif health.kind == "key_pool" and not health.pool_size:
                providers[health.provider_id] = "unconfigured"
            elif health.consecutive_failures:
                providers[health.provider_id] = "degraded"
            else:
                providers[health.provider_id] = "ok"

    overall = "ok" if all(v == "ok" for v in providers.values()) else "degraded"
    return HealthResponse(
        status=overall,
        environment=container.settings.app_env.value,
        providers=providers,
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════
generation_router = APIRouter(tags=["Generation"])


@generation_router.post("/generate-text", response_model=TextResponse, responses=ERROR_RESPONSES)
async def generate_text(
    body: PromptRequest | None = None,
    text_generator: TextGeneratorPort = Depends(get_text_generator),
) -> TextResponse:
    prompt = require_prompt(body)
    return TextResponse(text=await text_generator.generate_text(prompt))


@generation_router.post(
    "/generate-image",
    response_model=ImageResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
async def generate_image(
    body: PromptRequest | None = None,
    image_generator: ImageGeneratorPort = Depends(get_image_generator),
) -> ImageResponse:
    prompt = require_prompt(body)
    image = await image_generator.generate_image(prompt)
    return ImageResponse(**image.to_dict())


@generation_router.get("/generate-book", response_model=MessageResponse)
async def generate_book_info() -> MessageResponse:
    return MessageResponse(
        message=(
            "This endpoint only supports POST requests for AI book generation. "
            "Please use POST with a prompt."
        )
    )


@generation_router.post(
    "/generate-book",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}, **ERROR_RESPONSES},
)
async def generate_book(
    body: PromptRequest | None = None,
    service: BookGenerationService = Depends(get_book_service),
) -> Response:
    prompt = require_prompt(body, "Please provide a description for your book.")
    result = await service.generate_book(prompt)
    return Response(
        content=result.pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={BOOK_FILENAME}"},
    )


# ═══════════════════════════════════════════════════════════════
#  Provider Health (admin)
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Health"])


def _find_orchestrator(container: Container, provider_id: str) -> CallOrchestrator:
    orchestrator = container.orchestrator_for(provider_id)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider: {provider_id}",
        )
    return orchestrator


@providers_router.get("/health", response_model=list[ProviderHealthResponse])
async def provider_health(
    container: Container = Depends(get_container),
) -> list[ProviderHealthResponse]:
    """Get health snapshots for all configured providers."""
    return [
        ProviderHealthResponse(
            provider_id=h.provider_id,
            kind=h.kind,
            total_attempts=h.total_attempts,
            outcomes=h.outcomes,
            consecutive_failures=h.consecutive_failures,
            success_rate=h.success_rate,
            latency_p50_ms=h.latency_p50_ms,
            latency_p95_ms=h.latency_p95_ms,
            last_error=h.last_error,
            pool_size=h.pool_size,
            blocked_keys=h.blocked_keys,
            cursor=h.cursor,
        )
        for orchestrator in container.orchestrators
        for h in orchestrator.get_all_health()
    ]


@providers_router.post("/{provider_id}/reset")
async def reset_provider(
    provider_id: str,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    """Admin: unblock every key of a provider."""
    _find_orchestrator(container, provider_id).reset_provider(provider_id)
    return {"status": "reset", "provider_id": provider_id}


@providers_router.post("/{provider_id}/unblock")
async def unblock_key(
    provider_id: str,
    body: UnblockRequest,
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    """Admin: return one key (by position) to rotation."""
    orchestrator = _find_orchestrator(container, provider_id)
    try:
        unblocked = orchestrator.unblock(provider_id, body.key_index)
    except IndexError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"status": "unblocked" if unblocked else "not_blocked", "provider_id": provider_id}
