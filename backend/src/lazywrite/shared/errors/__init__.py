"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
import structlog

from lazywrite.config import Settings
from lazywrite.domain.exceptions import DomainError, ValidationError
from lazywrite.shared.providers.errors import (
    AllProvidersExhaustedError,
    ContentRejectedError,
    FatalProviderError,
    ProviderCallError,
)

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = 60

RATE_LIMIT_MESSAGE = (
    "We're experiencing high demand. All API keys are currently rate-limited. "
    "Please try again in a few minutes."
)
CONTENT_MESSAGE = (
    "Please ensure your book topic is appropriate for children. Content filter triggered."
)
NETWORK_MESSAGE = (
    "We're experiencing connectivity issues with our AI providers. Please try again later."
)
GENERIC_MESSAGE = "Failed to generate content. Please try again."


def is_network_origin(exc: ProviderCallError) -> bool:
    if isinstance(exc, (FatalProviderError, AllProvidersExhaustedError)):
        return exc.network_origin
    return False


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Register all domain→HTTP exception mappings."""

    def _internal_error(exc: Exception, *, code: str) -> ORJSONResponse:
        content: dict[str, object] = {"code": code, "error": GENERIC_MESSAGE}
        if settings.expose_error_details:
            content["details"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
        return ORJSONResponse(status_code=500, content=content)

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=400,
            content={"code": exc.code, "error": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=400,
            content={"code": "VALIDATION_ERROR", "error": "Invalid request body."},
        )

    @app.exception_handler(ProviderCallError)
    async def handle_provider(request: Request, exc: ProviderCallError) -> ORJSONResponse:
        if exc.rate_limited:
            logger.warning("rate_limited_http", provider=exc.provider_id, error=exc.message)
            return ORJSONResponse(
                status_code=429,
                content={
                    "code": exc.code,
                    "error": RATE_LIMIT_MESSAGE,
                    "retryAfter": RETRY_AFTER_SECONDS,
                },
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )

        if isinstance(exc, ContentRejectedError):
            logger.info("content_rejected_http", provider=exc.provider_id)
            return ORJSONResponse(
                status_code=400,
                content={"code": exc.code, "error": CONTENT_MESSAGE},
            )

        if is_network_origin(exc):
            logger.error("provider_network_http", provider=exc.provider_id, error=exc.message)
            return ORJSONResponse(
                status_code=503,
                content={"code": exc.code, "error": NETWORK_MESSAGE, "isNetworkError": True},
            )

        logger.error(
            "provider_error_http",
            kind=exc.kind.value,
            provider=exc.provider_id,
            error=exc.message,
        )
        return _internal_error(exc, code=exc.code)

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        logger.error("domain_error_http", code=exc.code, error=exc.message)
        return _internal_error(exc, code=exc.code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return _internal_error(exc, code="INTERNAL_ERROR")
