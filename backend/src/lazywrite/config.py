"""LazyWrite — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def parse_key_list(*values: str) -> tuple[str, ...]:
    """Merge single keys and comma-separated key lists, keeping order.

    Empty entries and duplicates are dropped.
    """
    keys: list[str] = []
    for value in values:
        for part in (value or "").split(","):
            part = part.strip()
            if part and part not in keys:
                keys.append(part)
    return tuple(keys)


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "lazywrite"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 5000
    log_level: str = "INFO"
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "https://lazywrite.vercel.app",
            "https://lazywrite.netlify.app",
            "https://lazywriteai.netlify.app",
            "http://localhost:5173",
        ]
    )

    # Base URL for calls this server makes to its own endpoints
    self_url: str = ""

    # ── OpenRouter (text) ────────────────────────────────────
    openrouter_api_key: str = ""
    openrouter_api_key_2: str = ""
    openrouter_api_key_3: str = ""
    openrouter_api_keys: str = ""  # comma-separated, appended after the numbered keys
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "gpt-4.1"

    # ── Hugging Face (image) ─────────────────────────────────
    hugging_face_api_key: str = ""
    hugging_face_api_key_2: str = ""
    hugging_face_api_key_3: str = ""
    hugging_face_api_key_4: str = ""
    hugging_face_api_key_5: str = ""
    hugging_face_api_key_6: str = ""
    hugging_face_api_keys: str = ""
    hugging_face_model_url: str = (
        "https://api-inference.huggingface.co/models/stabilityai/stable-diffusion-2"
    )

    # ── Craiyon (keyless image fallback) ─────────────────────
    craiyon_enabled: bool = True
    craiyon_url: str = "https://backend.craiyon.com/generate"

    # ── Provider resilience ──────────────────────────────────
    provider_timeout_seconds: float = 60.0
    provider_max_retries: int = 2
    provider_backoff_base: float = 2.0

    # ── Book assembly ────────────────────────────────────────
    book_use_internal_http: bool = False
    internal_timeout_seconds: float = 180.0
    image_fetch_timeout_seconds: float = 30.0

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @property
    def expose_error_details(self) -> bool:
        return self.app_env == Environment.DEVELOPMENT and self.app_debug

    @property
    def internal_base_url(self) -> str:
        return (self.self_url or f"http://localhost:{self.app_port}").rstrip("/")

    @property
    def openrouter_keys(self) -> tuple[str, ...]:
        return parse_key_list(
            self.openrouter_api_key,
            self.openrouter_api_key_2,
            self.openrouter_api_key_3,
            self.openrouter_api_keys,
        )

    @property
    def hugging_face_keys(self) -> tuple[str, ...]:
        return parse_key_list(
            self.hugging_face_api_key,
            self.hugging_face_api_key_2,
            self.hugging_face_api_key_3,
            self.hugging_face_api_key_4,
            self.hugging_face_api_key_5,
            self.hugging_face_api_key_6,
            self.hugging_face_api_keys,
        )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator(
        "provider_timeout_seconds",
        "provider_backoff_base",
        "internal_timeout_seconds",
        "image_fetch_timeout_seconds",
    )
    @classmethod
    def _positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and backoff delays must be positive")
        return v

    @field_validator("provider_max_retries")
    @classmethod
    def _non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("provider_max_retries cannot be negative")
        return v


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
