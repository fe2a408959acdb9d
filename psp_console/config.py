"""PSP console configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the PSP console backend."""

    environment: str = "development"

    # PSP core API
    api_url: str = "http://localhost:3001"
    merchant_id: str = ""
    api_key: str = ""
    request_timeout_seconds: float = 10.0

    # Webhooks
    webhook_secret: str = ""
    inbox_token: str = ""
    inbox_max_items: int = 100

    # Durable inbox store (both must be set to enable it)
    kv_url: str = Field(
        default="",
        validation_alias=AliasChoices(
            "kv_url", "PSP_KV_URL", "KV_REST_API_URL", "UPSTASH_REDIS_REST_URL", "KV_URL"
        ),
    )
    kv_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "kv_token", "PSP_KV_TOKEN", "KV_REST_API_TOKEN", "UPSTASH_REDIS_REST_TOKEN"
        ),
    )

    poll_interval_seconds: float = 2.0

    model_config = {
        "env_prefix": "PSP_",
        "env_file": ".env",
        "extra": "ignore",
        "populate_by_name": True,
        "str_strip_whitespace": True,
    }

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slashes(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("inbox_max_items")
    @classmethod
    def _positive_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("inbox_max_items must be >= 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def kv_enabled(self) -> bool:
        return bool(self.kv_url and self.kv_token)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()
