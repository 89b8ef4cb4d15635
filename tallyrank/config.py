"""Runtime settings for the counter store, the ranker and the HTTP API."""
from __future__ import annotations

import re
from functools import lru_cache

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PREFIX_FORBIDDEN = re.compile(r"[:*?\[\]]")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TALLYRANK_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "tallyrank"
    redis_url: AnyUrl = Field(default="redis://localhost:6379/0")
    prefix: str = "tallyrank"
    # Bucket size: milliseconds or "{n}{s|m|h|d}".
    window: int | str = "1h"
    # None, 0 or negative disables eviction.
    retention: int | str | None = None
    cache_ttl_seconds: float = 60.0
    max_pipeline_size: int = Field(default=48, gt=0)
    request_timeout_seconds: float = 5.0
    identifier_field: str = "identifier"
    success_field: str = "success"
    denied_marker: str = "denied"
    log_level: str = "INFO"

    @field_validator("window", "retention", mode="before")
    @classmethod
    def _digits_are_milliseconds(cls, value):
        # Environment values arrive as strings; "60000" means milliseconds.
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not value or _PREFIX_FORBIDDEN.search(value):
            raise ValueError(f"Invalid key prefix: {value!r}")
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
