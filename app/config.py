"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieZ", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")
    tmdb_max_retries: int = Field(default=2, alias="TMDB_MAX_RETRIES", ge=0, le=5)
    request_timeout_seconds: float = Field(
        default=8.0, alias="REQUEST_TIMEOUT", ge=1.0, le=60.0
    )

    interaction_fetch_limit: int = Field(
        default=50, alias="INTERACTION_FETCH_LIMIT", ge=1, le=500
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./moviez.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank_key(cls, value: object) -> object:
        """Treat blank API keys as missing configuration."""

        if isinstance(value, str):
            cleaned = value.strip()
            return cleaned or None
        return value

    @property
    def tmdb_configured(self) -> bool:
        return bool(self.tmdb_api_key)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
