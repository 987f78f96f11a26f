"""Configuration loader for the TrendScope collector (Pydantic edition)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Iterable, Literal, Sequence

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .collector.models import PLATFORM_PRIORITY, Platform

LOGGER = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded safely."""


class AppConfig(BaseSettings):
    """Strongly typed runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        validate_default=True,
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENVIRONMENT", "APP_ENV"),
    )
    database_path: Path = Field(
        default=Path("data/trendscope.db"),
        validation_alias=AliasChoices("APP_DATABASE_PATH", "DATABASE_PATH"),
    )
    log_path: Path = Field(
        default=Path("logs/trendscope.log"),
        validation_alias=AliasChoices("APP_LOG_PATH", "LOG_PATH"),
    )

    # Credentials
    youtube_api_key: SecretStr | None = Field(default=None, validation_alias="YOUTUBE_API_KEY")
    serpapi_api_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("SERPAPI_API_KEY", "SERPAPI_KEY")
    )
    supabase_jwt_secret: SecretStr | None = Field(default=None, validation_alias="SUPABASE_JWT_SECRET")
    auth_disabled: bool = Field(False, validation_alias="APP_AUTH_DISABLED")
    api_host: str = Field("127.0.0.1", validation_alias="APP_API_HOST")
    api_port: int = Field(8000, ge=1, le=65535, validation_alias="APP_API_PORT")

    # Upstream adapters
    adapter_timeout_seconds: float = Field(15.0, gt=0, validation_alias="APP_ADAPTER_TIMEOUT")
    adapter_retry_attempts: int = Field(3, ge=1, le=10, validation_alias="APP_ADAPTER_RETRY_ATTEMPTS")
    adapter_retry_wait_seconds: float = Field(1.0, ge=0, validation_alias="APP_ADAPTER_RETRY_WAIT")
    default_max_results: int = Field(10, ge=1, le=50, validation_alias="APP_DEFAULT_MAX_RESULTS")
    youtube_max_duration_seconds: int | None = Field(None, ge=1, validation_alias="APP_YOUTUBE_MAX_DURATION")
    serpapi_device: Literal["desktop", "mobile"] = Field("mobile", validation_alias="APP_SERPAPI_DEVICE")
    platform_priority: Annotated[tuple[Platform, ...], NoDecode] = Field(
        PLATFORM_PRIORITY, validation_alias="APP_PLATFORM_PRIORITY"
    )

    # Deduplication
    dedup_by_title: bool = Field(False, validation_alias="APP_DEDUP_BY_TITLE")
    title_similarity_threshold: float = Field(0.9, ge=0, le=1, validation_alias="APP_TITLE_SIMILARITY_THRESHOLD")

    # Scheduling cadences
    trending_keywords: Annotated[tuple[str, ...], NoDecode] = Field(
        default_factory=tuple,
        validation_alias=AliasChoices("APP_TRENDING_KEYWORDS", "TRENDING_KEYWORDS"),
    )
    trending_interval_minutes: int = Field(60, ge=1, validation_alias="APP_TRENDING_INTERVAL")
    trending_lookback_days: int = Field(7, ge=1, le=30, validation_alias="APP_TRENDING_LOOKBACK_DAYS")
    retention_days: int = Field(30, ge=1, validation_alias="APP_RETENTION_DAYS")
    purge_hour: int = Field(4, ge=0, le=23, validation_alias="APP_PURGE_HOUR")

    @field_validator("database_path", "log_path", mode="after")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        expanded = value.expanduser()
        return expanded if expanded.is_absolute() else (Path.cwd() / expanded).resolve()

    @field_validator("trending_keywords", mode="before")
    @classmethod
    def _parse_keyword_list(cls, value: str | Sequence[str] | None) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            tokens = [part.strip() for part in value.replace("\n", ",").split(",") if part.strip()]
            return tuple(tokens)
        return tuple(value)

    @field_validator("platform_priority", mode="before")
    @classmethod
    def _parse_priority(cls, value: str | Sequence[str] | None) -> tuple[str, ...]:
        if value is None:
            return tuple(p.value for p in PLATFORM_PRIORITY)
        if isinstance(value, str):
            tokens = [part.strip() for part in value.split(",") if part.strip()]
            return tuple(tokens) if tokens else tuple(p.value for p in PLATFORM_PRIORITY)
        return tuple(value)

    @model_validator(mode="after")
    def _validate_priority(self) -> "AppConfig":
        if len(set(self.platform_priority)) != len(self.platform_priority):
            raise ConfigError("platform_priority must not repeat platforms")
        return self

    def ensure_runtime_directories(self) -> None:
        """Create directories required for runtime operation."""
        _ensure_directories((self.database_path.parent, self.log_path.parent))

    def secret(self, name: str) -> str | None:
        """Plaintext of a ``SecretStr`` field, or ``None`` when unset or blank."""
        value = getattr(self, name)
        if value is None:
            return None
        raw = value.get_secret_value() if isinstance(value, SecretStr) else str(value)
        return raw.strip() or None

    @property
    def has_youtube_credentials(self) -> bool:
        return self.secret("youtube_api_key") is not None

    @property
    def has_serpapi_credentials(self) -> bool:
        return self.secret("serpapi_api_key") is not None


def _ensure_directories(paths: Iterable[Path]) -> None:
    for directory in paths:
        directory.mkdir(parents=True, exist_ok=True)


def load_config(env_path: Path | None = None) -> AppConfig:
    """Load configuration from .env/environment with validation."""
    load_kwargs: dict[str, str] = {}
    if env_path is not None:
        load_dotenv(env_path, override=False)
        load_kwargs["_env_file"] = str(env_path)
    else:
        load_dotenv(override=False)
    try:
        config = AppConfig(**load_kwargs)
    except ValidationError as exc:
        raise ConfigError("Invalid configuration") from exc

    config.ensure_runtime_directories()

    LOGGER.info(
        "AppConfig loaded",
        extra={
            "event": "config.loaded",
            "environment": config.environment,
            "paths": {
                "database": str(config.database_path),
                "log": str(config.log_path),
            },
            "trending_keywords": len(config.trending_keywords),
        },
    )
    return config
