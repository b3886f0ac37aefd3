"""Application settings using Pydantic."""

import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(
        default=os.getenv("ENVIRONMENT", "development"),
        description="Deployment environment (development|production|test)",
    )

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./mohtawa.db"
    db_pool_size: int = Field(default=5, description="Database connection pool size")
    db_max_overflow: int = Field(default=10, description="Database connection pool max overflow")

    # API Configuration
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_key: str = "dev-api-key"  # Override in production

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Ensure default API key is not used in production."""
        if os.getenv("ENVIRONMENT") == "production" and v == "dev-api-key":
            raise ValueError("Cannot use default API key in production. Set API_KEY env var.")
        return v

    # Dispatch
    job_dispatcher: Literal["inprocess", "db"] = Field(
        default="inprocess",
        description=(
            "How runs and draft renders are dispatched: inprocess=run inside the API "
            "process (renders are synchronous, previews live in memory), "
            "db=enqueue durable jobs for `mohtawa worker run`."
        ),
    )

    # Worker / job queue
    worker_id: str = Field(default="", description="Worker identity (default host:pid)")
    job_lease_seconds: float = Field(
        default=300.0,
        description="Lease duration for a claimed job before another worker may take it",
    )
    job_poll_interval_seconds: float = Field(
        default=1.0,
        description="Sleep between empty polls of the job table",
    )
    execution_worker_concurrency: int = Field(default=5, ge=1)
    execution_job_max_attempts: int = Field(default=2, ge=1)
    execution_retry_base_seconds: float = Field(default=2.0, ge=0)
    render_worker_concurrency: int = Field(default=2, ge=1)
    render_job_max_attempts: int = Field(default=2, ge=1)
    render_retry_base_seconds: float = Field(default=3.0, ge=0)

    # Object storage
    storage_backend: Literal["local", "s3"] = Field(
        default="local",
        description="Where EDLs, renders and voice output are stored.",
    )
    local_storage_dir: str = Field(
        default=str(Path(tempfile.gettempdir()) / "mohtawa_storage"),
        description="Root directory for the local blob store.",
    )
    s3_bucket: str = ""
    s3_region: str = ""
    s3_endpoint_url: str = ""
    s3_public_base_url: str = Field(
        default="",
        description="Optional public base URL; when set, uploads return {base}/{key} instead of s3://",
    )
    presign_default_seconds: int = Field(default=900, ge=1)

    @model_validator(mode="after")
    def validate_storage(self) -> "Settings":
        if self.storage_backend == "s3" and not self.s3_bucket:
            raise ValueError(
                "S3_BUCKET is required when STORAGE_BACKEND=s3. "
                "Either set a bucket or use STORAGE_BACKEND=local."
            )
        return self

    # Media tooling
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    encoder_timeout_seconds: float = Field(
        default=600.0,
        description="Wall-clock limit for a single encoder invocation.",
    )
    asset_fetch_timeout_seconds: float = 120.0

    # External Service API Keys
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"
    llm_timeout_seconds: float = 60.0
    elevenlabs_api_key: str = ""
    azure_speech_key: str = ""
    azure_speech_region: str = "eastus"
    tts_timeout_seconds: float = 90.0

    @field_validator("azure_speech_region", mode="before")
    @classmethod
    def default_azure_region(cls, v: Any) -> str:
        return str(v or "eastus")

    # Observability
    log_level: str = "INFO"


# Global settings instance
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Lazily construct Settings so tests and CLIs can set env vars before first access.
    return Settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()


class _SettingsProxy:
    """Lazy proxy for Settings.

    This avoids eager settings instantiation at import time, which can make tests
    order-dependent when env vars are changed during `pytest_configure()`.
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SettingsProxy {get_settings()!r}>"


settings = _SettingsProxy()
