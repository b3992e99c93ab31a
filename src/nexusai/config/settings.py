"""
Pipeline configuration with Pydantic Settings.

Features:
- Type-safe, validated configuration with Pydantic v2
- Environment overrides with nested sections, e.g.
  NEXUS_RETRY__MAX_DELAY_MS=5000 or NEXUS_STORAGE__BACKEND=s3
- Storage backend selection without code changes
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetryConfig(BaseModel):
    """Stage retry backoff; attempts and base delays come from the stage policy."""

    max_delay_ms: int = Field(30000, ge=0)


class PipelineConfig(BaseModel):
    """Run-level behaviour of the pipeline state machine."""

    stage_timeout_ms: int = Field(300_000, gt=0)
    lock_timeout_hours: float = Field(4.0, gt=0)
    timezone: str = Field("UTC", description="Zone used to compute today's pipeline id")
    retry_delay_scale: float = Field(
        1.0, ge=0.0, description="Multiplier on per-stage retry delays (0 disables waiting)"
    )


class QueueConfig(BaseModel):
    """Failed-topic retry queue."""

    collection: str = Field("queued-topics")
    max_retries: int = Field(2, gt=0)


class ReviewConfig(BaseModel):
    """Human review queue."""

    collection: str = Field("review-queue")
    pronunciation_unknown_threshold: int = Field(3, ge=0)


class StorageConfig(BaseModel):
    """Durable document store."""

    backend: Literal["memory", "local", "s3"] = Field("local")
    local_root: Path = Field(Path("./data/store"))
    s3_bucket: str | None = Field(None)
    s3_prefix: str = Field("nexus")
    s3_region: str = Field("us-east-1")
    s3_endpoint_url: str | None = Field(None)

    @model_validator(mode="after")
    def require_bucket_for_s3(self) -> "StorageConfig":
        if self.backend == "s3" and not self.s3_bucket:
            raise ValueError("storage.s3_bucket is required when storage.backend is 's3'")
        return self


class ObservabilityConfig(BaseModel):
    """Logging, metrics and tracing."""

    log_level: str = Field("INFO")
    enable_tracing: bool = Field(False)
    enable_metrics: bool = Field(True)
    otlp_endpoint: str | None = Field(None)
    service_name: str = Field("nexusai")
    service_version: str = Field("0.1.0")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="NEXUS_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
