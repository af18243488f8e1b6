"""
Transaction Risk Engine - Configuration Settings

Centralized configuration using Pydantic Settings for type-safe
environment variable handling with validation.

Scoring thresholds, factor weights and detection patterns are NOT
configured here; they live in the risk policy (see risk_engine.policy)
so they can be tuned at runtime through PUT /settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: STORAGE_BACKEND=postgres will set storage_backend to "postgres"
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application Settings
    # =========================================================================
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    app_debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    storage_backend: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Where analyses, reviews and transactions are read from and written to"
    )

    # =========================================================================
    # PostgreSQL Configuration
    # =========================================================================
    postgres_host: str = Field(
        default="localhost",
        description="PostgreSQL server hostname"
    )
    postgres_port: int = Field(
        default=5432,
        description="PostgreSQL server port"
    )
    postgres_db: str = Field(
        default="risk_engine",
        description="PostgreSQL database name"
    )
    postgres_user: str = Field(
        default="risk_user",
        description="PostgreSQL username"
    )
    postgres_password: str = Field(
        default="",
        description="PostgreSQL password (required - set via POSTGRES_PASSWORD env var)"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def postgres_url(self) -> str:
        """Construct PostgreSQL connection URL for asyncpg."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # =========================================================================
    # Redis Configuration (analysis lookup cache)
    # =========================================================================
    redis_enabled: bool = Field(
        default=False,
        description="Cache analysis results in Redis for GET /analysis lookups"
    )
    redis_host: str = Field(
        default="localhost",
        description="Redis server hostname"
    )
    redis_port: int = Field(
        default=6379,
        description="Redis server port"
    )
    redis_db: int = Field(
        default=0,
        description="Redis database number"
    )
    redis_key_prefix: str = Field(
        default="risk:",
        description="Prefix for all Redis keys to avoid conflicts"
    )
    redis_password: str | None = Field(
        default=None,
        description="Redis password (optional)"
    )
    analysis_cache_ttl_seconds: int = Field(
        default=86400,
        description="TTL for cached analysis results"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # =========================================================================
    # API Configuration
    # =========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server bind address"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )

    # =========================================================================
    # Security / Access Control
    # =========================================================================
    api_token: str | None = Field(
        default=None,
        description="API token for analysis and review endpoints (optional)"
    )
    admin_token: str | None = Field(
        default=None,
        description="Admin token for settings and escalation endpoints (optional)"
    )
    metrics_token: str | None = Field(
        default=None,
        description="Token required to access /metrics (optional)"
    )
    cors_allow_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cors_allow_origins_list(self) -> list[str]:
        """Return CORS origins as a list."""
        if not self.cors_allow_origins:
            return []
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    # =========================================================================
    # Pipeline Timeouts and Retries
    # =========================================================================
    analyzer_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Per-analyzer timeout; a timed-out analyzer is marked data-unavailable"
    )
    analysis_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Outer timeout for the whole analysis; exceeded = fail-safe result"
    )
    persistence_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts made to persist an analysis before giving up"
    )
    persistence_retry_backoff_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Base backoff between persistence attempts"
    )

    # =========================================================================
    # Manual Review SLA (hours a pending entry may wait before escalation)
    # =========================================================================
    review_sla_critical_hours: float = Field(default=1.0, gt=0)
    review_sla_high_hours: float = Field(default=4.0, gt=0)
    review_sla_normal_hours: float = Field(default=24.0, gt=0)
    review_sla_low_hours: float = Field(default=72.0, gt=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def review_sla_hours(self) -> dict[str, float]:
        """SLA per review priority."""
        return {
            "critical": self.review_sla_critical_hours,
            "high": self.review_sla_high_hours,
            "normal": self.review_sla_normal_hours,
            "low": self.review_sla_low_hours,
        }

    # =========================================================================
    # Risk Policy
    # =========================================================================
    risk_policy_path: str = Field(
        default="config/risk_policy.yaml",
        description="YAML file with thresholds, weights and detection patterns"
    )

    # =========================================================================
    # Reputation Data / Alerts
    # =========================================================================
    reputation_data_path: str = Field(
        default="config/reputation.yaml",
        description="YAML file with blacklist entries and IP geolocations"
    )
    alert_webhook_url: str | None = Field(
        default=None,
        description="Webhook receiving security alerts (optional; alerts are always logged)"
    )
    alert_webhook_token: str | None = Field(
        default=None,
        description="Bearer token sent to the alert webhook (optional)"
    )

    # =========================================================================
    # Metrics Configuration
    # =========================================================================
    metrics_enabled: bool = Field(
        default=True,
        description="Enable Prometheus metrics endpoint"
    )

    @model_validator(mode="after")
    def _validate_production_security(self) -> "Settings":
        """Enforce required security settings in production."""
        if self.app_env == "production":
            missing: list[str] = []
            if not self.api_token:
                missing.append("API_TOKEN")
            if not self.admin_token:
                missing.append("ADMIN_TOKEN")
            if not self.metrics_token:
                missing.append("METRICS_TOKEN")
            if self.storage_backend != "postgres":
                missing.append("STORAGE_BACKEND=postgres")
            if missing:
                raise ValueError(
                    "Missing required settings for production: "
                    + ", ".join(missing)
                )
        if self.analyzer_timeout_seconds >= self.analysis_timeout_seconds:
            raise ValueError(
                "analyzer_timeout_seconds must be less than analysis_timeout_seconds"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment on every call.
    """
    return Settings()


# Settings instance for easy import
settings = get_settings()
