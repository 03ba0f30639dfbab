"""Application configuration schema and validation."""

from typing import Literal

from pydantic import Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        ...,
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL database connection string",
    )
    db_pool_min: int = Field(
        default=2,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    discord_token: SecretStr = Field(
        default=SecretStr(""),
        description="Discord bot token",
    )
    discord_request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Per-call timeout for Discord API operations",
    )
    discord_max_retries: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retries for transient Discord failures (network, 5xx)",
    )
    discord_retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        le=30,
        description="Linear backoff step between Discord retries",
    )
    midtrans_server_key: SecretStr = Field(
        default=SecretStr(""),
        description="Midtrans server key (webhook signature secret and API key)",
    )
    midtrans_environment: Literal["sandbox", "production"] = Field(
        default="sandbox",
        description="Midtrans environment",
    )
    gateway_timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone applied to naive gateway timestamps",
    )
    gateway_request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Per-call timeout for payment gateway API requests",
    )
    gateway_max_retries: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retries for transient payment gateway failures",
    )
    webhook_server_host: str = Field(
        default="0.0.0.0",
        description="Bind address for the webhook server",
    )
    webhook_server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port for the webhook server",
    )
    webhook_max_age_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Reject webhooks whose transaction_time is older than this",
    )
    order_id_prefix: str = Field(
        default="SUB",
        min_length=1,
        description="Prefix of gateway order ids that reference a subscription",
    )
    pending_timeout_minutes: int = Field(
        default=60,
        ge=5,
        le=1440,
        description="Age after which a Pending subscription is cancelled",
    )
    sweep_batch_size: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Maximum subscriptions cancelled per sweep run",
    )
    cron_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token for manual sweep triggers (empty disables check)",
    )
    resend_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Resend API key for transactional email",
    )
    from_email: str = Field(
        default="no-reply@example.com",
        description="Sender address for notification emails",
    )
    app_url: str = Field(
        default="http://localhost:5173",
        description="Public URL of the member portal",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v

    @field_validator("gateway_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the gateway timezone is a known IANA zone."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config
