"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the alert
engine, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from defi_alerts.storage.repos import ACK_CHANNEL

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis settings for the single-flight run lease."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; when unset runs are not leased",
    )
    run_lock_ttl_seconds: int = Field(
        default=600,
        alias="RUN_LOCK_TTL_SECONDS",
        ge=10,
        le=24 * 3600,
        description="Lease lifetime for one scan run",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is not None and not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class RewardAlertSettings(BaseSettings):
    """Reward-claim alert thresholds."""

    model_config = SettingsConfigDict(env_prefix="REWARD_", extra="ignore")

    net_threshold_usd: Decimal = Field(
        default=Decimal("10"),
        alias="REWARD_NET_THRESHOLD_USD",
        description="Net claimable value (USD) that must be exceeded to alert",
    )
    warning_hours: float = Field(
        default=24.0,
        alias="REWARD_WARNING_HOURS",
        ge=0.0,
        le=24 * 365,
        description="Hours before the claim deadline at which severity becomes warning",
    )
    critical_hours: float = Field(
        default=12.0,
        alias="REWARD_CRITICAL_HOURS",
        ge=0.0,
        le=24 * 365,
        description="Hours before the claim deadline at which severity becomes critical",
    )

    @model_validator(mode="after")
    def validate_windows(self) -> RewardAlertSettings:
        if self.critical_hours > self.warning_hours:
            raise ValueError("REWARD_CRITICAL_HOURS must not exceed REWARD_WARNING_HOURS")
        return self


class PositionAlertSettings(BaseSettings):
    """Leveraged position health thresholds."""

    model_config = SettingsConfigDict(env_prefix="POSITION_", extra="ignore")

    warning_health: Decimal = Field(
        default=Decimal("1.2"),
        alias="POSITION_WARNING_HEALTH",
        description="Health ratio below which a position is at warning",
    )
    critical_health: Decimal = Field(
        default=Decimal("1.05"),
        alias="POSITION_CRITICAL_HEALTH",
        description="Health ratio below which a position is critical",
    )

    @model_validator(mode="after")
    def validate_ratios(self) -> PositionAlertSettings:
        if self.critical_health <= 0:
            raise ValueError("POSITION_CRITICAL_HEALTH must be > 0")
        if self.critical_health > self.warning_health:
            raise ValueError("POSITION_CRITICAL_HEALTH must not exceed POSITION_WARNING_HEALTH")
        return self


class GovernanceAlertSettings(BaseSettings):
    """Governance epoch alert windows."""

    model_config = SettingsConfigDict(env_prefix="GOVERNANCE_", extra="ignore")

    warning_hours: float = Field(
        default=24.0,
        alias="GOVERNANCE_WARNING_HOURS",
        ge=0.0,
        le=24 * 365,
        description="Look-ahead window for upcoming epochs",
    )
    critical_hours: float = Field(
        default=12.0,
        alias="GOVERNANCE_CRITICAL_HOURS",
        ge=0.0,
        le=24 * 365,
        description="Epochs starting within this many hours are critical",
    )

    @model_validator(mode="after")
    def validate_windows(self) -> GovernanceAlertSettings:
        if self.critical_hours > self.warning_hours:
            raise ValueError("GOVERNANCE_CRITICAL_HOURS must not exceed GOVERNANCE_WARNING_HOURS")
        return self


class DeliverySettings(BaseSettings):
    """Dispatch settings."""

    model_config = SettingsConfigDict(env_prefix="DELIVERY_", extra="ignore")

    channels_raw: str = Field(
        default="",
        alias="DELIVERY_CHANNELS",
        description="Channel names to activate this run (comma-separated); empty activates all configured",
    )
    batch_limit: int = Field(
        default=50,
        alias="DELIVERY_BATCH_LIMIT",
        ge=1,
        le=10_000,
        description="Maximum pending alerts dispatched per run",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="DELIVERY_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Per-channel delivery timeout",
    )
    console_enabled: bool = Field(
        default=True,
        alias="DELIVERY_CONSOLE_ENABLED",
        description="Enable the console/log channel",
    )

    @property
    def channels(self) -> tuple[str, ...]:
        """Channel filter parsed from DELIVERY_CHANNELS (empty means no filter)."""
        return tuple(p.strip() for p in self.channels_raw.split(",") if p.strip())


class WebhookSettings(BaseSettings):
    """Webhook notification settings."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", extra="ignore")

    url: SecretStr | None = Field(
        default=None,
        alias="WEBHOOK_URL",
        description="Webhook URL for alerts (Slack-compatible)",
    )
    channel_name: str = Field(
        default="webhook",
        alias="WEBHOOK_CHANNEL_NAME",
        min_length=1,
        max_length=32,
        description="Channel key recorded on delivery rows",
    )

    @field_validator("channel_name")
    @classmethod
    def validate_channel_name(cls, v: str) -> str:
        """Reject the channel key reserved for acknowledgement rows."""
        v = v.strip()
        if not v:
            raise ValueError("WEBHOOK_CHANNEL_NAME must not be blank")
        if v == ACK_CHANNEL:
            raise ValueError(f"WEBHOOK_CHANNEL_NAME must not be '{ACK_CHANNEL}' (reserved for acknowledgements)")
        return v

    @property
    def enabled(self) -> bool:
        """Check if webhook notifications are enabled."""
        return self.url is not None and bool(self.url.get_secret_value())


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from defi_alerts.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.reward.net_threshold_usd)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    reward: RewardAlertSettings = Field(
        default_factory=lambda: RewardAlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    position: PositionAlertSettings = Field(
        default_factory=lambda: PositionAlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    governance: GovernanceAlertSettings = Field(
        default_factory=lambda: GovernanceAlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    delivery: DeliverySettings = Field(
        default_factory=lambda: DeliverySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    webhook: WebhookSettings = Field(
        default_factory=lambda: WebhookSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Evaluate and reconcile without delivering alerts",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "reward": {
                "net_threshold_usd": str(self.reward.net_threshold_usd),
                "warning_hours": str(self.reward.warning_hours),
                "critical_hours": str(self.reward.critical_hours),
            },
            "position": {
                "warning_health": str(self.position.warning_health),
                "critical_health": str(self.position.critical_health),
            },
            "governance": {
                "warning_hours": str(self.governance.warning_hours),
                "critical_hours": str(self.governance.critical_hours),
            },
            "delivery": {
                "channels": ",".join(self.delivery.channels) or "(all)",
                "batch_limit": str(self.delivery.batch_limit),
                "timeout_seconds": str(self.delivery.timeout_seconds),
                "console_enabled": str(self.delivery.console_enabled),
            },
            "webhook_url": "(set)" if self.webhook.enabled else "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
