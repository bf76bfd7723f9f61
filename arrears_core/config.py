"""Configuration for the in-arrear usage invoicing core.

Settings are read from environment variables prefixed with ``ARREARS_``
(or a local ``.env`` file) and cached per process.
"""

from datetime import tzinfo
from enum import Enum
from functools import lru_cache

import pytz
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class UsageDetailMode(str, Enum):
    """How consumable usage is broken down into invoice items."""

    AGGREGATE = "aggregate"  # One item per unit type and bucket
    DETAIL = "detail"  # One item per unit type, tier and bucket


class Settings(BaseSettings):
    """Invoicing settings."""

    model_config = SettingsConfigDict(
        env_prefix="ARREARS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    service_name: str = "arrears-core"

    # Logging
    log_level: str = "info"
    log_format: str = Field(
        default="pretty",
        description="Log output format: json or pretty",
    )

    # Usage invoicing
    usage_detail_mode: UsageDetailMode = UsageDetailMode.AGGREGATE
    usage_zero_amount_disabled: bool = Field(
        default=False,
        description="Skip usage items whose amount is zero",
    )
    account_time_zone: str = Field(
        default="UTC",
        description="IANA time zone used to turn event instants into billing dates",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Only accept standard logging level names."""
        if v.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v.lower()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in ("json", "pretty"):
            raise ValueError(f"Unknown log format: {v}")
        return v.lower()

    @field_validator("account_time_zone")
    @classmethod
    def validate_account_time_zone(cls, v: str) -> str:
        """Reject time zone names the tz database does not know."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod", "staging")

    @property
    def time_zone(self) -> tzinfo:
        return pytz.timezone(self.account_time_zone)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
