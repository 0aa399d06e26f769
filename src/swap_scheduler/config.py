"""Configuration loading and validation."""

from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class RecurringConfig(BaseModel):
    """Recurring (DCA) scheduler configuration."""

    enabled: bool = True
    poll_interval: int = 60
    lease_minutes: int = 10
    retry_delay_minutes: int = 5


class LimitOrderConfig(BaseModel):
    """Limit order monitor configuration."""

    enabled: bool = True
    poll_interval: int = 300
    lease_minutes: int = 10
    retry_delay_minutes: int = 5


class TrailingStopConfig(BaseModel):
    """Trailing stop monitor configuration.

    ``retry_failed_executions`` returns a stop whose swap failed to monitoring
    (with a backoff) instead of marking it ``failed``.
    """

    enabled: bool = True
    poll_interval: int = 60
    retry_failed_executions: bool = False
    retry_delay_minutes: int = 5


class PriceOracleConfig(BaseModel):
    """CoinGecko price lookup configuration."""

    base_url: str = "https://api.coingecko.com/api/v3"
    api_key_env: str = "COINGECKO_API_KEY"
    cache_ttl: float = 60.0
    timeout: float = 10.0
    asset_ids: dict[str, str] = Field(default_factory=dict)


class ExchangeConfig(BaseModel):
    """SideShift exchange configuration."""

    base_url: str = "https://sideshift.ai/api/v2"
    api_key_env: str = "SIDESHIFT_SECRET"
    affiliate_id_env: str = "SIDESHIFT_AFFILIATE_ID"
    client_ip: str | None = None
    timeout: float = 15.0


class NotificationConfig(BaseModel):
    """Owner notification channels."""

    console: bool = True
    telegram_token_env: str = "BOT_TOKEN"
    webhooks: list[str] = Field(default_factory=list)


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    structured_logging: bool = False
    log_file: str | None = None
    log_level: str = "INFO"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    mode: Literal["paper", "live"] = "paper"
    max_workers: int = 8
    recurring: RecurringConfig = Field(default_factory=RecurringConfig)
    limit_orders: LimitOrderConfig = Field(default_factory=LimitOrderConfig)
    trailing_stops: TrailingStopConfig = Field(default_factory=TrailingStopConfig)
    prices: PriceOracleConfig = Field(default_factory=PriceOracleConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


def load_config(path: Path) -> AppConfig:
    """Load config from a YAML file."""
    load_dotenv(path.parent / ".env", override=False)
    return AppConfig(**(yaml.safe_load(path.read_text()) or {}))
