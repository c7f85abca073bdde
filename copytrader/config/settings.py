"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class CopyTradingConfig(BaseModel):
    """Mirroring and risk limits - read once at start."""

    size_multiplier: float = Field(default=1.0, gt=0.0)
    max_leverage: int = Field(default=20, ge=1, le=100)
    max_position_size_percent: float = Field(default=50.0, ge=1.0, le=100.0)
    min_notional: float = Field(default=10.0, ge=0.0)
    max_concurrent_trades: int = Field(default=10, ge=1)
    blocked_assets: list[str] = Field(default_factory=list)
    dry_run: bool = False

    @field_validator("blocked_assets", mode="before")
    @classmethod
    def split_blocked_assets(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(item).strip().upper() for item in v if str(item).strip()]


class RetryConfig(BaseModel):
    """Backoff applied to every outbound REST call."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay_sec: float = Field(default=1.0, ge=0.0, le=60.0)
    max_delay_sec: float = Field(default=10.0, ge=0.0, le=300.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)


class StreamConfig(BaseModel):
    """Fill stream connection and reconnect configuration."""

    # Hyperliquid drops idle sockets after 60s
    ping_interval_sec: float = Field(default=50.0, gt=0.0, le=59.0)
    open_timeout_sec: float = Field(default=10.0, gt=0.0, le=120.0)
    reconnect_base_delay_sec: float = Field(default=1.0, ge=0.0, le=60.0)
    reconnect_max_delay_sec: float = Field(default=30.0, ge=0.0, le=600.0)
    max_reconnect_attempts: int = Field(default=10, ge=1, le=100)
    # Live fills waiting for the handler; newer fills are dropped when full
    max_pending_fills: int = Field(default=1000, ge=1, le=100_000)


class NotificationConfig(BaseModel):
    """Public trade feed configuration."""

    enabled: bool = True
    min_interval_sec: float = Field(default=6 * 60, ge=0.0, le=3600.0)
    max_queue: int = Field(default=5, ge=1, le=100)


class MonitoringConfig(BaseModel):
    """Monitoring and alerting configuration."""

    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    metrics_enabled: bool = True
    api_port: int = Field(default=8000, ge=1024, le=65535)
    api_enabled: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = True
    alert_webhooks: list[str] = Field(default_factory=list)
    alert_dedup_window_sec: int = Field(default=300, ge=0, le=86400)
    log_http: bool = False
    log_http_max_body_chars: int = Field(default=500, ge=0, le=5000)
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)
    health_check_interval_sec: int = Field(default=15 * 60, ge=0, le=86400)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        level = v.strip().upper()
        return "WARNING" if level == "WARN" else level


class MarketDataConfig(BaseModel):
    """Hyperliquid info endpoints."""

    info_url: str = "https://api-ui.hyperliquid.xyz/info"
    ws_url: str = "wss://api.hyperliquid.xyz/ws"
    testnet_info_url: str = "https://api.hyperliquid-testnet.xyz/info"
    testnet_ws_url: str = "wss://api.hyperliquid-testnet.xyz/ws"
    request_timeout_sec: float = Field(default=10.0, gt=0.0, le=120.0)
    price_cache_sec: float = Field(default=2.0, ge=0.0, le=300.0)
    # Arena trading-pair metadata (asset ids, precisions) changes rarely
    pairs_cache_sec: float = Field(default=30 * 60, ge=0.0, le=86400.0)


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    logs_path: str = "./logs"


class Settings(BaseSettings):
    """Main application settings."""

    testnet: bool = False

    # Addresses and credentials from environment
    target_wallet: str = Field(default="", alias="COPY_TRADING_TARGET_WALLET")
    our_address: str = Field(default="", alias="MAIN_WALLET_ADDRESS")
    arena_api_key: str = Field(default="", alias="ARENA_API_KEY")
    arena_base_url: str = Field(default="https://api.satest-dev.com", alias="ARENA_BASE_URL")
    hyperliquid_info_url_override: str = Field(default="", alias="HYPERLIQUID_INFO_URL")
    hyperliquid_ws_url_override: str = Field(default="", alias="HYPERLIQUID_WS_URL")

    # Sub-configurations
    copy_trading: CopyTradingConfig = Field(default_factory=CopyTradingConfig, alias="copy")
    retry: RetryConfig = Field(default_factory=RetryConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
        "frozen": True,
    }

    @property
    def hyperliquid_info_url(self) -> str:
        """Info endpoint for the active network (explicit override wins)."""
        if self.hyperliquid_info_url_override:
            return self.hyperliquid_info_url_override
        if self.testnet:
            return self.market_data.testnet_info_url
        return self.market_data.info_url

    @property
    def hyperliquid_ws_url(self) -> str:
        """WebSocket endpoint for the active network (explicit override wins)."""
        if self.hyperliquid_ws_url_override:
            return self.hyperliquid_ws_url_override
        if self.testnet:
            return self.market_data.testnet_ws_url
        return self.market_data.ws_url

    def validate_for_startup(self) -> list[str]:
        """Return configuration errors that must block startup."""
        errors = []
        if not self.target_wallet:
            errors.append("COPY_TRADING_TARGET_WALLET not set")
        if not self.our_address:
            errors.append("MAIN_WALLET_ADDRESS not set")
        if self.target_wallet and self.target_wallet.lower() == self.our_address.lower():
            errors.append("COPY_TRADING_TARGET_WALLET must differ from MAIN_WALLET_ADDRESS")
        if not self.copy_trading.dry_run and not self.arena_api_key:
            errors.append("ARENA_API_KEY not set")
        if self.stream.reconnect_max_delay_sec < self.stream.reconnect_base_delay_sec:
            errors.append("stream.reconnect_max_delay_sec is below reconnect_base_delay_sec")
        return errors


# Flat variable names used by existing deployments -> (section, field)
_FLAT_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SIZE_MULTIPLIER": ("copy", "size_multiplier"),
    "MAX_LEVERAGE": ("copy", "max_leverage"),
    "MAX_POSITION_SIZE_PERCENT": ("copy", "max_position_size_percent"),
    "MIN_NOTIONAL": ("copy", "min_notional"),
    "MAX_CONCURRENT_TRADES": ("copy", "max_concurrent_trades"),
    "BLOCKED_ASSETS": ("copy", "blocked_assets"),
    "DRY_RUN": ("copy", "dry_run"),
    "ARENA_FEED_ENABLED": ("notifications", "enabled"),
    "LOG_LEVEL": ("monitoring", "log_level"),
}


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file values
    3. Default values
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    # Keyword arguments outrank the environment in pydantic-settings, so
    # flat env overrides are folded into the YAML data explicitly.
    for env_name, (section, field_name) in _FLAT_ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is not None:
            config_data.setdefault(section, {})[field_name] = value
    env_testnet = os.environ.get("TESTNET")
    if env_testnet is not None:
        config_data["testnet"] = env_testnet

    env_path = config_file.parent / ".env"
    return Settings(**config_data, _env_file=env_path)


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    default_config = {
        "testnet": False,
        "copy": {
            "size_multiplier": 1.0,
            "max_leverage": 20,
            "max_position_size_percent": 50,
            "min_notional": 10,
            "max_concurrent_trades": 10,
            "blocked_assets": [],
            "dry_run": True,
        },
        "retry": {
            "max_attempts": 3,
            "initial_delay_sec": 1.0,
            "max_delay_sec": 10.0,
            "backoff_multiplier": 2.0,
        },
        "stream": {
            "ping_interval_sec": 50,
            "reconnect_base_delay_sec": 1.0,
            "reconnect_max_delay_sec": 30.0,
            "max_reconnect_attempts": 10,
            "max_pending_fills": 1000,
        },
        "notifications": {
            "enabled": True,
            "min_interval_sec": 360,
            "max_queue": 5,
        },
        "monitoring": {
            "metrics_port": 9090,
            "api_port": 8000,
            "log_level": "INFO",
            "alert_webhooks": [],
            "health_check_interval_sec": 900,
        },
        "storage": {
            "logs_path": "./logs",
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
