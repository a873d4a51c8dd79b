"""Configuration management for NihontoWatch."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/nihontowatch.db"
    echo: bool = False


class ScoringConfig(BaseModel):
    """Featured score batch configuration."""

    page_size: int = 1000
    update_batch: int = 500
    heat_window_days: int = 30


class AlertsConfig(BaseModel):
    """Alert processing configuration."""

    cooldown_hours: int = 24
    lookback_minutes: int = 20
    daily_lookback_hours: int = 25
    batch_size: int = 20
    max_saved_search_matches: int = 50
    email: Dict[str, Any] = Field(default_factory=dict)
    webhook: Dict[str, Any] = Field(default_factory=dict)


class TrackingConfig(BaseModel):
    """Activity tracking configuration."""

    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 30
    max_events_per_batch: int = 100
    max_event_age_hours: int = 24
    clock_skew_seconds: int = 60


class ScheduleConfig(BaseModel):
    """Scheduling configuration."""

    featured_scores_hours: int = 4
    price_alerts_minutes: int = 15
    stock_alerts_minutes: int = 15
    saved_search_instant_minutes: int = 15
    saved_search_daily_hour: int = 8
    elite_sync_hour: int = 3
    max_instances_per_job: int = 1
    misfire_grace_time_seconds: int = 120


class APIConfig(BaseModel):
    """API configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "data/logs/nihontowatch.log"
    rotation: str = "10 MB"
    retention: str = "30 days"
    # Write the file sink as JSON lines
    serialize: bool = False
    # Route records from stdlib loggers (uvicorn, apscheduler, storage) through loguru
    capture_stdlib: bool = True


class SiteConfig(BaseModel):
    """Public site configuration."""

    base_url: str = "https://nihontowatch.com"


class CurrencyConfig(BaseModel):
    """JPY per unit of foreign currency, used when normalizing prices."""

    USD: float = 150.0
    EUR: float = 165.0
    GBP: float = 190.0


class Config(BaseModel):
    """Main configuration model."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)


class Settings(BaseSettings):
    """Environment-based settings."""

    # Database
    database_url: str = ""

    # Secrets
    cron_secret: str = ""
    unsubscribe_secret: str = ""

    # Site
    site_url: str = ""

    # Delivery
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_from: str = ""
    webhook_url: str = ""

    # Logging
    log_level: str = ""

    # API
    api_host: str = ""
    api_port: int = 0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class ConfigManager:
    """Configuration manager for loading and merging config sources."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file
        """
        load_dotenv()

        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "config.yaml"

        self.config_path = config_path
        self.yaml_config = self._load_yaml()

        self.env_settings = Settings()

        self.config = self._merge_config()

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path, "r") as f:
            return yaml.safe_load(f) or {}

    def _merge_config(self) -> Config:
        """Merge YAML config with environment variables."""
        merged = self.yaml_config.copy()

        if self.env_settings.database_url:
            merged.setdefault("database", {})["url"] = self.env_settings.database_url

        if self.env_settings.site_url:
            merged.setdefault("site", {})["base_url"] = self.env_settings.site_url

        if self.env_settings.webhook_url:
            merged.setdefault("alerts", {}).setdefault("webhook", {})[
                "url"
            ] = self.env_settings.webhook_url

        if self.env_settings.log_level:
            merged.setdefault("logging", {})["level"] = self.env_settings.log_level

        if self.env_settings.api_host:
            merged.setdefault("api", {})["host"] = self.env_settings.api_host

        if self.env_settings.api_port:
            merged.setdefault("api", {})["port"] = self.env_settings.api_port

        return Config(**merged)

    def get_cron_secret(self) -> str:
        """Get the shared secret for cron-triggered endpoints."""
        return self.env_settings.cron_secret

    def get_unsubscribe_secret(self) -> str:
        """Get the unsubscribe token signing secret (falls back to the cron secret)."""
        secret = self.env_settings.unsubscribe_secret or self.env_settings.cron_secret
        if not secret:
            logger.error(
                "UNSUBSCRIBE_SECRET and CRON_SECRET not configured - unsubscribe tokens will be rejected"
            )
        return secret


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> Config:
    """Get global configuration instance."""
    return get_config_manager().config


def get_settings() -> Settings:
    """Get environment settings."""
    return get_config_manager().env_settings


def get_config_manager() -> ConfigManager:
    """Get configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
