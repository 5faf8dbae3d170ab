"""Centralized settings for the Insight ops core.

Uses pydantic-settings to load from environment variables (prefixed INSIGHT_)
with defaults matching the production tuning of the alerting pipeline.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Insight ops settings loaded from environment variables."""

    environment: str = "development"

    # --- Logging ---
    # Empty format means JSON in production, console otherwise.
    log_level: str = "INFO"
    log_format: str = ""
    log_slow_threshold_ms: float = 500

    # --- Persistence ---
    # Empty means "no database": everything lives in the in-process memory store.
    database_url: str = ""
    kv_dir: str = ""

    # --- Webhook ---
    webhook_url: str = ""
    webhook_timeout_ms: float = 0
    dependency_timeout_ms: float = 10_000

    # --- Telegram ---
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_timeout_ms: float = 0

    # --- SMTP ---
    smtp_host: str = ""
    smtp_port: str = ""
    smtp_user: str = ""
    smtp_pass: str = ""
    from_email: str = ""
    default_email: str = ""

    # --- Notification retry tuning ---
    notification_retry_attempts: int = 3
    notification_retry_base_delay_ms: float = 500
    notification_retry_max_delay_ms: float = 5_000

    # --- SLO targets ---
    slo_max_lag_blocks: float = 200
    slo_max_sync_staleness_minutes: float = 30
    slo_max_alert_mtta_minutes: float = 30
    slo_max_alert_mttr_minutes: float = 240
    slo_max_incident_mttr_minutes: float = 720
    slo_max_open_alerts: float = 50
    slo_max_open_critical_alerts: float = 3

    model_config = {
        "env_prefix": "INSIGHT_",
        "env_file": ".env",
        "extra": "ignore",
    }

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def has_database(self) -> bool:
        return bool(self.database_url.strip())


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
