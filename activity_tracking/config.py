"""Activity tracking configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ActivitySettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///activity_tracking.db"
    echo_sql: bool = False

    # Post-processing worker
    worker_enabled: bool = True
    worker_poll_interval_seconds: float = 0.25
    worker_max_idle_seconds: float = 5.0
    queue_max_size: int = 10000
    job_max_attempts: int = 5
    job_retry_backoff_seconds: float = 2.0
    job_retry_max_backoff_seconds: float = 300.0
    shutdown_drain_seconds: float = 5.0
    sequence_batch_size: int = 10

    # Store calls are retried by the worker when they time out
    store_timeout_seconds: float = 10.0

    # Cache TTLs
    analytics_cache_ttl_seconds: int = 1800
    engagement_cache_ttl_seconds: int = 86400
    insight_cache_ttl_seconds: int = 86400

    # AI insights (optional)
    anthropic_api_key: str = ""
    insight_model: str = "claude-sonnet-4-5-20250929"
    insight_max_tokens: int = 300
    insight_timeout_seconds: float = 20.0
    insight_debounce_seconds: float = 60.0

    model_config = {"env_prefix": "ACTIVITY_", "env_file": ".env", "extra": "ignore"}

    @property
    def insights_configured(self) -> bool:
        return bool(self.anthropic_api_key)


settings = ActivitySettings()
