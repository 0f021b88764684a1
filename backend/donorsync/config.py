"""Application configuration using pydantic-settings."""

from datetime import timedelta
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Supabase API Keys
    supabase_url: str
    supabase_service_role_key: str  # Background syncs write with RLS bypassed

    # App
    app_name: str = "DonorSync"
    app_env: str = "development"
    debug: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # API
    api_v1_prefix: str = "/api/v1"

    # Encryption
    encryption_key: str  # Fernet key for the stored CRM API keys

    # Logging
    log_dir: str = "logs"

    # CRM sync engine
    crm_stale_threshold_minutes: int = 30
    crm_min_sync_interval_minutes: int = 15
    crm_batch_size: int = 100
    crm_max_records_per_account: int = 50_000
    crm_rate_limit_delay_ms: int = 200
    crm_rate_limit_overrides_ms: dict[str, int] = {}  # e.g. {"virtuous": 400}
    crm_status_history_limit: int = 5

    # CRM provider HTTP clients
    crm_request_timeout_seconds: float = 30.0
    crm_max_retries: int = 3
    crm_retry_initial_delay_ms: int = 1000

    # Cron Jobs
    enable_cron_jobs: bool = True
    crm_scheduled_sync_interval_hours: int = 24

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


class SyncConfig(BaseModel):
    """Tunables for one SyncCoordinator instance."""

    model_config = ConfigDict(frozen=True)

    stale_threshold: timedelta = timedelta(minutes=30)
    min_sync_interval: timedelta = timedelta(minutes=15)
    batch_size: int = Field(default=100, gt=0)
    max_records_per_account: int = Field(default=50_000, gt=0)
    status_history_limit: int = Field(default=5, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncConfig":
        return cls(
            stale_threshold=timedelta(minutes=settings.crm_stale_threshold_minutes),
            min_sync_interval=timedelta(minutes=settings.crm_min_sync_interval_minutes),
            batch_size=settings.crm_batch_size,
            max_records_per_account=settings.crm_max_records_per_account,
            status_history_limit=settings.crm_status_history_limit,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
