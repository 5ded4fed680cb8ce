"""Application configuration settings."""
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import List


# Width of the reason columns; the configurable limit may not exceed it
REASON_COLUMN_LENGTH = 500


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "sqlite"
    db_password: str = ""
    db_name: str = "shift_reschedule"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600

    # Application Settings
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"

    # CORS Settings
    cors_origins: List[str] = []

    # Reschedule Workflow
    reschedule_reason_max_length: int = Field(REASON_COLUMN_LENGTH, ge=1, le=REASON_COLUMN_LENGTH)
    reschedule_min_advance_notice_minutes: int = 120
    reschedule_default_expiry_hours: int = 48
    approver_job_titles: List[str] = ["manager", "branch manager"]

    # Scheduler Settings
    scheduler_enabled: bool = True
    expiry_sweep_interval_minutes: int = 5
    notification_dispatch_interval_seconds: int = 30

    # Notification Delivery
    notification_max_attempts: int = 10
    notification_batch_size: int = 100

    # LINE Messaging (push delivery is disabled when the token is empty)
    line_channel_access_token: str = ""
    line_api_timeout: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def database_url(self) -> str:
        """Construct database URL from configuration."""
        # Use SQLite if DB_USER is 'sqlite'
        if self.db_user.lower() == 'sqlite':
            return f"sqlite:///./{self.db_name}.db"
        return f"mysql+pymysql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def line_push_enabled(self) -> bool:
        """Check if LINE push delivery is configured."""
        return bool(self.line_channel_access_token)


# Global settings instance
settings = Settings()
