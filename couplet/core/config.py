from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class ReminderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REMINDER_", env_file=".env", extra="ignore")

    # Service configuration
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 8080

    # Database
    DATABASE_URL: str = "sqlite:///./reminders.db"

    # Celery configuration
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_QUEUE: str = "reminders"
    WORKER_CONCURRENCY: int = 4

    # Server scheduling
    SCHEDULER_SCAN_INTERVAL_SECONDS: int = 60
    SCHEDULER_BATCH_SIZE: int = 500
    SERVER_LOOKAHEAD_MINUTES: int = 5
    MAX_DELIVERY_ATTEMPTS: int = 3
    RETRY_WINDOW_MINUTES: int = 15
    CLEANUP_RETENTION_DAYS: int = 30
    CLEANUP_BATCH_SIZE: int = 100

    # Client scheduling
    CLIENT_CHECK_INTERVAL_SECONDS: int = 300
    CLIENT_LOOKAHEAD_HOURS: int = 24
    CLIENT_MAX_RECURRING_AHEAD: int = 30

    # Localization
    DEFAULT_TIMEZONE: str = "Asia/Ho_Chi_Minh"
    DEFAULT_LANGUAGE: str = "vi"
    WEB_APP_URL: str = "https://ilove-you.app"

    # FCM
    FCM_PROJECT_ID: Optional[str] = None
    FCM_CREDENTIALS_JSON: Optional[str] = None  # path or inline JSON via env

    # Admin API
    API_KEYS: str = ""  # comma separated
    REQUIRE_API_KEY: bool = True

    # Observability
    METRICS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def api_keys(self) -> List[str]:
        return [k.strip() for k in self.API_KEYS.split(",") if k.strip()]

    @field_validator("DEFAULT_LANGUAGE")
    @classmethod
    def known_language(cls, v: str) -> str:
        if v not in ("vi", "en"):
            raise ValueError("DEFAULT_LANGUAGE must be 'vi' or 'en'")
        return v


settings = ReminderSettings()
