from typing import Annotated, List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ReminderSettings(BaseSettings):
    # Storage
    DATABASE_URL: str = "sqlite:///./reminders.db"
    SQL_ECHO: bool = False

    # Service configuration
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 8085
    API_KEYS: Annotated[List[str], NoDecode] = []

    # Scheduling
    SCAN_INTERVAL_SECONDS: int = 180
    SCAN_BATCH_SIZE: int = 500
    INTERVAL_SNAP_TOLERANCE_SECONDS: int = 30
    OVERDUE_GRACE_MINUTES: Optional[int] = None

    # Delivery
    DELIVERY_SINK: Literal["log", "fcm"] = "log"
    DELIVERY_TIMEOUT_SECONDS: float = 10.0
    DELIVERY_WORKERS: int = 4
    # Run the delivery agent inside the API process
    EMBEDDED_AGENT: bool = False

    # Reconciliation waits between delete and insert
    RECONCILE_SETTLE_SECONDS: float = 0.1
    RECONCILE_RETRY_SETTLE_SECONDS: float = 0.2

    # Wake channel
    WAKE_CHANNEL: Literal["none", "redis", "celery"] = "none"
    REDIS_URL: Optional[str] = "redis://localhost:6379/0"
    REDIS_WAKE_CHANNEL: str = "reminders:wake"

    # Celery configuration
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_QUEUE: str = "reminders"
    WORKER_CONCURRENCY: int = 2

    # FCM
    FCM_PROJECT_ID: Optional[str] = None
    FCM_CREDENTIALS_JSON: Optional[str] = None  # path or inline JSON via env

    # Metrics / logs
    METRICS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="REMINDER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("API_KEYS", mode="before")
    @classmethod
    def _split_api_keys(cls, v):
        # Accept comma-separated strings as well as JSON lists
        if isinstance(v, str):
            return [key.strip() for key in v.split(",") if key.strip()]
        return v

    @field_validator("OVERDUE_GRACE_MINUTES", mode="before")
    @classmethod
    def _blank_grace_is_none(cls, v):
        if isinstance(v, str) and v.strip() == "":
            return None
        return v

    @model_validator(mode="after")
    def _check_transports(self) -> "ReminderSettings":
        if self.WAKE_CHANNEL == "redis" and not self.REDIS_URL:
            raise ValueError("REMINDER_WAKE_CHANNEL=redis requires REMINDER_REDIS_URL")
        if self.WAKE_CHANNEL == "celery" and not self.CELERY_BROKER_URL:
            raise ValueError("REMINDER_WAKE_CHANNEL=celery requires REMINDER_CELERY_BROKER_URL")
        if self.SCAN_INTERVAL_SECONDS <= 0:
            raise ValueError("REMINDER_SCAN_INTERVAL_SECONDS must be positive")
        if self.INTERVAL_SNAP_TOLERANCE_SECONDS < 0:
            raise ValueError("REMINDER_INTERVAL_SNAP_TOLERANCE_SECONDS must not be negative")
        return self


settings = ReminderSettings()
