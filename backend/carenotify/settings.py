import tomllib
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from carenotify.domain.enums.notification import DeliveryChannel, NotificationPriority


def _default_fallback_order() -> dict[NotificationPriority, list[DeliveryChannel]]:
    return {
        NotificationPriority.EMERGENCY: [DeliveryChannel.WEBSOCKET, DeliveryChannel.SMS, DeliveryChannel.EMAIL],
        NotificationPriority.CRITICAL: [DeliveryChannel.WEBSOCKET, DeliveryChannel.SMS, DeliveryChannel.EMAIL],
        NotificationPriority.HIGH: [DeliveryChannel.WEBSOCKET, DeliveryChannel.EMAIL, DeliveryChannel.SMS],
        NotificationPriority.MEDIUM: [DeliveryChannel.WEBSOCKET, DeliveryChannel.EMAIL],
        NotificationPriority.LOW: [DeliveryChannel.WEBSOCKET, DeliveryChannel.EMAIL],
    }


class Settings(BaseModel):
    """Application settings loaded from TOML configuration files.

    All config is read from TOML, no environment variables.

    Load order (each layer overrides the previous):
        1. config_path    base settings (committed to git)
        2. secrets_path   provider API keys (gitignored, mounted in prod)
        3. override_path  per-worker overrides

    Usage:
        Settings()                                       # config.toml + secrets
        Settings(config_path="config.test.toml")         # test config
        Settings(override_path="config.worker.toml")     # base + secrets + worker
    """

    model_config = ConfigDict(extra="forbid")

    def __init__(
        self,
        config_path: str | Path = "config.toml",
        override_path: str | Path | None = None,
        secrets_path: str | Path = "secrets.toml",
    ) -> None:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        if Path(secrets_path).is_file():
            with open(secrets_path, "rb") as f:
                data |= tomllib.load(f)
        if override_path:
            with open(override_path, "rb") as f:
                data |= tomllib.load(f)
        super().__init__(**data)

    PROJECT_NAME: str = "carenotify"
    DATABASE_NAME: str = "carenotify_db"
    API_V1_STR: str = "/api/v1"
    MONGODB_URL: str = "mongodb://mongo:27017/carenotify"

    TESTING: bool = False

    # Delivery queue
    QUEUE_MAX_RETRIES: int = Field(default=3, ge=1)
    QUEUE_LEASE_SECONDS: int = 300
    QUEUE_BACKOFF_BASE_SECONDS: float = 1.0
    QUEUE_BACKOFF_MAX_SECONDS: float = 30.0
    QUEUE_BACKOFF_MULTIPLIER: float = 2.0
    QUEUE_BACKOFF_JITTER: float = Field(default=0.2, ge=0.0, le=1.0)
    QUEUE_BATCH_SIZE: int = 50
    QUEUE_POLL_INTERVAL_SECONDS: float = 1.0
    # Running jobs get this long to finish before clients are closed on stop
    RUNTIME_SHUTDOWN_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # Channel manager
    CHANNEL_SEND_TIMEOUT_SECONDS: float = 10.0
    CHANNEL_CONCURRENCY: dict[DeliveryChannel, int] = Field(
        default_factory=lambda: {
            DeliveryChannel.WEBSOCKET: 100,
            DeliveryChannel.EMAIL: 10,
            DeliveryChannel.SMS: 5,
        }
    )
    CHANNEL_FALLBACK_ORDER: dict[NotificationPriority, list[DeliveryChannel]] = Field(
        default_factory=_default_fallback_order
    )

    # Orchestrator
    SCHEDULED_SWEEP_INTERVAL_SECONDS: int = 60
    SCHEDULED_SWEEP_BATCH_SIZE: int = 100
    NOTIFICATION_DEFAULT_TTL_DAYS: int = 30
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 3600
    PREFERENCE_CACHE_SIZE: int = 1000
    PREFERENCE_CACHE_TTL_SECONDS: int = 300

    # Delivery monitor
    MONITOR_INTERVAL_SECONDS: int = 60
    MONITOR_WINDOW_MINUTES: int = 60
    MONITOR_CRITICAL_FAILURE_RATE: float = 25.0
    MONITOR_WARNING_FAILURE_RATE: float = 15.0
    MONITOR_MIN_DELIVERY_RATE: float = 80.0
    MONITOR_MAX_DELIVERY_TIME_MS: int = 60000
    MONITOR_CONSECUTIVE_FAILURES: int = 5
    MONITOR_CHANNEL_FAILURE_RATE: float = 50.0
    STUCK_THRESHOLD_MINUTES: int = 15
    STUCK_BATCH_LIMIT: int = 100

    # Analytics
    ANALYTICS_FLUSH_INTERVAL_SECONDS: int = Field(default=30, ge=1, le=30)

    # Alert escalation
    ESCALATION_TICK_SECONDS: float = 1.0
    ALERT_HISTORY_RETENTION_DAYS: int = 7
    ALERT_CLEANUP_INTERVAL_SECONDS: int = 3600
    ALERT_STALE_THRESHOLD_MINUTES: int = 120
    ALERT_STALE_CHECK_INTERVAL_SECONDS: int = 300
    ADMIN_DASHBOARD_URL: str = "/admin/alerts"

    # Providers
    EMAIL_API_URL: str = "https://email.invalid/v1/send"
    EMAIL_API_KEY: str | None = None
    EMAIL_FROM: str = "no-reply@carenotify.local"
    SMS_API_URL: str = "https://sms.invalid/v1/messages"
    SMS_API_KEY: str | None = None
    SMS_SENDER_ID: str = "CARENOTIFY"

    # OpenTelemetry
    ENABLE_TRACING: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    SERVICE_NAME: str = "carenotify-backend"
    SERVICE_VERSION: str = "1.0.0"

    # Logging configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
