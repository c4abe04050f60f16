from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "DailyPing"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    APP_BASE_URL: str = "https://dailyping.org"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None
    LOG_JSON: bool = False
    LOG_ROTATION: str = "10 MB"
    LOG_RETENTION: str = "14 days"

    # Database
    DATABASE_URL: str = "sqlite:///./dailyping.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Scheduling
    DEFAULT_TIMEZONE: str = "America/New_York"
    DEFAULT_TRIGGER_TIME: str = "08:00"
    TICK_INTERVAL_SECONDS: int = 60
    RECONCILIATION_INTERVAL_MINUTES: int = 15
    PER_USER_TIMEOUT_SECONDS: float = 20.0
    # Each provider call gets its own bound; email plus push must fit in the per-user one
    CHANNEL_TIMEOUT_SECONDS: float = 8.0
    MAX_CONCURRENT_USERS: int = 25

    # Resend (email)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    FROM_EMAIL: str = "DailyPing <ping@dailyping.org>"

    # Web push
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:support@dailyping.org"
    PUSH_TTL_SECONDS: int = 86400

    # Stripe (billing)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    BILLING_TIMEOUT_SECONDS: float = 10.0

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
