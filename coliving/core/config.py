"""Application configuration from environment variables."""

from datetime import date
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Coliving Operations"
    DEBUG: bool = True
    # Origins of the coliving web app that calls this API
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Auth: must match the web app session signing secret
    JWT_SECRET: str = "dev-session-secret"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 30
    CRON_SECRET: Optional[str] = None

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    RESEND_FROM_EMAIL: str = "noreply@coliving-danang.com"
    SUPPORT_EMAIL: str = "management@coliving-danang.com"

    # Reminders
    REMINDER_RETENTION_DAYS: int = 90
    REMINDER_HOLIDAYS: list[date] = []
    REMINDER_CLAIM_TTL_SECONDS: int = 2 * 24 * 3600
    REMINDER_CRON_HOUR: int = 9
    REMINDER_RATE_LIMIT_PER_HOUR: int = 10

    # Audit
    AUDIT_ASYNC: bool = True
    AUDIT_GLOBAL_CAP: int = 10000
    AUDIT_USER_CAP: int = 1000
    AUDIT_RESOURCE_CAP: int = 500

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
