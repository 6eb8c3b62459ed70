"""
Application configuration management using Pydantic Settings
Handles all environment variables and delivery provider settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    """Main application settings"""

    # Application Settings
    APP_NAME: str = "Notifier API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    API_URL: str = "http://localhost:8000"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./notifier.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Redis Configuration
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_MAX_CONNECTIONS: int = 50

    # Job Queue
    JOB_QUEUE_NAME: str = "notifications"
    JOB_QUEUE_CONCURRENCY: int = 5
    JOB_QUEUE_POLL_INTERVAL: float = 1.0  # seconds between ticks
    JOB_BACKOFF_BASE_MS: int = 1000
    JOB_MAX_ATTEMPTS: int = 3
    JOB_QUEUE_WORKER_ENABLED: bool = True
    JOB_VISIBILITY_TIMEOUT_MS: int = 5 * 60 * 1000  # claimed longer than this = worker died

    # Security Settings
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    INTERNAL_API_KEY: str = "change-me-too"

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Channel toggles
    EMAIL_ENABLED: bool = True
    SMS_ENABLED: bool = True
    PUSH_ENABLED: bool = True
    WEBHOOK_ENABLED: bool = True
    IN_APP_ENABLED: bool = True

    # Provider order per channel, first entry is the primary
    EMAIL_PROVIDERS: List[str] = ["sendgrid", "smtp"]
    SMS_PROVIDERS: List[str] = ["twilio", "sns", "vonage"]
    PUSH_PROVIDERS: List[str] = ["fcm", "onesignal"]

    # Email (SendGrid)
    SENDGRID_API_KEY: Optional[str] = None

    # Email (SMTP)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True

    EMAIL_FROM_ADDRESS: str = "noreply@example.com"
    EMAIL_FROM_NAME: str = "Notifier"

    # SMS (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    TWILIO_MESSAGING_SERVICE_SID: Optional[str] = None

    # SMS (AWS SNS)
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"
    SNS_SENDER_ID: Optional[str] = None

    # SMS (Vonage)
    VONAGE_API_KEY: Optional[str] = None
    VONAGE_API_SECRET: Optional[str] = None
    VONAGE_FROM: Optional[str] = None
    VONAGE_API_URL: str = "https://rest.nexmo.com/sms/json"

    SMS_DEFAULT_COUNTRY_CODE: str = "+1"
    SMS_MAX_LENGTH: int = 1600

    # Push (Firebase)
    FIREBASE_CREDENTIALS_JSON: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None

    # Push (OneSignal)
    ONESIGNAL_APP_ID: Optional[str] = None
    ONESIGNAL_API_KEY: Optional[str] = None
    ONESIGNAL_API_URL: str = "https://onesignal.com/api/v1/notifications"

    # Outbound webhooks
    WEBHOOK_SECRET: Optional[str] = None
    WEBHOOK_TIMEOUT: int = 5000  # milliseconds
    WEBHOOK_MAX_RETRIES: int = 3
    WEBHOOK_RETRY_DELAY_MS: int = 1000
    WEBHOOK_USER_AGENT: str = "Notifier-Webhook/1.0"

    # Inbound provider callbacks
    SENDGRID_WEBHOOK_VERIFY: bool = False
    SENDGRID_WEBHOOK_PUBLIC_KEY: Optional[str] = None
    TWILIO_WEBHOOK_VERIFY: bool = False

    # In-app
    IN_APP_REPLAY_LIMIT: int = 10

    # Celery Configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TIMEZONE: str = "UTC"
    DEAD_LETTER_ALERT_THRESHOLD: int = 1

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

    @property
    def webhook_timeout_seconds(self) -> float:
        return self.WEBHOOK_TIMEOUT / 1000

@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
