from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./daypass.db",
        alias="DATABASE_URL"
    )

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Stripe (Server-Side Only!)
    # ==============================================
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")

    # Claimed webhook events stuck in "processing" longer than this are re-run
    webhook_processing_timeout_seconds: int = Field(default=300, alias="WEBHOOK_PROCESSING_TIMEOUT_SECONDS")

    # ==============================================
    # Rooms reservation gateway
    # ==============================================
    rooms_timeout_seconds: int = Field(default=20, alias="ROOMS_TIMEOUT_SECONDS")
    rooms_default_webhook_path: str = Field(default="/api/v1/reservations", alias="ROOMS_DEFAULT_WEBHOOK_PATH")

    # ==============================================
    # Outbound webhook delivery
    # ==============================================
    webhook_delivery_timeout_seconds: int = Field(default=30, alias="WEBHOOK_DELIVERY_TIMEOUT_SECONDS")
    webhook_batch_size: int = Field(default=50, alias="WEBHOOK_BATCH_SIZE")
    webhook_retry_batch_size: int = Field(default=20, alias="WEBHOOK_RETRY_BATCH_SIZE")
    webhook_max_attempts: int = Field(default=5, alias="WEBHOOK_MAX_ATTEMPTS")
    webhook_user_agent: str = Field(default="DayPass-Webhooks/1.0", alias="WEBHOOK_USER_AGENT")

    # Shared secret for the cron trigger (empty = open, development only)
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    # Bearer key for webhook subscription management (empty = open, development only)
    admin_api_key: str = Field(default="", alias="ADMIN_API_KEY")

    # Worker settings (runs inside FastAPI process)
    worker_enabled: bool = Field(default=True, alias="WORKER_ENABLED")
    worker_poll_interval: int = Field(default=60, alias="WORKER_POLL_INTERVAL")  # seconds

    # ==============================================
    # Email (SMTP)
    # ==============================================
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str = Field(default="", alias="SMTP_USERNAME")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_use_ssl: bool = Field(default=False, alias="SMTP_USE_SSL")
    smtp_use_starttls: bool = Field(default=True, alias="SMTP_USE_STARTTLS")
    smtp_timeout_seconds: int = Field(default=15, alias="SMTP_TIMEOUT_SECONDS")
    email_from: str = Field(default="", alias="EMAIL_FROM")
    email_from_name: str = Field(default="Access Pass", alias="EMAIL_FROM_NAME")
    email_reply_to: str = Field(default="", alias="EMAIL_REPLY_TO")
    support_email: str = Field(default="support@example.com", alias="SUPPORT_EMAIL")

    # ==============================================
    # Pass defaults
    # ==============================================
    default_timezone: str = Field(default="Australia/Sydney", alias="DEFAULT_TIMEZONE")
    default_currency: str = Field(default="aud", alias="DEFAULT_CURRENCY")
    pass_countdown_seconds: int = Field(default=20, alias="PASS_COUNTDOWN_SECONDS")

    # Rate limiter storage, e.g. redis://host:6379 (empty = in-memory)
    rate_limit_storage_uri: str = Field(default="", alias="RATE_LIMIT_STORAGE_URI")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator('database_url')
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Hosting providers hand out postgres:// but SQLAlchemy needs postgresql://"""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator('rooms_default_webhook_path')
    @classmethod
    def validate_webhook_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("ROOMS_DEFAULT_WEBHOOK_PATH must start with '/'")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.email_from)

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:3000"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins if origins else ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
