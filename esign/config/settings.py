"""Application configuration settings."""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional


@dataclass
class PaginationSettings:
    """Pagination configuration."""

    default_page_size: int = 20
    max_page_size: int = 100
    min_page_size: int = 1


@dataclass
class TokenSettings:
    """Per-recipient access token configuration."""

    # Lifetime of a signing link
    ttl_days: int = 30

    # Number of random bytes behind each token
    token_bytes: int = 32

    # Key for encrypting stored tokens (urlsafe base64 or any passphrase)
    encryption_key: str = "change-me-token-encryption-key"

    # Public URL of the signing portal
    signing_base_url: str = "http://localhost:5000"


@dataclass
class ReminderSettings:
    """Reminder scheduling configuration."""

    default_interval_days: int = 3
    max_reminders: int = 5

    # Cron-style cadence for the periodic tick, in seconds
    tick_interval_seconds: int = 3600


@dataclass
class StorageSettings:
    """Document store configuration."""

    backend: str = "local"  # local, memory, s3
    local_root: str = "/tmp/esign-documents"
    s3_bucket: str = "esign-documents"
    s3_region: str = "us-east-1"
    s3_prefix: str = "signatures"


@dataclass
class NotificationSettings:
    """Notification sender configuration."""

    provider: str = "mock"  # mock, sendgrid
    sendgrid_api_key: Optional[str] = None
    from_email: str = "no-reply@example.com"
    from_name: str = "Document Signing"
    firm_name: str = "Your Firm"


@dataclass
class Settings:
    """Main application settings."""

    # Application info
    app_name: str = "E-Signature Workflow API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    database_url: str = ""
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Audit chain HMAC key
    audit_secret_key: str = "default-audit-key-change-in-production"

    # Celery broker for the reminder tick
    celery_broker_url: str = "redis://localhost:6379/0"

    pagination: PaginationSettings = field(default_factory=PaginationSettings)
    tokens: TokenSettings = field(default_factory=TokenSettings)
    reminders: ReminderSettings = field(default_factory=ReminderSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        return cls(
            app_name=os.getenv("APP_NAME", "E-Signature Workflow API"),
            app_version=os.getenv("APP_VERSION", "1.0.0"),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=os.getenv(
                "DATABASE_URL",
                f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', '')}@"
                f"{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}/"
                f"{os.getenv('DB_NAME', 'esign')}"
            ),
            database_pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            database_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            audit_secret_key=os.getenv(
                "AUDIT_SECRET_KEY", "default-audit-key-change-in-production"
            ),
            celery_broker_url=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
            pagination=PaginationSettings(
                default_page_size=int(os.getenv("PAGINATION_DEFAULT_SIZE", "20")),
                max_page_size=int(os.getenv("PAGINATION_MAX_SIZE", "100")),
            ),
            tokens=TokenSettings(
                ttl_days=int(os.getenv("SIGNING_TOKEN_TTL_DAYS", "30")),
                encryption_key=os.getenv(
                    "SIGNING_TOKEN_KEY", "change-me-token-encryption-key"
                ),
                signing_base_url=os.getenv("SIGNING_BASE_URL", "http://localhost:5000"),
            ),
            reminders=ReminderSettings(
                default_interval_days=int(os.getenv("REMINDER_INTERVAL_DAYS", "3")),
                max_reminders=int(os.getenv("REMINDER_MAX_COUNT", "5")),
                tick_interval_seconds=int(os.getenv("REMINDER_TICK_SECONDS", "3600")),
            ),
            storage=StorageSettings(
                backend=os.getenv("DOCUMENT_STORE", "local"),
                local_root=os.getenv("DOCUMENT_STORE_ROOT", "/tmp/esign-documents"),
                s3_bucket=os.getenv("S3_BUCKET_DOCUMENTS", "esign-documents"),
                s3_region=os.getenv("AWS_REGION", "us-east-1"),
                s3_prefix=os.getenv("S3_DOCUMENT_PREFIX", "signatures"),
            ),
            notifications=NotificationSettings(
                provider=os.getenv("NOTIFICATION_PROVIDER", "mock"),
                sendgrid_api_key=os.getenv("SENDGRID_API_KEY"),
                from_email=os.getenv("EMAIL_FROM_ADDRESS", "no-reply@example.com"),
                from_name=os.getenv("EMAIL_FROM_NAME", "Document Signing"),
                firm_name=os.getenv("FIRM_NAME", "Your Firm"),
            ),
        )


# Singleton settings instance
_settings: Optional[Settings] = None


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
    get_settings.cache_clear()
