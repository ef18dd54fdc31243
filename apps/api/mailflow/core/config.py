"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./mailflow.db"

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # Roles allowed to manage automations (comma-separated)
    ADMIN_ROLES: str = "admin,superadmin"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Queue processing
    QUEUE_BATCH_SIZE: int = 20
    QUEUE_MAX_ATTEMPTS: int = 3
    WORKER_POLL_INTERVAL_SECONDS: int = 300  # External cron default is every 5 minutes

    # Admin bulk operations
    BULK_MAX_IDS: int = 50
    DUPLICATE_NAME_MAX_ATTEMPTS: int = 100

    # Email delivery service (empty URL = dry run)
    EMAIL_DELIVERY_URL: str = ""
    EMAIL_DELIVERY_TOKEN: str = ""
    DELIVERY_TIMEOUT_SECONDS: float = 20.0
    # HTTP retries within one delivery attempt (queue attempts are separate)
    DELIVERY_HTTP_ATTEMPTS: int = 3
    DELIVERY_RETRY_BASE_DELAY_SECONDS: float = 0.5
    DELIVERY_RETRY_MAX_DELAY_SECONDS: float = 4.0

    # Profile service used for condition steps and recipient lookup
    PROFILE_SERVICE_URL: str = ""
    PROFILE_SERVICE_TOKEN: str = ""

    # Action steps (webhooks)
    ACTION_TIMEOUT_SECONDS: float = 10.0

    # Cache invalidation over redis pub/sub (empty or memory:// disables)
    REDIS_URL: str = ""
    REDIS_MAX_CONNECTIONS: int = 10
    CACHE_CHANNEL: str = "mailflow:cache-invalidate"

    # Error tracking (optional)
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    @property
    def jwt_secrets(self) -> list[str]:
        """Secrets to try when verifying tokens (current first)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def admin_roles_list(self) -> list[str]:
        return [r.strip().lower() for r in self.ADMIN_ROLES.split(",") if r.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
