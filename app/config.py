from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    APP_NAME: str = "Task Manager"
    FRONTEND_URL: str = "http://localhost:3000"
    CORS_ORIGIN: str = "http://localhost:3000"

    # Access tokens (issued elsewhere, verified here)
    JWT_ACCESS_SECRET: str
    JWT_ALGORITHM: str = "HS256"

    # Persistence lookups - optional, reminder re-validation needs it
    DATABASE_URL: str | None = None

    # Redis backs both the cache and the notification queues - optional
    REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 20

    # SMTP - optional, email worker is not started without it
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASS: str | None = None
    SMTP_FROM: str | None = None
    SMTP_TIMEOUT_SECONDS: float = 10.0

    # Notification queues: attempts per job, retry delay base*2**(n-1)
    QUEUE_MAX_ATTEMPTS: int = 3
    QUEUE_BACKOFF_BASE_SECONDS: float = 2.0
    QUEUE_POLL_INTERVAL_SECONDS: float = 1.0
    # Must exceed SMTP_TIMEOUT_SECONDS plus lookup time for one attempt
    QUEUE_LEASE_SECONDS: float = 120.0

    TASK_REMINDER_LEAD_HOURS: int = 24

    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def cache_enabled(self) -> bool:
        return bool(self.REDIS_URL)

    def queue_enabled(self) -> bool:
        return bool(self.REDIS_URL)

    def database_configured(self) -> bool:
        return bool(self.DATABASE_URL)

    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_USER and self.SMTP_PASS)

    def smtp_sender(self) -> str:
        address = self.SMTP_FROM or self.SMTP_USER or ""
        return f'"{self.APP_NAME}" <{address}>'

    def task_url(self, task_id: str) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/tasks/{task_id}"

    def get_db_pool_config(self) -> dict:
        """Keyword arguments for `AsyncConnectionPool`; development runs a smaller pool."""
        if self.environment == "development":
            return {"min_size": 1, "max_size": 4, "timeout": 15.0}
        return {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
        }


settings = Settings()
