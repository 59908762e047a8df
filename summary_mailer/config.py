from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


def _split_csv(value: str | list[str]) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Job store (PostgreSQL)
    DATABASE_URL: str = "postgresql://localhost:5432/summary_mailer"
    JOBS_TABLE: str = "scheduled_emails"
    AUTO_CREATE_SCHEMA: bool = False

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # Redis (response cache). Empty disables the cache.
    REDIS_URL: str = ""
    TEXT_GEN_CACHE_TTL_SECONDS: int = 900

    # Text generation (OpenAI-compatible gateway)
    TEXT_GEN_API_KEY: str = "not-configured"
    TEXT_GEN_BASE_URL: str = "https://multi-model-worker.study-llm.me/v1"
    TEXT_GEN_DEFAULT_MODEL: str = "deepseek"
    TEXT_GEN_ALLOWED_MODELS: str | list[str] = ["gemini", "deepseek", "kimi", "glm"]
    TEXT_GEN_TIMEOUT_SECONDS: float = 60.0

    # Delivery (Resend)
    RESEND_API_KEY: str | None = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    SENDER_ADDRESS: str = "no-reply@study-llm.me"
    DEFAULT_FROM_NAME: str = "study-llm.me"
    ALLOWED_FROM_NAMES: str | list[str] = ["Equipment Fault Manager", "A3 Bowler", "Light Gantt"]
    DELIVERY_TIMEOUT_SECONDS: float = 30.0

    # Metrics data source
    METRICS_SOURCE_URL: str = "https://bowler-worker.study-llm.me"
    METRICS_SOURCE_TIMEOUT_SECONDS: float = 30.0

    # Dispatch
    DISPATCH_INTERVAL_MINUTES: int = 1
    DELIVERY_MAX_ATTEMPTS: int | None = None  # None = retry forever
    DELIVERY_BACKOFF_BASE_SECONDS: float = 0.0
    DELIVERY_BACKOFF_MAX_SECONDS: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("TEXT_GEN_ALLOWED_MODELS", "ALLOWED_FROM_NAMES", mode="before")
    @classmethod
    def _parse_csv(cls, v: str | list[str]) -> list[str]:
        return _split_csv(v)

    @field_validator("DELIVERY_MAX_ATTEMPTS", mode="before")
    @classmethod
    def _empty_means_unbounded(cls, v):
        if v == "" or v is None:
            return None
        return v

    def get_db_pool_config(self) -> dict:
        """Pool configuration, adjusted for the current environment."""
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config

    def cache_enabled(self) -> bool:
        return bool(self.REDIS_URL.strip())


settings = Settings()
