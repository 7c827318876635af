"""
Application configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Self


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "CBT Session API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]

    # Security
    # Tokens are issued by the identity service; this API only verifies them.
    JWT_SECRET_KEY: str = Field(..., description="JWT signing secret key (required)")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ADMIN_TOKEN: str = Field(
        default="",
        description="Admin API token for maintenance jobs (expiry sweep, stats reconciliation)",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./cbt_dev.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30  # seconds to wait for a pooled connection
    DB_POOL_RECYCLE: int = 3600
    DB_STATEMENT_TIMEOUT_MS: int = Field(
        default=5000,
        ge=0,
        description="Per-statement timeout on PostgreSQL (0 disables)",
    )

    # Session engine
    SESSION_STORE_MAX_RETRIES: int = Field(
        default=5,
        description="Optimistic concurrency retries for a single session mutation",
    )
    SWEEP_BATCH_LIMIT: int = Field(
        default=1000,
        ge=1,
        description=(
            "Page size for the expiry sweep; a run keeps paging until no "
            "overdue session is left"
        ),
    )
    ADMIN_NOTE_MAX_LENGTH: int = 1000

    # Monitoring
    SLOW_REQUEST_THRESHOLD_SECONDS: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_store_retries(self) -> Self:
        """At least one attempt is needed for every store mutation."""
        if self.SESSION_STORE_MAX_RETRIES < 1:
            raise ValueError(
                "SESSION_STORE_MAX_RETRIES must be >= 1, "
                f"got {self.SESSION_STORE_MAX_RETRIES}"
            )
        return self


# mypy doesn't understand that pydantic_settings loads required fields from env vars
settings = Settings()  # type: ignore[call-arg]
