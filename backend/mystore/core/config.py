"""Application configuration and settings management."""
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SQLITE_DEFAULT_URL = "sqlite+aiosqlite:///./mystore.db"


class Settings(BaseSettings):
    """Global application settings loaded from environment variables or .env."""

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).resolve().parent.parent / ".." / ".." / ".env"),
        env_file_encoding="utf-8",
        env_prefix="MYSTORE_",
        extra="ignore",
        env_nested_delimiter="__",
    )

    app_name: str = "MyStore"
    environment: str = "development"
    secret_key: str = "change-me"
    log_level: str = "INFO"

    # Database
    database_url: str = SQLITE_DEFAULT_URL
    db_pool_size: int = 10
    db_pool_timeout_seconds: int = 60
    db_pool_recycle_seconds: int = 1800
    db_statement_timeout_ms: int = 60_000
    db_idle_in_transaction_timeout_ms: int = 30_000

    # Security
    access_token_expire_minutes: int = 60
    recovery_token_expire_minutes: int = 15
    recovery_url: str = "http://localhost:5173/recovery"
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Mail (Gmail SMTP with OAuth2)
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_refresh_token: str | None = None
    google_token_url: str = "https://oauth2.googleapis.com/token"
    mail_user: str | None = None
    mail_from_name: str = "MyStore App"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    mail_connection_timeout_seconds: float = 5.0
    mail_greeting_timeout_seconds: float = 5.0
    mail_socket_timeout_seconds: float = 5.0

    # Startup / background jobs
    seed_sample_users: bool = False
    sample_user_count: int = 12
    token_purge_interval_seconds: int = 3600

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _require_database_in_production(self) -> "Settings":
        if self.is_production and self.database_url == SQLITE_DEFAULT_URL:
            raise ValueError("MYSTORE_DATABASE_URL is required in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def default_sender(self) -> str | None:
        if not self.mail_user:
            return None
        return f"{self.mail_from_name} <{self.mail_user}>"


@lru_cache
def get_settings() -> Settings:
    """Return memoized settings instance."""

    return Settings()


settings = get_settings()
