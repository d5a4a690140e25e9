#promotion_engine/infrastructure/sql/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Ledger database configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Any SQLAlchemy URL; SQLite file by default so the ledger survives restarts
    ledger_database_url: str = "sqlite:///./version_ledger.db"

    # Connection pool (ignored for SQLite)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600

    # SQLite lock wait (milliseconds)
    sqlite_busy_timeout_ms: int = 5000

    # SQLAlchemy
    echo_sql: bool = False


settings = DatabaseSettings()
