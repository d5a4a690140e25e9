#promotion_engine/infrastructure/sql/database.py

"""SQLAlchemy database setup and session management."""

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from promotion_engine.infrastructure.sql.config import DatabaseSettings, settings


# ============================================
# Base for ORM models
# ============================================
Base = declarative_base()


# ============================================
# Engine configuration
# ============================================
def create_db_engine(
    database_url: Optional[str] = None,
    db_settings: Optional[DatabaseSettings] = None,
) -> Engine:
    """Create SQLAlchemy engine for the ledger database."""

    cfg = db_settings or settings
    url = database_url or cfg.ledger_database_url

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=cfg.echo_sql,
            connect_args={"check_same_thread": False},
        )

        busy_timeout = cfg.sqlite_busy_timeout_ms

        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_conn, connection_record):
            """Wait for competing writers instead of failing immediately."""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout)}")
            cursor.close()

        return engine

    return create_engine(
        url,
        echo=cfg.echo_sql,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=cfg.pool_size,
        max_overflow=cfg.max_overflow,
        pool_timeout=cfg.pool_timeout,
        pool_recycle=cfg.pool_recycle,
    )


# Global engine instance (for production use)
engine = create_db_engine()

# Session factory (for production use)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)


# ============================================
# Session factory function
# ============================================
def get_session_factory(engine_instance: Optional[Engine] = None):
    """
    Get a session factory bound to the given engine.

    If no engine provided, uses the default production engine.
    This allows tests to inject their own test engine.
    """
    if engine_instance is None:
        engine_instance = engine

    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine_instance,
        expire_on_commit=False
    )


# ============================================
# Database initialization
# ============================================
def init_db(engine_instance: Optional[Engine] = None) -> None:
    """Create all tables (Alembic is preferred for shared databases)."""
    if engine_instance is None:
        engine_instance = engine
    Base.metadata.create_all(bind=engine_instance)
