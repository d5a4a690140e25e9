#promotion_engine/infrastructure/sql/models.py
"""SQLAlchemy ORM models for the version ledger."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint

from promotion_engine.infrastructure.sql.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntryORM(Base):
    """
    Current release per (application, target).

    Constraints:
    - Unique (application, target): concurrent first writes race on insert
    - version increments on every successful compare-and-set
    """

    __tablename__ = "version_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)

    application = Column(String(255), nullable=False)
    target = Column(String(64), nullable=False)

    release_tag = Column(String(255), nullable=False)
    release_published_at = Column(DateTime(timezone=True), nullable=True)
    previous_tag = Column(String(255), nullable=True)

    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    run_id = Column(String(64), nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("application", "target", name="uq_version_ledger_pair"),
    )

    def __repr__(self):
        return (
            f"<LedgerEntry({self.application}@{self.target}, "
            f"tag={self.release_tag}, version={self.version})>"
        )


class LedgerHistoryORM(Base):
    """Append-only audit trail of successful ledger writes."""

    __tablename__ = "version_ledger_history"

    id = Column(Integer, primary_key=True, autoincrement=True)

    application = Column(String(255), nullable=False)
    target = Column(String(64), nullable=False)

    release_tag = Column(String(255), nullable=False)
    previous_tag = Column(String(255), nullable=True)
    release_published_at = Column(DateTime(timezone=True), nullable=True)

    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    run_id = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_version_ledger_history_pair", "application", "target"),
    )
