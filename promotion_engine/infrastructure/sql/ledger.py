#promotion_engine/infrastructure/sql/ledger.py

"""SQL version ledger implementation using SQLAlchemy."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from promotion_engine.core.errors import LedgerError
from promotion_engine.core.ledger import VersionLedger
from promotion_engine.core.models import LedgerEntry, Release
from promotion_engine.infrastructure.sql.database import SessionLocal
from promotion_engine.infrastructure.sql.models import LedgerEntryORM, LedgerHistoryORM

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def orm_to_domain(orm) -> LedgerEntry:
    """Convert a ledger row (current or history) to a domain entry."""
    return LedgerEntry(
        application=orm.application,
        target=orm.target,
        release_tag=orm.release_tag,
        recorded_at=_as_utc(orm.recorded_at),
        release_published_at=_as_utc(orm.release_published_at),
        run_id=orm.run_id,
        previous_tag=orm.previous_tag,
    )


# ============================================
# Ledger Implementation
# ============================================

class SqlVersionLedger(VersionLedger):
    """SQLAlchemy ledger with compare-and-set on the current row."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Initialize ledger with optional session factory.

        Args:
            session_factory: SQLAlchemy session factory. If None, uses default production factory.
        """
        self._session_factory = session_factory or SessionLocal

    def _get_session(self) -> Session:
        """Get new session from the injected factory."""
        return self._session_factory()

    # -------------------------
    # READ
    # -------------------------

    def get(self, application: str, target: str) -> Optional[LedgerEntry]:
        """Get current entry for a pair."""
        session = self._get_session()
        try:
            orm = session.query(LedgerEntryORM).filter(
                and_(
                    LedgerEntryORM.application == application,
                    LedgerEntryORM.target == target,
                )
            ).first()

            if orm is None:
                return None

            return orm_to_domain(orm)
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read ledger for {application}@{target}: {e}") from e
        finally:
            session.close()

    def history(self, application: str, target: str) -> List[LedgerEntry]:
        """List all recorded promotions for a pair, oldest first."""
        session = self._get_session()
        try:
            rows = session.query(LedgerHistoryORM).filter(
                and_(
                    LedgerHistoryORM.application == application,
                    LedgerHistoryORM.target == target,
                )
            ).order_by(LedgerHistoryORM.id.asc()).all()

            return [orm_to_domain(row) for row in rows]
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read ledger history for {application}@{target}: {e}") from e
        finally:
            session.close()

    # -------------------------
    # COMPARE AND SET
    # -------------------------

    def compare_and_set(
        self,
        application: str,
        target: str,
        expected_prior: Optional[str],
        new_release: Release,
        run_id: Optional[str] = None,
    ) -> bool:
        """
        Atomically replace the pair's release if it still equals expected_prior.

        First write relies on the unique constraint; later writes use a
        conditional UPDATE. Current row and history row commit together.
        """
        session = self._get_session()
        try:
            now = datetime.now(timezone.utc)

            if expected_prior is None:
                session.add(LedgerEntryORM(
                    application=application,
                    target=target,
                    release_tag=new_release.tag,
                    release_published_at=new_release.published_at,
                    previous_tag=None,
                    recorded_at=now,
                    run_id=run_id,
                    version=1,
                ))
                session.flush()
            else:
                result = session.execute(
                    update(LedgerEntryORM)
                    .where(
                        and_(
                            LedgerEntryORM.application == application,
                            LedgerEntryORM.target == target,
                            LedgerEntryORM.release_tag == expected_prior,
                        )
                    )
                    .values(
                        release_tag=new_release.tag,
                        release_published_at=new_release.published_at,
                        previous_tag=expected_prior,
                        recorded_at=now,
                        run_id=run_id,
                        version=LedgerEntryORM.version + 1,
                    )
                )

                if result.rowcount != 1:
                    session.rollback()
                    logger.warning(
                        f"[ledger] compare_and_set {application}@{target} rejected "
                        f"(expected {expected_prior})"
                    )
                    return False

            session.add(LedgerHistoryORM(
                application=application,
                target=target,
                release_tag=new_release.tag,
                previous_tag=expected_prior,
                release_published_at=new_release.published_at,
                recorded_at=now,
                run_id=run_id,
            ))

            session.commit()
            logger.info(
                f"[ledger] {application}@{target}: {expected_prior} -> {new_release.tag}"
            )
            return True

        except IntegrityError:
            session.rollback()
            logger.warning(
                f"[ledger] compare_and_set {application}@{target} rejected "
                f"(entry created concurrently)"
            )
            return False
        except SQLAlchemyError as e:
            session.rollback()
            raise LedgerError(f"Ledger write failed for {application}@{target}: {e}") from e
        finally:
            session.close()
