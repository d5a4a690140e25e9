# promotion_engine/infrastructure/memory/ledger.py

from threading import Lock
from typing import Dict, List, Optional, Tuple

from promotion_engine.core.ledger import VersionLedger
from promotion_engine.core.models import LedgerEntry, Release, utcnow


class InMemoryVersionLedger(VersionLedger):
    def __init__(self):
        self._store: Dict[Tuple[str, str], LedgerEntry] = {}
        self._history: Dict[Tuple[str, str], List[LedgerEntry]] = {}
        self._lock = Lock()

    def get(self, application: str, target: str) -> Optional[LedgerEntry]:
        return self._store.get((application, target))

    def compare_and_set(
        self,
        application: str,
        target: str,
        expected_prior: Optional[str],
        new_release: Release,
        run_id: Optional[str] = None,
    ) -> bool:
        key = (application, target)
        with self._lock:
            current = self._store.get(key)
            current_tag = current.release_tag if current else None

            if current_tag != expected_prior:
                return False

            entry = LedgerEntry(
                application=application,
                target=target,
                release_tag=new_release.tag,
                recorded_at=utcnow(),
                release_published_at=new_release.published_at,
                run_id=run_id,
                previous_tag=current_tag,
            )
            self._store[key] = entry
            self._history.setdefault(key, []).append(entry)
            return True

    def history(self, application: str, target: str) -> List[LedgerEntry]:
        return list(self._history.get((application, target), []))

    def seed(self, application: str, target: str, release: Release) -> None:
        """Record a release without compare-and-set (fixtures, imports)."""
        with self._lock:
            key = (application, target)
            entry = LedgerEntry(
                application=application,
                target=target,
                release_tag=release.tag,
                recorded_at=utcnow(),
                release_published_at=release.published_at,
            )
            self._store[key] = entry
            self._history.setdefault(key, []).append(entry)
