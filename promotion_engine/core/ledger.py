# promotion_engine/core/ledger.py

from abc import ABC, abstractmethod
from typing import List, Optional

from promotion_engine.core.models import LedgerEntry, Release


class VersionLedger(ABC):
    """
    Durable record of the last successfully promoted release per
    (application, target). The only component allowed to persist
    version facts.
    """

    @abstractmethod
    def get(self, application: str, target: str) -> Optional[LedgerEntry]:
        """
        Fetch the current entry for a pair.
        Returns None if the pair was never promoted. Side-effect free.
        """
        raise NotImplementedError

    @abstractmethod
    def compare_and_set(
        self,
        application: str,
        target: str,
        expected_prior: Optional[str],
        new_release: Release,
        run_id: Optional[str] = None,
    ) -> bool:
        """
        Record new_release for the pair if the stored tag equals
        expected_prior (None meaning "no entry yet").
        Returns False without writing when it does not.
        """
        raise NotImplementedError

    @abstractmethod
    def history(self, application: str, target: str) -> List[LedgerEntry]:
        """
        All successful writes for a pair, oldest first.
        """
        raise NotImplementedError
