# promotion_engine/release/source.py

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional, Tuple

from promotion_engine.core.ledger import VersionLedger
from promotion_engine.core.models import (
    ApplicationDefinition,
    DeploymentTarget,
    Release,
)


class ReleaseSource(ABC):
    """
    Where upstream releases come from.
    """

    @abstractmethod
    def latest_release(self) -> Release:
        """
        Newest published release.
        Raises ReleaseUnavailableError when metadata cannot be fetched.
        """
        raise NotImplementedError

    @abstractmethod
    def get_release(self, tag: str) -> Release:
        """
        Release for an explicit tag.
        Raises ReleaseNotFoundError if the tag does not exist.
        """
        raise NotImplementedError

    @abstractmethod
    def fetch_artifact(
        self,
        release: Release,
        application: ApplicationDefinition,
        dest_dir: Path,
    ) -> Path:
        """
        Download the application's artifact for the release into dest_dir.
        Raises ArtifactFetchError.
        """
        raise NotImplementedError

    def resolve(self, tag: Optional[str] = None) -> Release:
        """Explicit tag if given, latest otherwise."""
        if tag:
            return self.get_release(tag)
        return self.latest_release()


def is_new_release(
    release: Release,
    ledger: VersionLedger,
    pairs: Iterable[Tuple[ApplicationDefinition, DeploymentTarget]],
) -> bool:
    """True when at least one pair does not record the release yet."""
    for application, target in pairs:
        entry = ledger.get(application.name, target.name)
        if entry is None or entry.release_tag != release.tag:
            return True
    return False
