# promotion_engine/release/github.py
"""GitHub / GitHub Enterprise release source."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from promotion_engine.core.errors import (
    ArtifactFetchError,
    ReleaseNotFoundError,
    ReleaseUnavailableError,
)
from promotion_engine.core.models import ApplicationDefinition, ArtifactRef, Release
from promotion_engine.release.source import ReleaseSource

logger = logging.getLogger(__name__)


MANIFEST_SUFFIXES = (".yml", ".yaml")


def github_api_base(host: Optional[str] = None) -> str:
    """api.github.com, or the v3 API of a GitHub Enterprise host."""
    if not host or host in ("github.com", "api.github.com"):
        return "https://api.github.com"
    host = host.rstrip("/")
    if not host.startswith("http"):
        host = f"https://{host}"
    return f"{host}/api/v3"


def github_headers(token: Optional[str] = None) -> Dict[str, str]:
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubReleaseSource(ReleaseSource):
    """Client for the releases API of the upstream repository."""

    def __init__(
        self,
        repo: str,
        token: Optional[str] = None,
        host: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client.

        Args:
            repo: "owner/name" of the upstream repository
            token: API token (needed for private repos and GHE)
            host: GitHub Enterprise hostname, None for github.com
            timeout: Request timeout in seconds
        """
        self.repo = repo
        self.base_url = github_api_base(host)
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()

    # -------------------------
    # RELEASES
    # -------------------------

    def latest_release(self) -> Release:
        payload = self._get_json(f"/repos/{self.repo}/releases/latest")
        release = self._to_release(payload)
        logger.info(f"[github] latest release of {self.repo}: {release.tag}")
        return release

    def get_release(self, tag: str) -> Release:
        payload = self._get_json(f"/repos/{self.repo}/releases/tags/{tag}", tag=tag)
        return self._to_release(payload)

    # -------------------------
    # ARTIFACTS
    # -------------------------

    def fetch_artifact(
        self,
        release: Release,
        application: ApplicationDefinition,
        dest_dir: Path,
    ) -> Path:
        name = application.artifact_name(release)
        artifact = release.find_artifact(name)
        if artifact is None:
            raise ArtifactFetchError(
                f"Release {release.tag} has no artifact named {name} for {application.name}"
            )

        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        destination = dest_dir / name

        headers = github_headers(self._token)
        headers["Accept"] = "application/octet-stream"

        logger.info(f"[github] downloading {name} ({release.tag})")

        try:
            with self._session.get(
                artifact.url,
                headers=headers,
                timeout=self.timeout,
                stream=True,
            ) as response:
                response.raise_for_status()
                with open(destination, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=1024 * 1024):
                        if chunk:
                            fh.write(chunk)
        except (requests.exceptions.RequestException, OSError) as e:
            raise ArtifactFetchError(f"Failed to download {name}: {e}") from e

        return destination

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _get_json(self, path: str, tag: Optional[str] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.get(
                url,
                headers=github_headers(self._token),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ReleaseUnavailableError(f"GET {url} failed: {e}") from e

        if response.status_code == 404 and tag is not None:
            raise ReleaseNotFoundError(f"Release {tag} not found in {self.repo}")

        if response.status_code != 200:
            raise ReleaseUnavailableError(
                f"GET {url} returned [{response.status_code}]: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise ReleaseUnavailableError(f"GET {url} returned invalid JSON: {e}") from e

    def _to_release(self, payload: Dict[str, Any]) -> Release:
        assets = payload.get("assets", [])

        artifacts = tuple(
            ArtifactRef(name=asset["name"], url=asset.get("url") or asset["browser_download_url"])
            for asset in assets
        )
        manifests = tuple(
            asset["name"] for asset in assets
            if asset["name"].endswith(MANIFEST_SUFFIXES)
        )

        return Release(
            tag=payload["tag_name"],
            artifacts=artifacts,
            manifests=manifests,
            published_at=_parse_timestamp(payload.get("published_at")),
        )
