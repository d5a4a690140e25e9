#tests/test_github_release_source.py

"""Test the GitHub release client against a mocked requests session."""

from unittest.mock import MagicMock

import pytest
import requests

from promotion_engine.core.errors import (
    ArtifactFetchError,
    ReleaseNotFoundError,
    ReleaseUnavailableError,
)
from promotion_engine.core.models import ApplicationDefinition
from promotion_engine.release.github import GitHubReleaseSource, github_api_base


RELEASE_PAYLOAD = {
    "tag_name": "v1.2.0",
    "published_at": "2026-01-11T00:00:00Z",
    "assets": [
        {
            "name": "my-app-1.2.0.zip",
            "url": "https://api.github.com/repos/acme/my-app/releases/assets/1",
            "browser_download_url": "https://github.com/acme/my-app/releases/download/v1.2.0/my-app-1.2.0.zip",
        },
        {
            "name": "manifest.yml",
            "browser_download_url": "https://github.com/acme/my-app/releases/download/v1.2.0/manifest.yml",
        },
    ],
}


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def source(session):
    return GitHubReleaseSource("acme/my-app", token="t0ken", session=session)


class TestApiBase:

    def test_public_github(self):
        assert github_api_base(None) == "https://api.github.com"
        assert github_api_base("github.com") == "https://api.github.com"

    def test_enterprise_host(self):
        assert github_api_base("github.acme.com") == "https://github.acme.com/api/v3"
        assert github_api_base("https://github.acme.com/") == "https://github.acme.com/api/v3"


class TestReleases:

    def test_latest_release(self, source, session):
        session.get.return_value = _response(payload=RELEASE_PAYLOAD)

        release = source.latest_release()

        assert release.tag == "v1.2.0"
        assert release.version == "1.2.0"
        assert release.published_at.year == 2026
        assert release.manifests == ("manifest.yml",)
        assert release.find_artifact("my-app-1.2.0.zip").url.endswith("/assets/1")

        url = session.get.call_args[0][0]
        headers = session.get.call_args[1]["headers"]
        assert url == "https://api.github.com/repos/acme/my-app/releases/latest"
        assert headers["Authorization"] == "Bearer t0ken"

    def test_release_by_tag(self, source, session):
        session.get.return_value = _response(payload=RELEASE_PAYLOAD)

        assert source.resolve("v1.2.0").tag == "v1.2.0"
        assert session.get.call_args[0][0].endswith("/releases/tags/v1.2.0")

    def test_unknown_tag(self, source, session):
        session.get.return_value = _response(status_code=404, text="Not Found")

        with pytest.raises(ReleaseNotFoundError):
            source.get_release("v9.9.9")

    def test_server_error_is_unavailable(self, source, session):
        session.get.return_value = _response(status_code=502, text="Bad Gateway")

        with pytest.raises(ReleaseUnavailableError):
            source.latest_release()

    def test_network_error_is_unavailable(self, source, session):
        session.get.side_effect = requests.exceptions.ConnectionError("connection refused")

        with pytest.raises(ReleaseUnavailableError):
            source.latest_release()


class TestArtifacts:

    def test_fetch_streams_to_disk(self, source, session, tmp_path):
        session.get.return_value = _response(payload=RELEASE_PAYLOAD)
        release = source.latest_release()

        download = MagicMock()
        download.iter_content.return_value = [b"PK", b"", b"data"]
        context = MagicMock()
        context.__enter__.return_value = download
        context.__exit__.return_value = False
        session.get.return_value = context

        path = source.fetch_artifact(release, ApplicationDefinition(name="my-app"), tmp_path / "run-1")

        assert path == tmp_path / "run-1" / "my-app-1.2.0.zip"
        assert path.read_bytes() == b"PKdata"
        assert session.get.call_args[1]["headers"]["Accept"] == "application/octet-stream"
        assert session.get.call_args[1]["stream"] is True

    def test_missing_asset(self, source, session, tmp_path):
        session.get.return_value = _response(payload=RELEASE_PAYLOAD)
        release = source.latest_release()

        with pytest.raises(ArtifactFetchError, match="other-app"):
            source.fetch_artifact(release, ApplicationDefinition(name="other-app"), tmp_path)

    def test_download_failure(self, source, session, tmp_path):
        session.get.return_value = _response(payload=RELEASE_PAYLOAD)
        release = source.latest_release()
        session.get.side_effect = requests.exceptions.Timeout("timed out")

        with pytest.raises(ArtifactFetchError):
            source.fetch_artifact(release, ApplicationDefinition(name="my-app"), tmp_path)
