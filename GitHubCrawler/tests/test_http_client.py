"""
Tests for the HTTP adapter and the command line entry points.
"""

from unittest.mock import Mock, patch

import pytest
import requests

import crawl
import db_setup
from core.errors import TransportError
from infrastructure.http_client import GitHubHttpClient

from fakes import API, FakeHttp, make_response


class TestGitHubHttpClient:
    """Test GitHubHttpClient functionality."""

    def test_do_returns_response(self):
        session = Mock()
        session.request.return_value = Mock(
            status_code=404,
            headers={"X-RateLimit-Remaining": "10"},
            text='{"message": "Not Found"}',
        )
        client = GitHubHttpClient(timeout=5, session=session)

        response = client.do("GET", f"{API}/users/ghost", {"Accept": "application/json"})

        assert response.status == 404
        assert response.headers["x-ratelimit-remaining"] == "10"
        assert response.body == '{"message": "Not Found"}'
        session.request.assert_called_once_with(
            "GET",
            f"{API}/users/ghost",
            headers={"Accept": "application/json"},
            timeout=5,
            allow_redirects=True,
        )

    def test_transport_error(self):
        """Connection failures surface as TransportError."""
        session = Mock()
        session.request.side_effect = requests.ConnectionError("connection reset")
        client = GitHubHttpClient(session=session)

        with pytest.raises(TransportError, match="connection reset"):
            client.do("GET", f"{API}/emojis", {})

    def test_timeout_is_transport_error(self):
        session = Mock()
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(TransportError):
            GitHubHttpClient(session=session).do("GET", f"{API}/emojis", {})

    def test_context_manager_closes_session(self):
        session = Mock()

        with GitHubHttpClient(session=session):
            pass

        session.close.assert_called_once()


class TestCommandLine:
    """Test the crawl and db_setup entry points."""

    def test_missing_config_exits_with_error(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GITHUB_ENTRY", raising=False)

        assert crawl.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_crawl_with_memory_storage(self, tmp_path, monkeypatch):
        for name in ("GITHUB_ENTRY", "GITHUB_TOKENS", "GITHUB_TOKEN", "CRAWLER_DB_TYPE"):
            monkeypatch.delenv(name, raising=False)
        config = tmp_path / "config.yaml"
        config.write_text(
            "entry: octocat\ntoken: ghp_x\ncrawl: [emojis]\ndatabase:\n  type: memory\n",
            encoding="utf-8",
        )
        http = FakeHttp({f"{API}/emojis": [make_response(200, {"tada": "https://e/t.png"})]})

        with patch.object(crawl, "GitHubHttpClient", return_value=http):
            code = crawl.main(["--config", str(config), "--no-resume", "--stats"])

        assert code == 0
        assert http.urls == [f"{API}/emojis"]
        assert http.closed

    def test_db_setup_creates_sqlite_schema(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CRAWLER_DB_TYPE", raising=False)
        db_path = tmp_path / "github.db"
        config = tmp_path / "config.yaml"
        config.write_text(
            f"entry: octocat\ntoken: ghp_x\ndatabase:\n  type: sqlite3\n  sqlite3:\n    path: {db_path}\n",
            encoding="utf-8",
        )

        assert db_setup.main(["--config", str(config)]) == 0
        assert db_path.exists()
