"""Tests for the GitHub Contents API store, with a mocked requests session"""

import base64
from unittest.mock import Mock

import pytest
import requests

from playlist_sync.core.exceptions import (
    CredentialExpiredError,
    RemoteConflictError,
    RemoteError,
    RemoteUnavailableError,
)
from playlist_sync.remote.github import GitHubContentsStore

CONTENTS_URL = "https://api.github.com/repos/octocat/music-backup/contents/backup.json"
REPO_URL = "https://api.github.com/repos/octocat/music-backup"


def _response(status_code=200, json_data=None, content=b"", text=""):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    response.content = content
    response.text = text
    return response


def _session(*responses):
    session = Mock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


def _store(session, branch="main"):
    return GitHubContentsStore("ghp_test", "octocat/music-backup", branch=branch, session=session)


def _encoded(data: bytes) -> str:
    text = base64.b64encode(data).decode("ascii")
    # GitHub wraps base64 content every 60 characters
    return "\n".join(text[i:i + 60] for i in range(0, len(text), 60))


class TestConstruction:
    """Repository name and headers"""

    @pytest.mark.parametrize("repository", ["octocat", "octocat/", "/music", "a/b/c"])
    def test_invalid_repository(self, repository):
        """Test the repository must be owner/name"""
        with pytest.raises(ValueError, match="owner/name"):
            GitHubContentsStore("ghp_test", repository, session=_session())

    def test_headers(self):
        """Test authentication and API headers"""
        session = _session()

        store = _store(session)

        assert store.repository == "octocat/music-backup"
        assert session.headers["Authorization"] == "Bearer ghp_test"
        assert session.headers["Accept"] == "application/vnd.github+json"

    def test_api_url_trailing_slash(self):
        """Test a trailing slash on the API URL"""
        store = GitHubContentsStore(
            "t", "octocat/music-backup", api_url="https://ghe.example.com/api/v3/", session=_session()
        )

        assert store.api_url == "https://ghe.example.com/api/v3"


class TestFetch:
    """GET contents"""

    def test_missing_file(self):
        """Test a 404 is no data"""
        session = _session(_response(404, {"message": "Not Found"}))

        assert _store(session, branch=None).fetch("backup.json") is None
        session.request.assert_called_once_with("GET", CONTENTS_URL, timeout=30, params=None)

    def test_base64_content(self):
        """Test base64 content is decoded"""
        payload = b'{"version":"2.0"}' * 20
        session = _session(_response(200, {"sha": "abc123", "encoding": "base64", "content": _encoded(payload)}))

        remote = _store(session).fetch("backup.json")

        assert remote.content == payload
        assert remote.version == "abc123"
        assert session.request.call_args.kwargs["params"] == {"ref": "main"}

    def test_large_file_uses_raw_media_type(self):
        """Test large files are fetched raw"""
        session = _session(
            _response(200, {"sha": "big", "encoding": "none", "content": ""}),
            _response(200, content=b"raw bytes"),
        )

        remote = _store(session).fetch("backup.json")

        assert remote.content == b"raw bytes"
        raw_call = session.request.call_args_list[1]
        assert raw_call.kwargs["headers"] == {"Accept": "application/vnd.github.raw"}

    def test_missing_sha(self):
        """Test a response without sha is an error"""
        session = _session(_response(200, {"encoding": "base64", "content": ""}))

        with pytest.raises(RemoteUnavailableError, match="no sha"):
            _store(session).fetch("backup.json")

    def test_invalid_base64(self):
        """Test undecodable content is an error"""
        session = _session(_response(200, {"sha": "abc", "encoding": "base64", "content": "!!!"}))

        with pytest.raises(RemoteUnavailableError, match="base64"):
            _store(session).fetch("backup.json")

    def test_server_error(self):
        """Test server errors are retryable"""
        session = _session(_response(502, text="Bad Gateway"))

        with pytest.raises(RemoteUnavailableError) as exc_info:
            _store(session).fetch("backup.json")

        assert exc_info.value.status_code == 502
        assert exc_info.value.details["path"] == "backup.json"

    def test_unauthorized(self):
        """Test 401 means the credential expired"""
        session = _session(_response(401, {"message": "Bad credentials"}))

        with pytest.raises(CredentialExpiredError):
            _store(session).fetch("backup.json")

    def test_connection_error(self):
        """Test connection errors are retryable"""
        session = _session()
        session.request.side_effect = requests.exceptions.ConnectionError("reset")

        with pytest.raises(RemoteUnavailableError, match="request failed") as exc_info:
            _store(session).fetch("backup.json")

        assert exc_info.value.status_code is None

    def test_invalid_json(self):
        """Test a non-JSON response is an error"""
        session = _session(_response(200, None, text="<html>"))

        with pytest.raises(RemoteUnavailableError, match="Invalid JSON"):
            _store(session).fetch("backup.json")


class TestPut:
    """PUT contents"""

    def test_create(self):
        """Test creating a file sends no sha"""
        session = _session(_response(201, {"content": {"sha": "new1"}}))

        assert _store(session).put("backup.json", b"data") == "new1"

        method, url = session.request.call_args.args
        body = session.request.call_args.kwargs["json"]
        assert (method, url) == ("PUT", CONTENTS_URL)
        assert body == {
            "message": "Update backup data",
            "content": base64.b64encode(b"data").decode("ascii"),
            "branch": "main",
        }

    def test_update_sends_previous_sha(self):
        """Test updating sends the previous sha"""
        session = _session(_response(200, {"content": {"sha": "new2"}}))

        _store(session).put("backup.json", b"data", previous_version="old1")

        assert session.request.call_args.kwargs["json"]["sha"] == "old1"

    @pytest.mark.parametrize("status_code", [409, 422])
    def test_stale_sha(self, status_code):
        """Test a stale sha is a conflict"""
        session = _session(_response(status_code, {"message": "does not match"}))

        with pytest.raises(RemoteConflictError) as exc_info:
            _store(session).put("backup.json", b"data", previous_version="old1")

        assert exc_info.value.status_code == status_code
        assert isinstance(exc_info.value, RemoteUnavailableError)

    def test_missing_content_sha(self):
        """Test a put response without sha is an error"""
        session = _session(_response(200, {"commit": {}}))

        with pytest.raises(RemoteUnavailableError, match="no content sha"):
            _store(session).put("backup.json", b"data")

    def test_default_branch_resolved_once(self):
        """Test the default branch is looked up once"""
        session = _session(
            _response(200, {"default_branch": "trunk", "private": True}),
            _response(201, {"content": {"sha": "s1"}}),
            _response(200, {"content": {"sha": "s2"}}),
        )
        store = _store(session, branch=None)

        store.put("backup.json", b"a")
        store.put("backup.json", b"b", previous_version="s1")

        assert session.request.call_args_list[0].args == ("GET", REPO_URL)
        assert session.request.call_args_list[2].kwargs["json"]["branch"] == "trunk"
        assert session.request.call_count == 3


class TestAccountHelpers:
    """Branch, repository and token lookups"""

    def test_branch_falls_back_to_main(self):
        """Test main is used when the lookup has no branch"""
        store = _store(_session(_response(500, text="oops")), branch=None)

        assert store.branch == "main"

    def test_branch_lookup_propagates_expired_token(self):
        """Test an expired token during branch lookup"""
        store = _store(_session(_response(401)), branch=None)

        with pytest.raises(CredentialExpiredError):
            store.branch

    def test_check_repository_not_found(self):
        """Test a missing repository"""
        store = _store(_session(_response(404, {"message": "Not Found"})))

        with pytest.raises(RemoteError) as exc_info:
            store.check_repository()

        assert exc_info.value.status_code == 404
        assert not isinstance(exc_info.value, RemoteUnavailableError)

    def test_validate_token(self):
        """Test the token owner is returned"""
        session = _session(_response(200, {"login": "octocat"}))

        assert _store(session).validate_token() == "octocat"
        assert session.request.call_args.args == ("GET", "https://api.github.com/user")

    def test_create_repository(self):
        """Test creating a private repository"""
        session = _session(_response(201, {"full_name": "octocat/music-backup", "private": True}))

        info = _store(session).create_repository()

        assert info["private"] is True
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "https://api.github.com/user/repos")
        assert session.request.call_args.kwargs["json"] == {
            "name": "music-backup",
            "description": "playlist-sync backup data",
            "private": True,
            "auto_init": True,
        }
