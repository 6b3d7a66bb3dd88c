"""
GitHub repository as the remote store.

Snapshots are kept as a single file in a (private) repository and read and
written through the GitHub Contents API. The blob SHA of the file is the
version token: PUT with the current SHA updates the file, PUT with a stale
SHA is rejected, PUT without SHA creates it.

Endpoints used:
    GET  /repos/{owner}/{repo}/contents/{path}   fetch (base64 content + sha)
    PUT  /repos/{owner}/{repo}/contents/{path}   create/update
    GET  /repos/{owner}/{repo}                   default branch, access check
    GET  /user                                   token validation
    POST /user/repos                             backup repository creation

Status mapping:
    401                   -> CredentialExpiredError
    404 on fetch          -> None (no blob yet)
    409 / 422 on put      -> RemoteConflictError (stale or missing sha)
    other non-2xx         -> RemoteUnavailableError
    requests exceptions   -> RemoteUnavailableError

Usage:
    store = GitHubContentsStore(token, "octocat/music-backup")
    remote = store.fetch("backup.json")
    new_sha = store.put("backup.json", payload, previous_version=remote.version)
"""

import base64
import binascii
from typing import Any

import requests

from playlist_sync.core.exceptions import (
    CredentialExpiredError,
    RemoteConflictError,
    RemoteError,
    RemoteUnavailableError,
)
from playlist_sync.core.logger import get_logger
from playlist_sync.remote.base import RemoteFile

logger = get_logger(__name__)


DEFAULT_API_URL = "https://api.github.com"
DEFAULT_BRANCH = "main"
COMMIT_MESSAGE = "Update backup data"
REPOSITORY_DESCRIPTION = "playlist-sync backup data"

_JSON_MEDIA_TYPE = "application/vnd.github+json"
_RAW_MEDIA_TYPE = "application/vnd.github.raw"


class GitHubContentsStore:
    """
    RemoteStore backed by one GitHub repository.

    Args:
        token: Personal access token (needs contents read/write).
        repository: "owner/name" of the backup repository.
        branch: Branch to read and write. None means the repository's
                default branch, looked up once on first use.
        api_url: API base URL (GitHub Enterprise: https://host/api/v3).
        timeout: Per-request timeout in seconds.
        session: requests.Session to use; a new one is created if omitted.

    Raises:
        ValueError: If repository is not of the form "owner/name".
    """

    def __init__(
        self,
        token: str,
        repository: str,
        branch: str | None = None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30,
        session: requests.Session | None = None
    ) -> None:
        owner, _, name = repository.partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"Repository must be 'owner/name', got '{repository}'")

        self.owner = owner
        self.name = name
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._branch = branch

        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": _JSON_MEDIA_TYPE,
            "X-GitHub-Api-Version": "2022-11-28",
        })

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.name}"

    def _contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.name}/contents/{path}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """
        Send a request and map transport failures and 401s.

        Returns the response for every other status; callers map those.
        """
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise RemoteUnavailableError(
                f"GitHub request failed: {e}",
                details={"method": method, "url": url, "original_error": str(e)}
            ) from e

        if response.status_code == 401:
            raise CredentialExpiredError(
                "GitHub rejected the token (expired or revoked)",
                details={"method": method, "url": url},
                status_code=401
            )
        return response

    @staticmethod
    def _unexpected(response: requests.Response, action: str, path: str | None = None) -> RemoteUnavailableError:
        details: dict[str, Any] = {"body": response.text[:500]}
        if path is not None:
            details["path"] = path
        return RemoteUnavailableError(
            f"Failed to {action}: {response.status_code}",
            details=details,
            status_code=response.status_code
        )

    @staticmethod
    def _json(response: requests.Response, action: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteUnavailableError(
                f"Invalid JSON from GitHub while trying to {action}",
                details={"original_error": str(e)},
                status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise RemoteUnavailableError(
                f"Unexpected response shape from GitHub while trying to {action}",
                status_code=response.status_code
            )
        return data

    # =========================================================================
    # RemoteStore
    # =========================================================================

    def fetch(self, path: str) -> RemoteFile | None:
        """
        Fetch the file at path.

        Returns:
            RemoteFile with the decoded bytes and blob sha, or None on 404.
        """
        params = {"ref": self._branch} if self._branch else None
        response = self._request("GET", self._contents_url(path), params=params)

        if response.status_code == 404:
            logger.debug(f"Remote file not found: {path}")
            return None
        if not response.ok:
            raise self._unexpected(response, f"fetch {path}", path)

        data = self._json(response, f"fetch {path}")
        sha = data.get("sha")
        if not isinstance(sha, str) or not sha:
            raise RemoteUnavailableError(
                f"GitHub response for {path} has no sha",
                details={"path": path}
            )

        if data.get("encoding") == "base64":
            try:
                content = base64.b64decode(str(data.get("content", "")).replace("\n", ""), validate=True)
            except (binascii.Error, ValueError) as e:
                raise RemoteUnavailableError(
                    f"GitHub returned invalid base64 for {path}",
                    details={"path": path, "original_error": str(e)}
                ) from e
        else:
            # Files above 1 MB come without inline content
            content = self._fetch_raw(path, params)

        logger.debug(f"Fetched {path}: {len(content)} bytes, sha {sha[:7]}")
        return RemoteFile(content=content, version=sha)

    def _fetch_raw(self, path: str, params: dict[str, str] | None) -> bytes:
        response = self._request(
            "GET", self._contents_url(path), params=params, headers={"Accept": _RAW_MEDIA_TYPE}
        )
        if not response.ok:
            raise self._unexpected(response, f"fetch raw {path}", path)
        return response.content

    def put(self, path: str, content: bytes, previous_version: str | None = None) -> str:
        """
        Create or update the file at path.

        Returns:
            The new blob sha.

        Raises:
            RemoteConflictError: previous_version is no longer current, or
                                 the file exists and no previous_version
                                 was given.
        """
        body: dict[str, Any] = {
            "message": COMMIT_MESSAGE,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if previous_version:
            body["sha"] = previous_version

        response = self._request("PUT", self._contents_url(path), json=body)

        if response.status_code in (409, 422):
            raise RemoteConflictError(
                f"Remote {path} changed since it was fetched",
                details={"path": path, "previous_version": previous_version},
                status_code=response.status_code
            )
        if not response.ok:
            raise self._unexpected(response, f"update {path}", path)

        data = self._json(response, f"update {path}")
        new_sha = (data.get("content") or {}).get("sha")
        if not isinstance(new_sha, str) or not new_sha:
            raise RemoteUnavailableError(
                f"GitHub response for {path} has no content sha",
                details={"path": path}
            )

        logger.debug(f"Wrote {path}: {len(content)} bytes, sha {new_sha[:7]}")
        return new_sha

    # =========================================================================
    # Account helpers
    # =========================================================================

    @property
    def branch(self) -> str:
        """Configured branch, or the repository default branch (cached)."""
        if self._branch is None:
            try:
                info = self.check_repository()
            except CredentialExpiredError:
                raise
            except RemoteError as e:
                logger.debug(f"Could not resolve default branch, using '{DEFAULT_BRANCH}': {e}")
                self._branch = DEFAULT_BRANCH
            else:
                self._branch = info.get("default_branch") or DEFAULT_BRANCH
        return self._branch

    def check_repository(self) -> dict[str, Any]:
        """
        Return the repository metadata (name, private, default_branch, ...).

        Raises:
            RemoteError: 404 when the repository does not exist or the token
                         cannot see it.
        """
        url = f"{self.api_url}/repos/{self.owner}/{self.name}"
        response = self._request("GET", url)
        if response.status_code == 404:
            raise RemoteError(
                f"Repository not found: {self.repository}",
                details={"repository": self.repository},
                status_code=404
            )
        if not response.ok:
            raise self._unexpected(response, f"read repository {self.repository}")
        return self._json(response, f"read repository {self.repository}")

    def validate_token(self) -> str:
        """Return the login of the token's user."""
        response = self._request("GET", f"{self.api_url}/user")
        if not response.ok:
            raise self._unexpected(response, "validate token")
        login = self._json(response, "validate token").get("login")
        return login if isinstance(login, str) else "unknown"

    def create_repository(self, private: bool = True) -> dict[str, Any]:
        """
        Create the backup repository under the token's user.

        The repository is initialized with a README so the default branch
        exists before the first snapshot is written.
        """
        body = {
            "name": self.name,
            "description": REPOSITORY_DESCRIPTION,
            "private": private,
            "auto_init": True,
        }
        response = self._request("POST", f"{self.api_url}/user/repos", json=body)
        if not response.ok:
            raise self._unexpected(response, f"create repository {self.name}")
        info = self._json(response, f"create repository {self.name}")
        logger.info(f"Created repository {info.get('full_name', self.repository)}")
        return info
