"""
Remote store interface.

The remote is a dumb, path-addressed, versioned blob store. It holds no
merge logic: every decision is made on the devices. The sync engine needs
exactly two operations from it, plus a version token per blob for
optimistic concurrency and "did the remote move" detection.

Errors (playlist_sync.core.exceptions):
    CredentialExpiredError  the token was rejected; do not retry
    RemoteConflictError     put() with a stale previous_version
    RemoteUnavailableError  any other transport or server failure
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RemoteFile:
    """
    A blob as fetched from the remote.

    Attributes:
        content: Raw payload bytes (may be empty).
        version: Opaque token identifying exactly this content.
    """
    content: bytes
    version: str


class RemoteStore(Protocol):
    """Path-addressed get/put with version tokens."""

    def fetch(self, path: str) -> RemoteFile | None:
        """Return the blob at path, or None if there is none."""
        ...

    def put(self, path: str, content: bytes, previous_version: str | None = None) -> str:
        """
        Write content at path and return the new version token.

        Without previous_version the blob is created. With it, the write
        only succeeds while previous_version is still the current token.
        """
        ...
