"""
Remote blob stores.

    - RemoteStore / RemoteFile: the interface the sync engine uses
    - GitHubContentsStore: snapshots kept in a GitHub repository
"""

from playlist_sync.remote.base import RemoteFile, RemoteStore
from playlist_sync.remote.github import GitHubContentsStore

__all__ = [
    "RemoteFile",
    "RemoteStore",
    "GitHubContentsStore",
]
