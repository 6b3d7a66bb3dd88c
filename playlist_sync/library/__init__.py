"""
Local library: the device's authoritative data and how the sync engine
reaches it.

Components:
    - Track, LocalPlaylist, FavoriteCollection, PlayedEntry, LoggedOperation:
      entities as stored on the device
    - CoverUrlMapper: rewrites device-local cover paths to network URLs
    - LocalLibrary, SyncStateStore: interfaces implemented by core.Database
    - reconcile_playlists: folds merged playlists into the local ones
"""

from playlist_sync.library.covers import CoverUrlMapper, is_local_url
from playlist_sync.library.models import (
    FavoriteCollection,
    LocalPlaylist,
    LoggedOperation,
    PlayedEntry,
    Track,
)
from playlist_sync.library.repository import LocalLibrary, SyncStateStore, reconcile_playlists

__all__ = [
    # Models
    "Track",
    "LocalPlaylist",
    "FavoriteCollection",
    "PlayedEntry",
    "LoggedOperation",
    # Covers
    "CoverUrlMapper",
    "is_local_url",
    # Interfaces
    "LocalLibrary",
    "SyncStateStore",
    "reconcile_playlists",
]
