"""
Sync engine.

Components:
    - models: Snapshot and its entities, merge report types
    - codec: JSON and compact binary wire formats
    - builder: LocalSnapshotBuilder, snapshot of the local library
    - merge: merge_snapshots, the two-way merge
    - changes: has_changed, decides whether an upload is needed
    - orchestrator: SyncOrchestrator, one guarded sync attempt

Usage:
    from playlist_sync.sync import SyncOrchestrator, SyncStatus

    result = orchestrator.sync()
    if result.status is SyncStatus.NEEDS_REAUTH:
        ...
"""

from playlist_sync.sync.builder import LocalSnapshotBuilder
from playlist_sync.sync.changes import has_changed
from playlist_sync.sync.merge import MergeResult, merge_snapshots
from playlist_sync.sync.models import (
    Conflict,
    ConflictResolution,
    ConflictType,
    FavoritePlaylist,
    MergeReport,
    OperationLogEntry,
    Playlist,
    RecentPlay,
    Snapshot,
    Song,
    SyncAction,
)
from playlist_sync.sync.orchestrator import SyncOrchestrator, SyncResult, SyncStatus

__all__ = [
    # Models
    "Snapshot",
    "Playlist",
    "Song",
    "FavoritePlaylist",
    "RecentPlay",
    "OperationLogEntry",
    "SyncAction",
    "Conflict",
    "ConflictType",
    "ConflictResolution",
    "MergeReport",
    # Engine
    "LocalSnapshotBuilder",
    "merge_snapshots",
    "MergeResult",
    "has_changed",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStatus",
]
