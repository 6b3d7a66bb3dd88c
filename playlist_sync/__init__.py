"""
playlist-sync: keep a music library's playlists in sync across devices.

Each device keeps its own authoritative library (playlists, favorited
collections, play history) in a local SQLite database. A sync builds a
snapshot of that library, merges it with the snapshot stored in a GitHub
repository, writes the merged state back locally and uploads it when the
remote is behind.

Architecture:
    library/  - Local entities, cover reference normalization and the
                interfaces the sync engine reads and writes through
    sync/     - Snapshot model, wire codec, snapshot builder, merge engine,
                change detector and the orchestrator sequencing them
    remote/   - Remote blob store interface and its GitHub implementation
    core/     - Configuration, database, logging, exceptions
    cli.py    - Command-line interface (psync)

Usage:
    Command Line:
        psync configure --token ghp_... --repo octocat/music-backup
        psync sync
        psync status

    Python API:
        from playlist_sync.core import Database, load_config
        from playlist_sync.library import CoverUrlMapper
        from playlist_sync.remote import GitHubContentsStore
        from playlist_sync.sync import LocalSnapshotBuilder, SyncOrchestrator

        config = load_config()
        db = Database(config.storage.database)
        store = GitHubContentsStore(db.get_token(), db.get_remote_location())
        builder = LocalSnapshotBuilder(db, db, CoverUrlMapper(db.get_cover_mappings()),
                                       config.sync.device_name)
        result = SyncOrchestrator(db, db, store, builder).sync()

Dependencies:
    - requests: GitHub Contents API
    - click / rich-click: CLI
    - tqdm: Console logging and retry countdown
    - pyyaml: Configuration file parsing
    - python-dotenv: Credentials from .env for psync configure
"""

__version__ = "0.1.0"
__author__ = "playlist-sync"
__license__ = "MIT"

from playlist_sync.core import (
    Config,
    ConfigError,
    Database,
    DatabaseError,
    PlaylistSyncError,
    get_logger,
    load_config,
    setup_logging,
)
from playlist_sync.sync import Snapshot, SyncOrchestrator, SyncResult, SyncStatus

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "Database",
    "setup_logging",
    "get_logger",
    # Exceptions
    "PlaylistSyncError",
    "ConfigError",
    "DatabaseError",
    # Sync
    "Snapshot",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStatus",
]
