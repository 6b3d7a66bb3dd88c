"""
Core module for playlist-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - database: Thread-safe SQLite store for the library and sync state
    - logger: Logging system with multiple outputs

Usage:
    from playlist_sync.core import (
        Config, load_config,
        Database,
        setup_logging, get_logger,
        PlaylistSyncError, ConfigError, DatabaseError
    )
"""

from playlist_sync.core.config import (
    Config,
    RemoteConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import (
    CodecError,
    ConfigError,
    CredentialExpiredError,
    DatabaseError,
    DecodeError,
    MergeError,
    NotConfiguredError,
    PlaylistSyncError,
    RemoteConflictError,
    RemoteError,
    RemoteUnavailableError,
)
from playlist_sync.core.logger import (
    get_logger,
    log_sync_conflict,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "StorageConfig",
    "RemoteConfig",
    "SyncConfig",
    "load_config",
    # Database
    "Database",
    # Exceptions
    "PlaylistSyncError",
    "ConfigError",
    "DatabaseError",
    "CodecError",
    "DecodeError",
    "RemoteError",
    "CredentialExpiredError",
    "RemoteUnavailableError",
    "RemoteConflictError",
    "NotConfiguredError",
    "MergeError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_sync_conflict",
    "shutdown_logging",
]
