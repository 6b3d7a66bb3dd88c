"""
Configuration management for playlist-sync.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - Location of the local SQLite library database
    - Directory for log files
    - Remote store settings (API URL, branch, request timeout)
    - Sync behavior (wire format, device name, stale-write retries,
      play history window)

Credentials (the account token and the remote repository) are NOT part
of config.yaml: they live in the database and are managed with
`psync configure` / `psync logout`, so that an expired token can be
invalidated by the sync engine itself.

Configuration File Location:
    The config.yaml file is looked up in the current working directory
    unless an explicit path is given.

Example config.yaml:
    storage:
      database: "~/.playlist-sync/library.db"
      logs_directory: "~/.playlist-sync/logs"

    remote:
      api_url: "https://api.github.com"
      branch: null        # null = repository default branch
      timeout: 30

    sync:
      data_saver: false   # true = compact binary format (backup.bin)
      device_name: null   # defaults to the host name
      conflict_retries: 1
      history_limit: 500
"""

import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from playlist_sync.core.exceptions import ConfigError


# Default configuration file name (in current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30
DEFAULT_CONFLICT_RETRIES = 1
MAX_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class StorageConfig:
    """
    Local storage configuration.

    Attributes:
        database: Absolute path to the SQLite library database.
                  Path expansion is performed (~ is expanded to home directory).
                  The parent directory is created by the CLI if missing.
        logs_directory: Absolute path where log files are written.
                        Defaults to {database parent}/logs.
    """
    database: Path
    logs_directory: Path


@dataclass(frozen=True)
class RemoteConfig:
    """
    Remote store configuration.

    Attributes:
        api_url: Base URL of the GitHub REST API. Only changed for
                 GitHub Enterprise installations.
        branch: Branch holding the backup file. None means "use the
                repository's default branch".
        timeout: Per-request timeout in seconds.
    """
    api_url: str
    branch: str | None
    timeout: float


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync behavior configuration.

    Attributes:
        data_saver: When True, snapshots are written in the compact
                    binary format (backup.bin) instead of JSON (backup.json).
                    Both formats are always readable.
        device_name: Human-readable name stored in every snapshot.
        conflict_retries: How many times a sync re-fetches and re-merges
                          after the remote rejected a stale version token.
        history_limit: Maximum number of play history entries sent per sync.
    """
    data_saver: bool
    device_name: str
    conflict_retries: int
    history_limit: int


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    This is the main configuration object that aggregates all configuration
    sections. It is created by load_config() and should be treated as
    immutable (frozen dataclass).

    Attributes:
        storage: Database and log locations.
        remote: Remote store settings.
        sync: Sync behavior settings.

    Example:
        config = load_config()
        print(f"Library: {config.storage.database}")
        print(f"Format: {'binary' if config.sync.data_saver else 'json'}")
    """
    storage: StorageConfig
    remote: RemoteConfig
    sync: SyncConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.
                     The error message will indicate the specific problem.

    Behavior:
        1. Locate config file (explicit path or CWD/config.yaml)
        2. Read and parse YAML content
        3. Validate structure (required sections exist)
        4. Validate and expand storage paths
        5. Validate remote settings with defaults
        6. Validate sync settings with defaults
        7. Create and return frozen Config object
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    _validate_config(raw_config)

    return Config(
        storage=_parse_storage_config(raw_config["storage"]),
        remote=_parse_remote_config(raw_config.get("remote")),
        sync=_parse_sync_config(raw_config.get("sync"))
    )


def _validate_config(raw_config: dict[str, Any]) -> None:
    """
    Validate the raw configuration dictionary structure.

    Args:
        raw_config: Dictionary parsed from config.yaml.

    Raises:
        ConfigError: If a required section is missing or a section
                     is not a dictionary.
    """
    if "storage" not in raw_config:
        raise ConfigError(
            "Missing required section: 'storage'",
            details={"missing_section": "storage"}
        )

    for section in ("storage", "remote", "sync"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    if raw_config["storage"] is None:
        raise ConfigError(
            "Section 'storage' must be a dictionary",
            details={"section": "storage"}
        )


def _parse_storage_config(storage_section: dict[str, Any]) -> StorageConfig:
    """
    Parse and validate the storage configuration section.

    Expands ~ to home directory and converts to absolute Paths.
    Does NOT create any directory.

    Raises:
        ConfigError: If database is missing or empty, or logs_directory
                     is present but not a non-empty string.
    """
    database = storage_section.get("database", "")

    if not isinstance(database, str) or not database.strip():
        raise ConfigError(
            "'storage.database' must be a non-empty string",
            details={"field": "storage.database"}
        )

    database_path = Path(database.strip()).expanduser().resolve()

    logs_raw = storage_section.get("logs_directory")
    if logs_raw is not None:
        if not isinstance(logs_raw, str) or not logs_raw.strip():
            raise ConfigError(
                "'storage.logs_directory' must be a non-empty string",
                details={"field": "storage.logs_directory"}
            )
        logs_path = Path(logs_raw.strip()).expanduser().resolve()
    else:
        logs_path = database_path.parent / "logs"

    return StorageConfig(database=database_path, logs_directory=logs_path)


def _parse_remote_config(remote_section: dict[str, Any] | None) -> RemoteConfig:
    """
    Parse and validate the remote configuration section.

    Applies defaults if section is missing or fields are not specified.

    Raises:
        ConfigError: If api_url or branch is not a non-empty string,
                     or timeout is not a positive number.
    """
    api_url = DEFAULT_API_URL
    branch = None
    timeout: float = DEFAULT_TIMEOUT

    if remote_section is not None:
        raw_url = remote_section.get("api_url")
        if raw_url is not None:
            if not isinstance(raw_url, str) or not raw_url.strip():
                raise ConfigError(
                    "'remote.api_url' must be a non-empty string",
                    details={"field": "remote.api_url"}
                )
            api_url = raw_url.strip().rstrip("/")

        raw_branch = remote_section.get("branch")
        if raw_branch is not None:
            if not isinstance(raw_branch, str) or not raw_branch.strip():
                raise ConfigError(
                    "'remote.branch' must be a non-empty string or null",
                    details={"field": "remote.branch"}
                )
            branch = raw_branch.strip()

        raw_timeout = remote_section.get("timeout")
        if raw_timeout is not None:
            # bool is an int subclass, reject it explicitly
            if (
                isinstance(raw_timeout, bool)
                or not isinstance(raw_timeout, (int, float))
                or raw_timeout <= 0
            ):
                raise ConfigError(
                    "'remote.timeout' must be a positive number",
                    details={"field": "remote.timeout", "value": raw_timeout}
                )
            timeout = float(raw_timeout)

    return RemoteConfig(api_url=api_url, branch=branch, timeout=timeout)


def _parse_sync_config(sync_section: dict[str, Any] | None) -> SyncConfig:
    """
    Parse and validate the sync configuration section.

    Applies defaults if section is missing or fields are not specified.
    Default device_name is the host name reported by the platform module.

    Raises:
        ConfigError: If any field has the wrong type or is out of range.
    """
    data_saver = False
    device_name = platform.node() or "Unknown Device"
    conflict_retries = DEFAULT_CONFLICT_RETRIES
    history_limit = MAX_HISTORY_LIMIT

    if sync_section is not None:
        raw_saver = sync_section.get("data_saver")
        if raw_saver is not None:
            if not isinstance(raw_saver, bool):
                raise ConfigError(
                    "'sync.data_saver' must be true or false",
                    details={"field": "sync.data_saver", "value": raw_saver}
                )
            data_saver = raw_saver

        raw_name = sync_section.get("device_name")
        if raw_name is not None:
            if not isinstance(raw_name, str) or not raw_name.strip():
                raise ConfigError(
                    "'sync.device_name' must be a non-empty string or null",
                    details={"field": "sync.device_name"}
                )
            device_name = raw_name.strip()

        raw_retries = sync_section.get("conflict_retries")
        if raw_retries is not None:
            if (
                isinstance(raw_retries, bool)
                or not isinstance(raw_retries, int)
                or raw_retries < 0
            ):
                raise ConfigError(
                    "'sync.conflict_retries' must be a non-negative integer",
                    details={"field": "sync.conflict_retries", "value": raw_retries}
                )
            conflict_retries = raw_retries

        raw_limit = sync_section.get("history_limit")
        if raw_limit is not None:
            if (
                isinstance(raw_limit, bool)
                or not isinstance(raw_limit, int)
                or not 1 <= raw_limit <= MAX_HISTORY_LIMIT
            ):
                raise ConfigError(
                    f"'sync.history_limit' must be an integer between 1 and {MAX_HISTORY_LIMIT}",
                    details={"field": "sync.history_limit", "value": raw_limit}
                )
            history_limit = raw_limit

    return SyncConfig(
        data_saver=data_saver,
        device_name=device_name,
        conflict_retries=conflict_retries,
        history_limit=history_limit
    )
