"""
Exception classes for playlist-sync.

Errors raised while syncing. The hierarchy separates failure modes so
that the sync orchestrator (and the scheduler calling it) can tell a
permanently broken credential apart from a network hiccup.

Exception Hierarchy:
    PlaylistSyncError (base)
        ConfigError - Configuration file issues
        DatabaseError - Local SQLite store issues
        CodecError - Snapshot payload encoding issues
            DecodeError - Remote payload cannot be decoded
        RemoteError - Remote store issues
            CredentialExpiredError - Token expired or revoked (no retry)
            RemoteUnavailableError - Transient network/server failure (retry)
                RemoteConflictError - Conditional write rejected (stale token)
        NotConfiguredError - Credential or remote location missing
        MergeError - Unexpected failure inside the merge engine
"""


class PlaylistSyncError(Exception):
    """
    Base exception for all playlist-sync errors.

    Every error raised by playlist-sync derives from it, so the CLI can
    map anything unexpected to one exit code.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., path, field).

    Example:
        try:
            # some operation
        except PlaylistSyncError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Useful for logging and debugging. Common keys include:
                     - 'path': Remote path involved in the error
                     - 'field': Snapshot field that failed to decode
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(PlaylistSyncError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (storage.database)
        - Invalid field values (e.g., negative conflict_retries)

    Example:
        raise ConfigError(
            "'sync.conflict_retries' must be a non-negative integer",
            details={'field': 'sync.conflict_retries', 'value': -1}
        )
    """
    pass


class DatabaseError(PlaylistSyncError):
    """
    Raised when there's an issue with the local SQLite store.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - Parent directory of the database file does not exist
        - Database file is locked or corrupted
        - Schema version mismatch
        - Stored JSON column cannot be parsed

    Example:
        raise DatabaseError(
            "Database version mismatch: expected 1, got 3",
            details={'expected': 1, 'actual': 3}
        )
    """
    pass


class CodecError(PlaylistSyncError):
    """
    Raised when a snapshot cannot be converted to or from bytes.

    Encoding failures mean the snapshot holds a value the wire format
    cannot represent (e.g., an integer outside the signed 64-bit range).
    """
    pass


class DecodeError(CodecError):
    """
    Raised when a remote payload cannot be decoded into a Snapshot.

    This is FATAL for the current sync attempt only. The orchestrator
    aborts before touching local state, so a corrupted or incompatible
    remote blob never damages local playlists.

    Common causes:
        - Payload written in the other format than the path suffix says
        - Truncated or corrupted gzip stream
        - Missing required field, unknown field, or wrong field type
        - Snapshot written by a newer, incompatible schema version

    Example:
        raise DecodeError(
            "Missing required field 'deviceId' in snapshot",
            details={'field': 'deviceId'}
        )
    """
    pass


class RemoteError(PlaylistSyncError):
    """
    Raised when there's an issue talking to the remote store.

    Attributes:
        status_code: HTTP status code returned by the remote, when there
                     was a response at all.

    Example:
        raise RemoteError(
            "Failed to fetch backup.json: 500",
            details={'path': 'backup.json'},
            status_code=500
        )
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status_code: int | None = None
    ) -> None:
        """
        Initialize remote error with the HTTP status.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            status_code: HTTP status code, None for connection-level failures.
        """
        super().__init__(message, details)
        self.status_code = status_code


class CredentialExpiredError(RemoteError):
    """
    Raised when the remote rejects the stored credential.

    This is FATAL for the sync attempt and must not be retried blindly:
    the orchestrator invalidates the stored token and reports that the
    user needs to re-authenticate.
    """
    pass


class RemoteUnavailableError(RemoteError):
    """
    Raised on transient remote failures (timeouts, 5xx, connection reset).

    This is NON-CRITICAL: the retry policy belongs to the caller
    (the CLI `--retries` option or a background scheduler).
    """
    pass


class RemoteConflictError(RemoteUnavailableError):
    """
    Raised when a conditional write is rejected because the version
    token supplied is no longer current (another device wrote first).

    Subclass of RemoteUnavailableError so that callers which do not
    care about the distinction treat it as a transient failure.
    """
    pass


class NotConfiguredError(PlaylistSyncError):
    """
    Raised when a remote store is requested but no credential or
    remote location has been stored yet.

    The orchestrator itself never raises this; it reports a no-op
    result instead. The CLI raises it when building the remote store.
    """
    pass


class MergeError(PlaylistSyncError):
    """
    Raised when the merge engine fails unexpectedly.

    The merge is a total function over two decoded snapshots, so this
    indicates a bug. It is logged with a traceback and the sync attempt
    is reported as failed without touching local state.
    """
    pass
