"""
Sync orchestrator.

Sequences one sync attempt: build the local snapshot, fetch and decode the
remote blob, merge, write the merged state back to the local library, and
upload when the merge produced something the remote does not have yet.

Steps:
    1. Configuration check (credential + remote location), else NOT_CONFIGURED
    2. Build the local snapshot
    3. Fetch the primary path (format chosen by data_saver), falling back
       once to the other format's path
    4. No content on either path: upload the local snapshot as is
    5. Decode (DecodeError aborts, local state untouched)
    6. is_first_sync = no stored token for the answering path;
       remote_changed = stored token != fetched token
    7. Merge
    8. Apply the merged snapshot to the local library in one transaction;
       recent plays only when is_first_sync or remote_changed
    9. Nothing changed on either side: store token and time, NO_CHANGE
    10. Encode, put with the fetched token, store the new token and time,
        clear the tombstones that were uploaded

Only one sync runs at a time per orchestrator. A call made while another is
in flight returns SKIPPED at once instead of waiting.

Usage:
    orchestrator = SyncOrchestrator(db, db, store, builder, data_saver=False)
    result = orchestrator.sync()
    if result.should_retry:
        ...
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from playlist_sync.core.exceptions import (
    CredentialExpiredError,
    DecodeError,
    MergeError,
    PlaylistSyncError,
    RemoteConflictError,
    RemoteUnavailableError,
)
from playlist_sync.core.logger import get_logger
from playlist_sync.library.repository import LocalLibrary, SyncStateStore
from playlist_sync.remote.base import RemoteFile, RemoteStore
from playlist_sync.sync import codec
from playlist_sync.sync.builder import LocalSnapshotBuilder
from playlist_sync.sync.changes import has_changed
from playlist_sync.sync.merge import merge_snapshots
from playlist_sync.sync.models import MergeReport, Snapshot
from playlist_sync.utils import now_ms

logger = get_logger(__name__)


class SyncStatus(Enum):
    UPLOADED = "uploaded"
    INITIAL_UPLOAD = "initial_upload"
    NO_CHANGE = "no_change"
    SKIPPED = "skipped"
    NOT_CONFIGURED = "not_configured"
    NEEDS_REAUTH = "needs_reauth"
    FAILED = "failed"


_SUCCESS_STATUSES = frozenset({
    SyncStatus.UPLOADED,
    SyncStatus.INITIAL_UPLOAD,
    SyncStatus.NO_CHANGE,
    SyncStatus.SKIPPED,
    SyncStatus.NOT_CONFIGURED,
})


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of one sync() call.

    Attributes:
        status: What happened.
        message: Human-readable summary.
        report: Merge report, when a merge ran (empty for an initial upload).
        error: The error behind NEEDS_REAUTH / FAILED.
        remote_path: Path written (or confirmed unchanged) on the remote.
    """
    status: SyncStatus
    message: str
    report: MergeReport | None = None
    error: PlaylistSyncError | None = None
    remote_path: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in _SUCCESS_STATUSES

    @property
    def should_retry(self) -> bool:
        """True only for transient remote failures; the caller owns the retry policy."""
        return self.status is SyncStatus.FAILED and isinstance(self.error, RemoteUnavailableError)


class SyncOrchestrator:
    """
    Coordinates sync attempts for one account.

    Args:
        library: Local library the merged snapshot is applied to.
        state: Credential and version token bookkeeping.
        remote: Remote blob store.
        builder: Builds the local snapshot.
        data_saver: Write the compact binary format instead of JSON.
        conflict_retries: How many times a put rejected for a stale version
                          token is retried with a fresh fetch and merge.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        library: LocalLibrary,
        state: SyncStateStore,
        remote: RemoteStore,
        builder: LocalSnapshotBuilder,
        data_saver: bool = False,
        conflict_retries: int = 1,
        clock: Callable[[], int] = now_ms
    ) -> None:
        self.library = library
        self.state = state
        self.remote = remote
        self.builder = builder
        self.data_saver = data_saver
        self.conflict_retries = conflict_retries
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def primary_path(self) -> str:
        return codec.file_name(self.data_saver)

    @property
    def alternate_path(self) -> str:
        return codec.file_name(not self.data_saver)

    def sync(self) -> SyncResult:
        """
        Run one sync attempt.

        Safe to call repeatedly and from several threads; concurrent calls
        return SKIPPED. Never raises for expected failures: they are
        reported through the returned SyncResult.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return SyncResult(SyncStatus.SKIPPED, "Sync already in progress")
        try:
            return self._sync_with_retries()
        finally:
            self._lock.release()

    def _sync_with_retries(self) -> SyncResult:
        if not self.state.is_configured():
            logger.debug("Sync not configured, nothing to do")
            return SyncResult(SyncStatus.NOT_CONFIGURED, "Sync is not configured")

        attempt = 0
        while True:
            try:
                return self._sync_once()

            except RemoteConflictError as e:
                if attempt >= self.conflict_retries:
                    logger.warning(f"Remote kept changing during sync, giving up: {e.message}")
                    return SyncResult(
                        SyncStatus.FAILED,
                        "Remote changed during sync, try again later",
                        error=e,
                        remote_path=self.primary_path,
                    )
                attempt += 1
                logger.info(f"Remote changed during sync, merging again ({attempt}/{self.conflict_retries})")

            except CredentialExpiredError as e:
                logger.warning(f"Credential expired, sign in again: {e.message}")
                self.state.invalidate_credential()
                return SyncResult(SyncStatus.NEEDS_REAUTH, "Credential expired, re-authentication required", error=e)

            except RemoteUnavailableError as e:
                logger.warning(f"Remote unavailable: {e.message}")
                return SyncResult(SyncStatus.FAILED, f"Remote unavailable: {e.message}", error=e)

            except DecodeError as e:
                logger.error(f"Cannot decode remote snapshot: {e.message}", exc_info=True)
                return SyncResult(SyncStatus.FAILED, f"Cannot decode remote snapshot: {e.message}", error=e)

            except PlaylistSyncError as e:
                logger.error(f"Sync failed: {e.message}", exc_info=True)
                return SyncResult(SyncStatus.FAILED, f"Sync failed: {e.message}", error=e)

    # =========================================================================
    # One attempt
    # =========================================================================

    def _fetch(self) -> tuple[str, RemoteFile] | None:
        """Return (answering path, file); the alternate path is probed once."""
        fetched = self.remote.fetch(self.primary_path)
        if fetched is not None:
            return self.primary_path, fetched

        fetched = self.remote.fetch(self.alternate_path)
        if fetched is not None:
            logger.info(f"Found remote data at {self.alternate_path}, migrating to {self.primary_path}")
            return self.alternate_path, fetched

        return None

    def _sync_once(self) -> SyncResult:
        now = self.clock()
        local = self.builder.build()
        found = self._fetch()

        # Only a blob at the write path supplies the token for the write
        write_version = found[1].version if found is not None and found[0] == self.primary_path else None

        if found is None or not found[1].content:
            logger.info("No remote data yet, uploading local library")
            self._apply(local, local, MergeReport(), apply_plays=False)
            self._upload(local, write_version, now)
            self._clear_tombstones(local)
            return SyncResult(
                SyncStatus.INITIAL_UPLOAD,
                "Uploaded local library",
                report=MergeReport(),
                remote_path=self.primary_path,
            )

        answered_path, fetched = found
        remote = codec.decode(fetched.content, codec.is_binary_path(answered_path))

        stored_version = self.state.get_remote_version(answered_path)
        is_first_sync = stored_version is None
        remote_changed = stored_version != fetched.version

        try:
            result = merge_snapshots(local, remote, is_first_sync, now)
        except Exception as e:
            raise MergeError(
                f"Merge failed: {e}",
                details={"original_error": str(e), "error_type": type(e).__name__}
            ) from e
        merged, report = result.snapshot, result.report

        self._apply(local, merged, report, apply_plays=is_first_sync or remote_changed)

        if answered_path == self.primary_path and not remote_changed and not has_changed(remote, merged):
            self.state.save_remote_version(self.primary_path, fetched.version)
            self.state.save_last_sync_time(now)
            self._clear_tombstones(local)
            logger.info("Remote already up to date, nothing to upload")
            return SyncResult(
                SyncStatus.NO_CHANGE,
                "Already up to date",
                report=report,
                remote_path=self.primary_path,
            )

        self._upload(merged, write_version, now)
        self._clear_tombstones(local)
        logger.info(f"Sync complete: {report.summary()}")
        return SyncResult(
            SyncStatus.UPLOADED,
            f"Synced: {report.summary()}",
            report=report,
            remote_path=self.primary_path,
        )

    def _apply(self, local: Snapshot, merged: Snapshot, report: MergeReport, apply_plays: bool) -> None:
        """
        Write the merged snapshot into the local library atomically.

        Local playlists edited after the snapshot was built are only
        overwritten by a later merged version. Plays are also restored when
        the local history is empty but the merged one is not (a reinstalled
        device).
        """
        restore_plays = not local.recent_plays and bool(merged.recent_plays)
        with self.library.transaction():
            self.library.apply_merged_playlists(
                [p.to_local() for p in merged.live_playlists],
                removed_ids=report.deleted_playlist_ids,
                snapshot_times={p.id: p.modified_at for p in local.live_playlists},
            )
            self.library.apply_merged_favorites([f.to_local() for f in merged.favorite_playlists])
            if apply_plays or restore_plays:
                self.library.apply_merged_recent_plays([r.to_local() for r in merged.recent_plays])

    def _upload(self, snapshot: Snapshot, previous_version: str | None, now: int) -> None:
        payload = codec.encode(snapshot, self.data_saver)
        new_version = self.remote.put(self.primary_path, payload, previous_version)
        self.state.save_remote_version(self.primary_path, new_version)
        self.state.save_last_sync_time(now)
        logger.debug(f"Uploaded {len(payload)} bytes to {self.primary_path}")

    def _clear_tombstones(self, local: Snapshot) -> None:
        sent = [p.id for p in local.playlists if p.is_deleted]
        if sent:
            self.state.clear_pending_tombstones(sent)
