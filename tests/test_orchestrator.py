"""Tests for the sync orchestrator, against an in-memory remote"""

import sqlite3
from pathlib import Path

import pytest

from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import (
    CredentialExpiredError,
    DatabaseError,
    DecodeError,
    RemoteConflictError,
    RemoteUnavailableError,
)
from playlist_sync.library.covers import CoverUrlMapper
from playlist_sync.sync import codec
from playlist_sync.sync.builder import LocalSnapshotBuilder
from playlist_sync.sync.models import MergeReport
from playlist_sync.sync.orchestrator import SyncOrchestrator, SyncStatus

from conftest import BASE_TIME, FakeClock, MemoryStore


def _orchestrator(database, store, clock, data_saver=False, conflict_retries=1):
    builder = LocalSnapshotBuilder(database, database, CoverUrlMapper(), "Test Phone", clock=clock)
    return SyncOrchestrator(
        database,
        database,
        store,
        builder,
        data_saver=data_saver,
        conflict_retries=conflict_retries,
        clock=clock,
    )


def _remote_snapshot(store, path="backup.json"):
    return codec.decode(store.files[path].content, codec.is_binary_path(path))


@pytest.fixture
def orchestrator(configured_database, memory_store, clock):
    return _orchestrator(configured_database, memory_store, clock)


class TestPreconditions:
    """Cases that never reach the remote"""

    def test_not_configured(self, database, memory_store, clock):
        """Test sync without credentials does nothing"""
        result = _orchestrator(database, memory_store, clock).sync()

        assert result.status is SyncStatus.NOT_CONFIGURED
        assert result.succeeded is True
        assert memory_store.fetches == []

    def test_skipped_while_another_sync_runs(self, orchestrator, memory_store):
        """Test a concurrent call is skipped"""
        orchestrator._lock.acquire()
        try:
            result = orchestrator.sync()
        finally:
            orchestrator._lock.release()

        assert result.status is SyncStatus.SKIPPED
        assert memory_store.fetches == []


class TestInitialUpload:
    """Nothing on the remote yet"""

    def test_uploads_local_library(self, orchestrator, configured_database, memory_store, make_track):
        """Test the first sync uploads the local library"""
        playlist = configured_database.create_playlist("Road Trip", [make_track(1), make_track(2)])

        result = orchestrator.sync()

        assert result.status is SyncStatus.INITIAL_UPLOAD
        assert result.report.is_empty
        assert result.remote_path == "backup.json"
        assert memory_store.puts == [("backup.json", None)]
        assert memory_store.fetches == ["backup.json", "backup.bin"]
        remote = _remote_snapshot(memory_store)
        assert [(p.id, p.song_ids) for p in remote.playlists] == [(playlist.id, [1, 2])]
        assert configured_database.get_remote_version("backup.json") == "sha-1"
        assert configured_database.get_last_sync_time() == BASE_TIME

    def test_data_saver_writes_binary(self, configured_database, memory_store, clock):
        """Test data saver writes backup.bin"""
        orchestrator = _orchestrator(configured_database, memory_store, clock, data_saver=True)

        result = orchestrator.sync()

        assert result.remote_path == "backup.bin"
        assert memory_store.fetches == ["backup.bin", "backup.json"]
        assert _remote_snapshot(memory_store, "backup.bin").device_id == configured_database.get_device_id()

    def test_empty_blob_reuses_its_version(self, orchestrator, memory_store):
        """Test an empty remote file is overwritten with its version token"""
        version = memory_store.seed("backup.json", b"")

        result = orchestrator.sync()

        assert result.status is SyncStatus.INITIAL_UPLOAD
        assert memory_store.puts == [("backup.json", version)]

    def test_pending_tombstones_cleared(self, orchestrator, configured_database):
        """Test the initial upload clears pending deletions"""
        playlist = configured_database.create_playlist("Gone")
        configured_database.delete_playlist(playlist.id)

        orchestrator.sync()

        assert configured_database.pending_tombstones() == []


class TestMerging:
    """A remote snapshot already exists"""

    def test_second_sync_is_no_change(self, orchestrator, configured_database, memory_store, clock, make_track):
        """Test nothing is uploaded when both sides agree"""
        configured_database.create_playlist("Road Trip", [make_track(1)])
        configured_database.record_play(make_track(1))
        orchestrator.sync()
        clock.advance()

        result = orchestrator.sync()

        assert result.status is SyncStatus.NO_CHANGE
        assert result.succeeded is True
        assert len(memory_store.puts) == 1
        assert result.report == MergeReport()
        assert configured_database.get_last_sync_time() == BASE_TIME + 1000

    def test_local_edit_is_uploaded(self, orchestrator, configured_database, memory_store, clock, make_track):
        """Test a local edit is uploaded against the stored version"""
        playlist = configured_database.create_playlist("Road Trip", [make_track(1)])
        orchestrator.sync()
        clock.advance()
        configured_database.add_track_to_playlist(playlist.id, make_track(2))

        result = orchestrator.sync()

        assert result.status is SyncStatus.UPLOADED
        assert result.message.startswith("Synced: ")
        assert memory_store.puts[-1] == ("backup.json", "sha-1")
        assert _remote_snapshot(memory_store).playlists[0].song_ids == [1, 2]
        assert configured_database.get_remote_version("backup.json") == "sha-2"

    def test_remote_playlists_applied_locally(
        self, orchestrator, configured_database, memory_store, make_snapshot, make_playlist, make_favorite, make_play
    ):
        """Test remote changes reach the local library"""
        remote = make_snapshot(
            device_id="device-b",
            playlists=[make_playlist(5, "From Tablet", [7, 8])],
            favorites=[make_favorite(3)],
            plays=[make_play(7, BASE_TIME - 100, device_id="device-b")],
        )
        memory_store.seed("backup.json", codec.encode(remote, False))

        result = orchestrator.sync()

        assert result.status is SyncStatus.UPLOADED
        assert result.report.playlists_added == 1
        local = configured_database.get_playlist(5)
        assert local.name == "From Tablet"
        assert local.track_ids == [7, 8]
        assert [f.key for f in configured_database.current_favorites()] == [(3, "netease")]
        plays = configured_database.current_recent_plays()
        assert [(p.track.id, p.device_id) for p in plays] == [(7, "device-b")]

    def test_remote_playlists_are_stable(
        self, orchestrator, configured_database, memory_store, clock, make_snapshot, make_playlist
    ):
        """Test a sync after adopting remote playlists changes nothing"""
        remote = make_snapshot(
            device_id="device-b",
            playlists=[make_playlist(5, "From Tablet", [7, 8]), make_playlist(6, "Empty")],
        )
        memory_store.seed("backup.json", codec.encode(remote, False))
        orchestrator.sync()
        clock.advance()

        result = orchestrator.sync()

        assert result.status is SyncStatus.NO_CHANGE
        assert result.report == MergeReport()
        assert [p.id for p in configured_database.current_playlists()] == [5, 6]

    def test_same_name_playlists_stay_separate(
        self, orchestrator, configured_database, memory_store, clock, make_snapshot, make_playlist, make_track
    ):
        """Test a remote playlist never overwrites a local one that shares its name"""
        local = configured_database.create_playlist("Mix", [make_track(1)])
        other_id = BASE_TIME + 999
        remote = make_snapshot(device_id="device-b", playlists=[make_playlist(other_id, "Mix", [2])])
        memory_store.seed("backup.json", codec.encode(remote, False))

        first = orchestrator.sync()

        assert first.status is SyncStatus.UPLOADED
        playlists = configured_database.current_playlists()
        assert [(p.id, p.name, p.track_ids) for p in playlists] == [
            (local.id, "Mix", [1]),
            (other_id, "Mix", [2]),
        ]

        clock.advance()
        second = orchestrator.sync()

        assert second.status is SyncStatus.NO_CHANGE
        assert second.report == MergeReport()
        uploaded = {p.id: p.song_ids for p in _remote_snapshot(memory_store).playlists}
        assert uploaded == {local.id: [1], other_id: [2]}

    def test_first_sync_adopts_remote_song_list(
        self, orchestrator, configured_database, memory_store, clock, make_snapshot, make_playlist, make_track
    ):
        """Test a first sync takes the remote song list"""
        local = configured_database.create_playlist("Mix", [make_track(1)])
        remote = make_snapshot(
            device_id="device-b",
            playlists=[make_playlist(local.id, "Mix", [2, 3], modified_at=BASE_TIME - 5000)],
        )
        memory_store.seed("backup.json", codec.encode(remote, False))

        orchestrator.sync()

        assert configured_database.get_playlist(local.id).track_ids == [2, 3]
        clock.advance()
        assert orchestrator.sync().status is SyncStatus.NO_CHANGE
        assert _remote_snapshot(memory_store).playlists[0].song_ids == [2, 3]

    def test_edit_during_sync_is_kept(self, configured_database, memory_store, clock, make_snapshot, make_playlist, make_track):
        """Test a local edit made while syncing survives"""
        local = configured_database.create_playlist("Mix", [make_track(1)])
        remote = make_snapshot(
            device_id="device-b",
            playlists=[make_playlist(local.id, "Mix", [2, 3], modified_at=BASE_TIME - 5000)],
        )
        memory_store.seed("backup.json", codec.encode(remote, False))
        orchestrator = _orchestrator(configured_database, memory_store, clock)
        build = orchestrator.builder.build

        def build_then_edit():
            snapshot = build()
            clock.advance()
            configured_database.add_track_to_playlist(local.id, make_track(4))
            return snapshot

        orchestrator.builder.build = build_then_edit
        orchestrator.sync()

        assert configured_database.get_playlist(local.id).track_ids == [1, 4]

    def test_remote_tombstone_removes_local_playlist(
        self, orchestrator, configured_database, memory_store, make_snapshot, make_playlist
    ):
        """Test a remote deletion removes the local playlist"""
        doomed = configured_database.create_playlist("Doomed")
        remote = make_snapshot(
            device_id="device-b",
            playlists=[make_playlist(doomed.id, is_deleted=True, modified_at=BASE_TIME + 10)],
        )
        memory_store.seed("backup.json", codec.encode(remote, False))

        result = orchestrator.sync()

        assert result.report.playlists_deleted == 1
        assert configured_database.get_playlist(doomed.id) is None
        assert _remote_snapshot(memory_store).playlists == ()

    def test_migrates_from_alternate_path(
        self, orchestrator, configured_database, memory_store, make_snapshot, make_playlist
    ):
        """Test data found in the other format is migrated"""
        remote = make_snapshot(device_id="device-b", playlists=[make_playlist(5, "Saved")])
        memory_store.seed("backup.bin", codec.encode(remote, True))

        result = orchestrator.sync()

        assert result.status is SyncStatus.UPLOADED
        assert memory_store.puts == [("backup.json", None)]
        assert [p.id for p in _remote_snapshot(memory_store).playlists] == [5]
        assert configured_database.get_playlist(5) is not None

    def test_migration_writes_even_when_unchanged(
        self, orchestrator, configured_database, memory_store, make_snapshot
    ):
        """Test migration writes the new format even without changes"""
        remote = make_snapshot(device_id="device-b")
        version = memory_store.seed("backup.bin", codec.encode(remote, True))
        configured_database.save_remote_version("backup.bin", version)

        result = orchestrator.sync()

        assert result.status is SyncStatus.UPLOADED
        assert "backup.json" in memory_store.files


class TestConcurrentWrites:
    """Stale version tokens"""

    def test_conflict_is_merged_again(
        self, orchestrator, configured_database, memory_store, make_snapshot, make_playlist, make_track
    ):
        """Test a concurrent write triggers a second merge"""
        configured_database.create_playlist("Mine", [make_track(1)])
        memory_store.seed("backup.json", codec.encode(make_snapshot(device_id="device-b"), False))
        other = make_snapshot(device_id="device-c", playlists=[make_playlist(9, "Theirs", [4])])
        memory_store.before_put = lambda store: store.seed("backup.json", codec.encode(other, False))

        result = orchestrator.sync()

        assert result.status is SyncStatus.UPLOADED
        assert len(memory_store.puts) == 2
        names = {p.name for p in _remote_snapshot(memory_store).playlists}
        assert names == {"Mine", "Theirs"}
        assert configured_database.get_playlist(9) is not None

    def test_conflict_retries_exhausted(self, configured_database, memory_store, clock, make_snapshot):
        """Test a conflict without retries left fails"""
        memory_store.seed("backup.json", codec.encode(make_snapshot(device_id="device-b"), False))
        memory_store.before_put = lambda store: store.seed("backup.json", b"{}")
        orchestrator = _orchestrator(configured_database, memory_store, clock, conflict_retries=0)

        result = orchestrator.sync()

        assert result.status is SyncStatus.FAILED
        assert isinstance(result.error, RemoteConflictError)
        assert result.should_retry is True
        assert result.remote_path == "backup.json"


class TestFailures:
    """Errors are reported, never raised"""

    def test_credential_expired(self, orchestrator, configured_database, memory_store):
        """Test an expired token is forgotten"""
        memory_store.errors = [CredentialExpiredError("Bad credentials", status_code=401)]

        result = orchestrator.sync()

        assert result.status is SyncStatus.NEEDS_REAUTH
        assert result.succeeded is False
        assert result.should_retry is False
        assert configured_database.get_token() is None
        assert configured_database.get_remote_location() == "octocat/music-backup"

    def test_remote_unavailable_is_retryable(self, orchestrator, memory_store):
        """Test network failures can be retried"""
        memory_store.errors = [RemoteUnavailableError("Connection reset")]

        result = orchestrator.sync()

        assert result.status is SyncStatus.FAILED
        assert result.should_retry is True

    def test_undecodable_remote_leaves_local_untouched(
        self, orchestrator, configured_database, memory_store, make_track
    ):
        """Test a corrupt remote snapshot changes nothing locally"""
        playlist = configured_database.create_playlist("Safe", [make_track(1)])
        memory_store.seed("backup.json", b"{not json")

        result = orchestrator.sync()

        assert result.status is SyncStatus.FAILED
        assert isinstance(result.error, DecodeError)
        assert result.should_retry is False
        assert memory_store.puts == []
        assert configured_database.get_remote_version("backup.json") is None
        assert configured_database.get_playlist(playlist.id).track_ids == [1]

    def test_local_write_failure_is_reported(
        self, orchestrator, configured_database, memory_store, monkeypatch, make_snapshot, make_playlist, make_favorite
    ):
        """Test a failing local write fails the sync and rolls back"""
        remote = make_snapshot(
            device_id="device-b",
            playlists=[make_playlist(5, "From Tablet", [7])],
            favorites=[make_favorite(3)],
        )
        memory_store.seed("backup.json", codec.encode(remote, False))

        def locked(conn, favorite):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(configured_database, "_upsert_favorite", locked)

        result = orchestrator.sync()

        assert result.status is SyncStatus.FAILED
        assert isinstance(result.error, DatabaseError)
        assert result.should_retry is False
        assert memory_store.puts == []
        assert configured_database.current_playlists() == []
        assert configured_database.get_remote_version("backup.json") is None

    def test_upload_failure_keeps_tombstones(self, orchestrator, configured_database, memory_store):
        """Test pending deletions survive a failed upload"""
        playlist = configured_database.create_playlist("Gone")
        configured_database.delete_playlist(playlist.id)
        def time_out(store):
            raise RemoteUnavailableError("Timeout")

        memory_store.before_put = time_out

        result = orchestrator.sync()

        assert result.status is SyncStatus.FAILED
        assert [pid for pid, _ in configured_database.pending_tombstones()] == [playlist.id]


class TestTwoDevices:
    """Two databases sharing one remote"""

    def _device(self, root: Path, name: str, clock: FakeClock) -> Database:
        (root / name).mkdir()
        database = Database(root / name / "library.db", clock=clock)
        database.save_credentials("ghp_test", "octocat/music-backup")
        return database

    def test_edits_travel_both_ways(self, temp_dir, make_track):
        """Test edits from two devices end up on both"""
        store = MemoryStore()
        clock_a = FakeClock(BASE_TIME)
        clock_b = FakeClock(BASE_TIME + 10_000)
        phone = self._device(temp_dir, "phone", clock_a)
        tablet = self._device(temp_dir, "tablet", clock_b)
        try:
            playlist = phone.create_playlist("Road Trip", [make_track(1)])
            assert _orchestrator(phone, store, clock_a).sync().status is SyncStatus.INITIAL_UPLOAD

            assert _orchestrator(tablet, store, clock_b).sync().status is SyncStatus.UPLOADED
            assert tablet.get_playlist(playlist.id).track_ids == [1]

            clock_b.advance()
            tablet.add_track_to_playlist(playlist.id, make_track(2))
            tablet.rename_playlist(playlist.id, "Road Trip 2")
            assert _orchestrator(tablet, store, clock_b).sync().status is SyncStatus.UPLOADED

            clock_a.advance()
            result = _orchestrator(phone, store, clock_a).sync()

            assert result.status is SyncStatus.UPLOADED
            synced = phone.get_playlist(playlist.id)
            assert synced.name == "Road Trip 2"
            assert synced.track_ids == [1, 2]

            clock_a.advance()
            assert _orchestrator(phone, store, clock_a).sync().status is SyncStatus.NO_CHANGE
        finally:
            phone.close()
            tablet.close()
