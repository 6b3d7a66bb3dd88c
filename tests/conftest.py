"""Test configuration and fixtures"""

import tempfile
from pathlib import Path

import pytest

from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import RemoteConflictError
from playlist_sync.library.covers import CoverUrlMapper
from playlist_sync.library.models import FavoriteCollection, LocalPlaylist, PlayedEntry, Track
from playlist_sync.remote.base import RemoteFile
from playlist_sync.sync.builder import LocalSnapshotBuilder
from playlist_sync.sync.models import (
    FavoritePlaylist,
    OperationLogEntry,
    Playlist,
    RecentPlay,
    Snapshot,
    Song,
    SyncAction,
)


BASE_TIME = 1_700_000_000_000


class FakeClock:
    """Epoch-ms clock that only moves when told to"""

    def __init__(self, now: int = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000) -> int:
        self.now += ms
        return self.now


class MemoryStore:
    """
    In-memory RemoteStore with GitHub-like version token semantics.

    errors: exceptions raised (in order) by the next fetch/put calls
    before_put: hook run before a put is checked, to simulate another
                device writing in between
    """

    def __init__(self) -> None:
        self.files: dict[str, RemoteFile] = {}
        self.fetches: list[str] = []
        self.puts: list[tuple[str, str | None]] = []
        self.errors: list[Exception] = []
        self.before_put = None
        self._counter = 0

    def _next_version(self) -> str:
        self._counter += 1
        return f"sha-{self._counter}"

    def seed(self, path: str, content: bytes) -> str:
        version = self._next_version()
        self.files[path] = RemoteFile(content=content, version=version)
        return version

    def fetch(self, path: str) -> RemoteFile | None:
        self.fetches.append(path)
        if self.errors:
            raise self.errors.pop(0)
        return self.files.get(path)

    def put(self, path: str, content: bytes, previous_version: str | None = None) -> str:
        self.puts.append((path, previous_version))
        if self.errors:
            raise self.errors.pop(0)
        if self.before_put is not None:
            hook, self.before_put = self.before_put, None
            hook(self)

        current = self.files.get(path)
        current_version = current.version if current else None
        if previous_version != current_version:
            raise RemoteConflictError(
                f"Stale version for {path}",
                details={"path": path},
                status_code=409
            )
        return self.seed(path, content)


# =============================================================================
# Entity factories
# =============================================================================

def _track(track_id: int, **overrides) -> Track:
    fields = {
        "id": track_id,
        "name": f"Song {track_id}",
        "artist": f"Artist {track_id % 7}",
        "album": f"Album {track_id % 5}",
        "album_id": 9000 + track_id % 5,
        "duration_ms": 180_000 + track_id,
        "cover_url": f"https://img.example.com/{track_id}.jpg",
    }
    fields.update(overrides)
    return Track(**fields)


def _song(song_id: int, **overrides) -> Song:
    return Song.from_track(_track(song_id, **overrides))


def _playlist(
    playlist_id: int,
    name: str | None = None,
    song_ids: tuple[int, ...] | list[int] = (),
    modified_at: int = BASE_TIME,
    created_at: int = BASE_TIME,
    is_deleted: bool = False
) -> Playlist:
    return Playlist(
        id=playlist_id,
        name=name if name is not None else f"Playlist {playlist_id}",
        songs=tuple(_song(song_id) for song_id in song_ids),
        created_at=created_at,
        modified_at=modified_at,
        is_deleted=is_deleted,
    )


def _favorite(favorite_id: int, source: str = "netease", added_time: int = BASE_TIME, name: str | None = None) -> FavoritePlaylist:
    return FavoritePlaylist(
        id=favorite_id,
        name=name or f"Favorite {favorite_id}",
        cover_url=None,
        track_count=2,
        source=source,
        songs=(_song(favorite_id * 10), _song(favorite_id * 10 + 1)),
        added_time=added_time,
    )


def _play(song_id: int, played_at: int, device_id: str = "device-a") -> RecentPlay:
    return RecentPlay(song_id=song_id, song=_song(song_id), played_at=played_at, device_id=device_id)


def _log_entry(timestamp: int, action: SyncAction = SyncAction.ADD_SONG, device_id: str = "device-a") -> OperationLogEntry:
    return OperationLogEntry(timestamp=timestamp, device_id=device_id, action=action, playlist_id=1)


def _snapshot(
    device_id: str = "device-a",
    playlists=(),
    favorites=(),
    plays=(),
    log=(),
    last_modified: int = BASE_TIME
) -> Snapshot:
    return Snapshot(
        device_id=device_id,
        device_name=f"Phone {device_id}",
        last_modified=last_modified,
        playlists=tuple(playlists),
        favorite_playlists=tuple(favorites),
        recent_plays=tuple(plays),
        operation_log=tuple(log),
    )


@pytest.fixture
def make_track():
    return _track


@pytest.fixture
def make_song():
    return _song


@pytest.fixture
def make_playlist():
    return _playlist


@pytest.fixture
def make_favorite():
    return _favorite


@pytest.fixture
def make_play():
    return _play


@pytest.fixture
def make_log_entry():
    return _log_entry


@pytest.fixture
def make_snapshot():
    return _snapshot


@pytest.fixture
def make_local_playlist():
    def factory(playlist_id: int, name: str, track_ids=(), modified_at: int = BASE_TIME, created_at: int = BASE_TIME):
        return LocalPlaylist(
            id=playlist_id,
            name=name,
            tracks=tuple(_track(track_id) for track_id in track_ids),
            created_at=created_at,
            modified_at=modified_at,
        )
    return factory


@pytest.fixture
def make_favorite_collection():
    def factory(favorite_id: int, source: str = "netease", added_time: int = BASE_TIME, cover_url: str | None = None):
        return FavoriteCollection(
            id=favorite_id,
            source=source,
            name=f"Favorite {favorite_id}",
            cover_url=cover_url,
            track_count=1,
            tracks=(_track(favorite_id * 10),),
            added_time=added_time,
        )
    return factory


@pytest.fixture
def make_played_entry():
    def factory(track_id: int, played_at: int, device_id: str | None = None):
        return PlayedEntry(track=_track(track_id), played_at=played_at, device_id=device_id)
    return factory


# =============================================================================
# Infrastructure
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(temp_dir, clock):
    """Fresh SQLite library driven by the fake clock"""
    db = Database(temp_dir / "library.db", clock=clock)
    yield db
    db.close()


@pytest.fixture
def configured_database(database):
    database.save_credentials("ghp_test", "octocat/music-backup")
    return database


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def builder(database, clock):
    return LocalSnapshotBuilder(database, database, CoverUrlMapper(), "Test Phone", clock=clock)
