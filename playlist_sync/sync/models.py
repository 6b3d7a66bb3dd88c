"""
Snapshot model: everything that travels between devices.

A Snapshot is a disposable projection of one device's library at one
instant. It is built fresh on every sync, merged with the snapshot found on
the remote, written back to local storage and/or uploaded, then discarded.
The authoritative data always lives in the local library
(playlist_sync.library.models).

Design Decisions:
    - All dataclasses are frozen; ordered collections are tuples
    - Timestamps are epoch milliseconds
    - to_dict()/from_dict() use the camelCase wire names shared with
      other clients ("deviceId", "favoritePlaylists", "syncLog", ...)
    - from_dict() is strict. A missing required key, an unknown key, a
      value of the wrong type or a snapshot from a newer major schema
      version raises DecodeError naming the field. Optional keys that
      are absent take their defaults (other clients omit null values).

Identity Keys:
    Playlist          id (unique within a snapshot)
    FavoritePlaylist  (id, source)
    RecentPlay        (songId, playedAt); at most 500, newest first
    OperationLogEntry timestamp; at most 100, newest first
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from playlist_sync.core.exceptions import DecodeError
from playlist_sync.library.models import (
    FavoriteCollection,
    LocalPlaylist,
    LoggedOperation,
    PlayedEntry,
    Track,
)


SCHEMA_VERSION = "2.0"
SCHEMA_MAJOR = 2

MAX_RECENT_PLAYS = 500
MAX_OPERATION_LOG = 100


# =============================================================================
# Strict field readers
# =============================================================================

def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _matches(value: Any, expected: type | tuple[type, ...]) -> bool:
    # bool is an int subclass; a JSON true is never a valid integer
    if isinstance(value, bool) and expected is not bool:
        return False
    return isinstance(value, expected)


def _check_keys(data: Any, entity: str, allowed: frozenset[str]) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise DecodeError(
            f"{entity} must be an object, got {type(data).__name__}",
            details={"field": entity}
        )
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise DecodeError(
            f"Unknown field '{unknown[0]}' in {entity}",
            details={"field": f"{entity}.{unknown[0]}", "unknown": unknown}
        )
    return data


def _required(data: dict[str, Any], entity: str, key: str, expected: type | tuple[type, ...]) -> Any:
    if key not in data:
        raise DecodeError(
            f"Missing required field '{key}' in {entity}",
            details={"field": f"{entity}.{key}"}
        )
    value = data[key]
    if not _matches(value, expected):
        raise DecodeError(
            f"Field '{key}' in {entity} must be {_type_name(expected)}, got {type(value).__name__}",
            details={"field": f"{entity}.{key}"}
        )
    return value


def _optional(
    data: dict[str, Any],
    entity: str,
    key: str,
    expected: type | tuple[type, ...],
    default: Any = None
) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not _matches(value, expected):
        raise DecodeError(
            f"Field '{key}' in {entity} must be {_type_name(expected)}, got {type(value).__name__}",
            details={"field": f"{entity}.{key}"}
        )
    return value


def _list(data: dict[str, Any], entity: str, key: str, required: bool = False) -> list[Any]:
    if required:
        return _required(data, entity, key, list)
    return _optional(data, entity, key, list, default=[])


def _put_optional(target: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


# =============================================================================
# Entities
# =============================================================================

@dataclass(frozen=True)
class Song:
    """
    Sync projection of a track.

    cover_url, custom_cover_url and original_cover_url must be network
    references; the snapshot builder rewrites device-local paths before
    a Song is created (see playlist_sync.library.covers).
    """

    id: int
    name: str
    artist: str
    album: str
    album_id: int
    duration_ms: int
    cover_url: str | None = None
    added_at: int = 0
    matched_lyric: str | None = None
    matched_translated_lyric: str | None = None
    matched_lyric_source: str | None = None
    matched_song_id: str | None = None
    user_lyric_offset_ms: int = 0
    custom_cover_url: str | None = None
    custom_name: str | None = None
    custom_artist: str | None = None
    original_name: str | None = None
    original_artist: str | None = None
    original_cover_url: str | None = None
    original_lyric: str | None = None
    original_translated_lyric: str | None = None

    _OPTIONAL_STRINGS = (
        ("coverUrl", "cover_url"),
        ("matchedLyric", "matched_lyric"),
        ("matchedTranslatedLyric", "matched_translated_lyric"),
        ("matchedLyricSource", "matched_lyric_source"),
        ("matchedSongId", "matched_song_id"),
        ("customCoverUrl", "custom_cover_url"),
        ("customName", "custom_name"),
        ("customArtist", "custom_artist"),
        ("originalName", "original_name"),
        ("originalArtist", "original_artist"),
        ("originalCoverUrl", "original_cover_url"),
        ("originalLyric", "original_lyric"),
        ("originalTranslatedLyric", "original_translated_lyric"),
    )
    _KEYS = frozenset(
        {"id", "name", "artist", "album", "albumId", "durationMs", "addedAt", "userLyricOffsetMs"}
        | {wire for wire, _ in _OPTIONAL_STRINGS}
    )

    @classmethod
    def from_track(cls, track: Track, added_at: int = 0) -> "Song":
        return cls(
            id=track.id,
            name=track.name,
            artist=track.artist,
            album=track.album,
            album_id=track.album_id,
            duration_ms=track.duration_ms,
            cover_url=track.cover_url,
            added_at=added_at,
            matched_lyric=track.matched_lyric,
            matched_translated_lyric=track.matched_translated_lyric,
            matched_lyric_source=track.matched_lyric_source,
            matched_song_id=track.matched_song_id,
            user_lyric_offset_ms=track.user_lyric_offset_ms,
            custom_cover_url=track.custom_cover_url,
            custom_name=track.custom_name,
            custom_artist=track.custom_artist,
            original_name=track.original_name,
            original_artist=track.original_artist,
            original_cover_url=track.original_cover_url,
            original_lyric=track.original_lyric,
            original_translated_lyric=track.original_translated_lyric,
        )

    def to_track(self) -> Track:
        return Track(
            id=self.id,
            name=self.name,
            artist=self.artist,
            album=self.album,
            album_id=self.album_id,
            duration_ms=self.duration_ms,
            cover_url=self.cover_url,
            matched_lyric=self.matched_lyric,
            matched_translated_lyric=self.matched_translated_lyric,
            matched_lyric_source=self.matched_lyric_source,
            matched_song_id=self.matched_song_id,
            user_lyric_offset_ms=self.user_lyric_offset_ms,
            custom_cover_url=self.custom_cover_url,
            custom_name=self.custom_name,
            custom_artist=self.custom_artist,
            original_name=self.original_name,
            original_artist=self.original_artist,
            original_cover_url=self.original_cover_url,
            original_lyric=self.original_lyric,
            original_translated_lyric=self.original_translated_lyric,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "artist": self.artist,
            "album": self.album,
            "albumId": self.album_id,
            "durationMs": self.duration_ms,
            "addedAt": self.added_at,
            "userLyricOffsetMs": self.user_lyric_offset_ms,
        }
        for wire, attr in self._OPTIONAL_STRINGS:
            _put_optional(data, wire, getattr(self, attr))
        return data

    @classmethod
    def from_dict(cls, data: Any, entity: str = "song") -> "Song":
        data = _check_keys(data, entity, cls._KEYS)
        optional = {
            attr: _optional(data, entity, wire, str)
            for wire, attr in cls._OPTIONAL_STRINGS
        }
        return cls(
            id=_required(data, entity, "id", int),
            name=_required(data, entity, "name", str),
            artist=_required(data, entity, "artist", str),
            album=_required(data, entity, "album", str),
            album_id=_required(data, entity, "albumId", int),
            duration_ms=_required(data, entity, "durationMs", int),
            added_at=_optional(data, entity, "addedAt", int, default=0),
            user_lyric_offset_ms=_optional(data, entity, "userLyricOffsetMs", int, default=0),
            **optional,
        )


def _songs_from_dicts(items: list[Any], entity: str) -> tuple[Song, ...]:
    return tuple(Song.from_dict(item, f"{entity}[{i}]") for i, item in enumerate(items))


@dataclass(frozen=True)
class Playlist:
    """
    Sync projection of a playlist.

    A tombstone (is_deleted=True) records a deletion so it reaches devices
    that still have the playlist. Tombstones carry no name or songs.
    """

    id: int
    name: str
    songs: tuple[Song, ...]
    created_at: int
    modified_at: int
    is_deleted: bool = False

    _KEYS = frozenset({"id", "name", "songs", "createdAt", "modifiedAt", "isDeleted"})

    @property
    def song_ids(self) -> list[int]:
        return [song.id for song in self.songs]

    @classmethod
    def tombstone(cls, playlist_id: int, deleted_at: int) -> "Playlist":
        return cls(
            id=playlist_id,
            name="",
            songs=(),
            created_at=0,
            modified_at=deleted_at,
            is_deleted=True,
        )

    @classmethod
    def from_local(cls, playlist: LocalPlaylist) -> "Playlist":
        return cls(
            id=playlist.id,
            name=playlist.name,
            songs=tuple(Song.from_track(track) for track in playlist.tracks),
            created_at=playlist.created_at,
            modified_at=playlist.modified_at,
        )

    def to_local(self) -> LocalPlaylist:
        return LocalPlaylist(
            id=self.id,
            name=self.name,
            tracks=tuple(song.to_track() for song in self.songs),
            created_at=self.created_at,
            modified_at=self.modified_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "songs": [song.to_dict() for song in self.songs],
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "isDeleted": self.is_deleted,
        }

    @classmethod
    def from_dict(cls, data: Any, entity: str = "playlist") -> "Playlist":
        data = _check_keys(data, entity, cls._KEYS)
        return cls(
            id=_required(data, entity, "id", int),
            name=_required(data, entity, "name", str),
            songs=_songs_from_dicts(_list(data, entity, "songs", required=True), f"{entity}.songs"),
            created_at=_required(data, entity, "createdAt", int),
            modified_at=_required(data, entity, "modifiedAt", int),
            is_deleted=_optional(data, entity, "isDeleted", bool, default=False),
        )


@dataclass(frozen=True)
class FavoritePlaylist:
    """A favorited remote collection. Identity key is (id, source)."""

    id: int
    name: str
    cover_url: str | None
    track_count: int
    source: str
    songs: tuple[Song, ...]
    added_time: int

    _KEYS = frozenset({"id", "name", "coverUrl", "trackCount", "source", "songs", "addedTime"})

    @property
    def key(self) -> tuple[int, str]:
        return (self.id, self.source)

    @classmethod
    def from_local(cls, favorite: FavoriteCollection) -> "FavoritePlaylist":
        return cls(
            id=favorite.id,
            name=favorite.name,
            cover_url=favorite.cover_url,
            track_count=favorite.track_count,
            source=favorite.source,
            songs=tuple(Song.from_track(track) for track in favorite.tracks),
            added_time=favorite.added_time,
        )

    def to_local(self) -> FavoriteCollection:
        return FavoriteCollection(
            id=self.id,
            source=self.source,
            name=self.name,
            cover_url=self.cover_url,
            track_count=self.track_count,
            tracks=tuple(song.to_track() for song in self.songs),
            added_time=self.added_time,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "trackCount": self.track_count,
            "source": self.source,
            "songs": [song.to_dict() for song in self.songs],
            "addedTime": self.added_time,
        }
        _put_optional(data, "coverUrl", self.cover_url)
        return data

    @classmethod
    def from_dict(cls, data: Any, entity: str = "favoritePlaylist") -> "FavoritePlaylist":
        data = _check_keys(data, entity, cls._KEYS)
        return cls(
            id=_required(data, entity, "id", int),
            name=_required(data, entity, "name", str),
            cover_url=_optional(data, entity, "coverUrl", str),
            track_count=_required(data, entity, "trackCount", int),
            source=_required(data, entity, "source", str),
            songs=_songs_from_dicts(_list(data, entity, "songs"), f"{entity}.songs"),
            added_time=_required(data, entity, "addedTime", int),
        )


@dataclass(frozen=True)
class RecentPlay:
    """One play, denormalized. Identity key is (song_id, played_at)."""

    song_id: int
    song: Song
    played_at: int
    device_id: str

    _KEYS = frozenset({"songId", "song", "playedAt", "deviceId"})

    @property
    def key(self) -> tuple[int, int]:
        return (self.song_id, self.played_at)

    @classmethod
    def from_local(cls, entry: PlayedEntry, device_id: str) -> "RecentPlay":
        """Plays recorded here are tagged with device_id; restored ones keep theirs."""
        return cls(
            song_id=entry.track.id,
            song=Song.from_track(entry.track),
            played_at=entry.played_at,
            device_id=entry.device_id or device_id,
        )

    def to_local(self) -> PlayedEntry:
        return PlayedEntry(track=self.song.to_track(), played_at=self.played_at, device_id=self.device_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "songId": self.song_id,
            "song": self.song.to_dict(),
            "playedAt": self.played_at,
            "deviceId": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Any, entity: str = "recentPlay") -> "RecentPlay":
        data = _check_keys(data, entity, cls._KEYS)
        return cls(
            song_id=_required(data, entity, "songId", int),
            song=Song.from_dict(_required(data, entity, "song", dict), f"{entity}.song"),
            played_at=_required(data, entity, "playedAt", int),
            device_id=_required(data, entity, "deviceId", str),
        )


class SyncAction(Enum):
    """Kinds of local mutation recorded in the operation log."""
    CREATE_PLAYLIST = "CREATE_PLAYLIST"
    DELETE_PLAYLIST = "DELETE_PLAYLIST"
    RENAME_PLAYLIST = "RENAME_PLAYLIST"
    ADD_SONG = "ADD_SONG"
    REMOVE_SONG = "REMOVE_SONG"
    REORDER_SONGS = "REORDER_SONGS"
    PLAY_SONG = "PLAY_SONG"


@dataclass(frozen=True)
class OperationLogEntry:
    """One advisory operation log entry. Never used to drive a merge."""

    timestamp: int
    device_id: str
    action: SyncAction
    playlist_id: int | None = None
    song_id: int | None = None
    details: str | None = None

    _KEYS = frozenset({"timestamp", "deviceId", "action", "playlistId", "songId", "details"})

    @classmethod
    def from_local(cls, operation: LoggedOperation, device_id: str) -> "OperationLogEntry":
        return cls(
            timestamp=operation.timestamp,
            device_id=device_id,
            action=SyncAction(operation.action),
            playlist_id=operation.playlist_id,
            song_id=operation.song_id,
            details=operation.details,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "deviceId": self.device_id,
            "action": self.action.value,
        }
        _put_optional(data, "playlistId", self.playlist_id)
        _put_optional(data, "songId", self.song_id)
        _put_optional(data, "details", self.details)
        return data

    @classmethod
    def from_dict(cls, data: Any, entity: str = "syncLog") -> "OperationLogEntry":
        data = _check_keys(data, entity, cls._KEYS)
        raw_action = _required(data, entity, "action", str)
        try:
            action = SyncAction(raw_action)
        except ValueError as e:
            raise DecodeError(
                f"Unknown action '{raw_action}' in {entity}",
                details={"field": f"{entity}.action", "value": raw_action}
            ) from e
        return cls(
            timestamp=_required(data, entity, "timestamp", int),
            device_id=_required(data, entity, "deviceId", str),
            action=action,
            playlist_id=_optional(data, entity, "playlistId", int),
            song_id=_optional(data, entity, "songId", int),
            details=_optional(data, entity, "details", str),
        )


@dataclass(frozen=True)
class Snapshot:
    """
    A complete, self-contained view of one device's syncable state.

    Attributes:
        device_id: Stable id of the installation that built the snapshot.
        device_name: Human-readable device name.
        last_modified: Build time (epoch ms).
        playlists: Playlists, tombstones included.
        favorite_playlists: Favorited collections.
        recent_plays: Play history, newest first, at most 500.
        operation_log: Advisory log, newest first, at most 100.
        version: Schema version string ("major.minor").
    """

    device_id: str
    device_name: str
    last_modified: int
    playlists: tuple[Playlist, ...] = ()
    favorite_playlists: tuple[FavoritePlaylist, ...] = ()
    recent_plays: tuple[RecentPlay, ...] = ()
    operation_log: tuple[OperationLogEntry, ...] = ()
    version: str = SCHEMA_VERSION

    _KEYS = frozenset({
        "version", "deviceId", "deviceName", "lastModified",
        "playlists", "favoritePlaylists", "recentPlays", "syncLog",
    })

    @property
    def live_playlists(self) -> tuple[Playlist, ...]:
        return tuple(p for p in self.playlists if not p.is_deleted)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "lastModified": self.last_modified,
            "playlists": [p.to_dict() for p in self.playlists],
            "favoritePlaylists": [f.to_dict() for f in self.favorite_playlists],
            "recentPlays": [r.to_dict() for r in self.recent_plays],
            "syncLog": [e.to_dict() for e in self.operation_log],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        """
        Build a Snapshot from its wire dict.

        Raises:
            DecodeError: On any structural problem, a duplicate playlist id,
                         or a major schema version newer than SCHEMA_MAJOR.
        """
        entity = "snapshot"
        data = _check_keys(data, entity, cls._KEYS)

        version = _required(data, entity, "version", str)
        check_schema_version(version)

        playlists = tuple(
            Playlist.from_dict(item, f"playlists[{i}]")
            for i, item in enumerate(_list(data, entity, "playlists"))
        )
        seen: set[int] = set()
        for playlist in playlists:
            if playlist.id in seen:
                raise DecodeError(
                    f"Duplicate playlist id {playlist.id} in snapshot",
                    details={"field": "playlists", "playlist_id": playlist.id}
                )
            seen.add(playlist.id)

        return cls(
            version=version,
            device_id=_required(data, entity, "deviceId", str),
            device_name=_required(data, entity, "deviceName", str),
            last_modified=_optional(data, entity, "lastModified", int, default=0),
            playlists=playlists,
            favorite_playlists=tuple(
                FavoritePlaylist.from_dict(item, f"favoritePlaylists[{i}]")
                for i, item in enumerate(_list(data, entity, "favoritePlaylists"))
            ),
            recent_plays=tuple(
                RecentPlay.from_dict(item, f"recentPlays[{i}]")
                for i, item in enumerate(_list(data, entity, "recentPlays"))
            ),
            operation_log=tuple(
                OperationLogEntry.from_dict(item, f"syncLog[{i}]")
                for i, item in enumerate(_list(data, entity, "syncLog"))
            ),
        )


def check_schema_version(version: str) -> None:
    """Raise DecodeError unless version is "major[.minor]" with a supported major."""
    major_text = version.split(".", 1)[0]
    if not major_text.isdigit():
        raise DecodeError(
            f"Malformed schema version '{version}'",
            details={"field": "snapshot.version", "value": version}
        )
    if int(major_text) > SCHEMA_MAJOR:
        raise DecodeError(
            f"Snapshot schema version {version} is newer than supported ({SCHEMA_VERSION})",
            details={"field": "snapshot.version", "value": version, "supported": SCHEMA_VERSION}
        )


# =============================================================================
# Merge report
# =============================================================================

class ConflictType(Enum):
    PLAYLIST_RENAMED_BOTH_SIDES = "PLAYLIST_RENAMED_BOTH_SIDES"
    SONG_ADDED_REMOVED_CONFLICT = "SONG_ADDED_REMOVED_CONFLICT"
    PLAYLIST_DELETED_MODIFIED_CONFLICT = "PLAYLIST_DELETED_MODIFIED_CONFLICT"


class ConflictResolution(Enum):
    AUTO_MERGED = "AUTO_MERGED"
    LOCAL_WINS = "LOCAL_WINS"
    REMOTE_WINS = "REMOTE_WINS"
    MANUAL_REQUIRED = "MANUAL_REQUIRED"


@dataclass(frozen=True)
class Conflict:
    """A disagreement the merge resolved. Informational only."""

    type: ConflictType
    playlist_id: int
    playlist_name: str
    description: str
    resolution: ConflictResolution


@dataclass(frozen=True)
class MergeReport:
    """
    Counts and conflicts produced by one merge.

    deleted_playlist_ids lists the playlists the merge dropped because one
    side carried a tombstone; they must be removed from local storage.
    """

    playlists_added: int = 0
    playlists_updated: int = 0
    playlists_deleted: int = 0
    songs_added: int = 0
    songs_removed: int = 0
    conflicts: tuple[Conflict, ...] = ()
    deleted_playlist_ids: tuple[int, ...] = ()

    @property
    def is_empty(self) -> bool:
        """True when the merge counted nothing at all."""
        return (
            self.playlists_added == 0
            and self.playlists_updated == 0
            and self.playlists_deleted == 0
            and self.songs_added == 0
            and self.songs_removed == 0
            and not self.conflicts
        )

    def summary(self) -> str:
        return (
            f"playlists +{self.playlists_added} ~{self.playlists_updated} -{self.playlists_deleted}, "
            f"songs +{self.songs_added} -{self.songs_removed}, "
            f"conflicts {len(self.conflicts)}"
        )
