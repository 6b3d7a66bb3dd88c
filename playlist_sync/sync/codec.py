"""
Snapshot codec: bytes on the remote <-> Snapshot in memory.

Two wire formats are supported at the same time, because a blob written
while one setting was active must stay readable after the user switches:

    backup.json  UTF-8 JSON of Snapshot.to_dict() (verbose, self-describing)
    backup.bin   dense big-endian binary layout, gzip-compressed
                 ("data saver" mode)

The writer picks the format from the data_saver setting. The reader picks
it from the remote path suffix (is_binary_path), never by sniffing content.

Binary layout (before gzip), all integers big-endian:

    magic            4 bytes  b"PSYN"
    layout version   u8       1
    snapshot fields  in declaration order

    str        u32 byte length + UTF-8 bytes
    int        i64
    bool       u8 (0 or 1)
    optional   u8 presence flag (0 = None), then the value
    list       u32 count, then the items

Any failure while decoding (gzip, truncation, trailing bytes, bad UTF-8,
invalid JSON, structural problems) raises DecodeError.
"""

import gzip
import json
import struct
import zlib
from collections.abc import Callable
from typing import TypeVar

from playlist_sync.core.exceptions import CodecError, DecodeError
from playlist_sync.core.logger import get_logger
from playlist_sync.sync.models import (
    FavoritePlaylist,
    OperationLogEntry,
    Playlist,
    RecentPlay,
    Snapshot,
    Song,
    SyncAction,
    check_schema_version,
)

logger = get_logger(__name__)


JSON_FILE_NAME = "backup.json"
BINARY_FILE_NAME = "backup.bin"
BINARY_SUFFIX = ".bin"

MAGIC = b"PSYN"
LAYOUT_VERSION = 1

_U8 = struct.Struct(">B")
_U32 = struct.Struct(">I")
_I64 = struct.Struct(">q")

T = TypeVar("T")


# =============================================================================
# Public API
# =============================================================================

def file_name(data_saver: bool) -> str:
    """Remote file name for the selected format."""
    return BINARY_FILE_NAME if data_saver else JSON_FILE_NAME


def is_binary_path(path: str) -> bool:
    """True if the blob at path is in the binary format."""
    return path.endswith(BINARY_SUFFIX)


def encode(snapshot: Snapshot, binary: bool) -> bytes:
    """
    Serialize a snapshot.

    Args:
        snapshot: The snapshot to serialize.
        binary: True for the compact gzip-compressed binary format,
                False for UTF-8 JSON.

    Returns:
        The payload bytes.

    Raises:
        CodecError: If an integer does not fit in a signed 64-bit value
                    (binary format only).
    """
    if binary:
        writer = _BinaryWriter()
        writer.raw(MAGIC)
        writer.u8(LAYOUT_VERSION)
        _write_snapshot(writer, snapshot)
        return gzip.compress(writer.getvalue())

    return json.dumps(snapshot.to_dict(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode(payload: bytes, is_binary: bool) -> Snapshot:
    """
    Deserialize a snapshot.

    Args:
        payload: Raw bytes as fetched from the remote.
        is_binary: Format flag, normally is_binary_path(remote_path).

    Returns:
        The decoded Snapshot.

    Raises:
        DecodeError: If the payload is not a valid snapshot in that format.
    """
    if is_binary:
        return _decode_binary(payload)
    return _decode_json(payload)


def payload_size(snapshot: Snapshot, binary: bool) -> int:
    """Encoded size in bytes."""
    return len(encode(snapshot, binary))


def compression_ratio(snapshot: Snapshot) -> float:
    """
    Percentage of bytes the binary format saves over JSON.

    Example:
        compression_ratio(snapshot)  # 82.5 -> binary is 17.5% of the JSON size
    """
    json_size = payload_size(snapshot, binary=False)
    if json_size == 0:
        return 0.0
    binary_size = payload_size(snapshot, binary=True)
    return (1 - binary_size / json_size) * 100


# =============================================================================
# JSON
# =============================================================================

def _decode_json(payload: bytes) -> Snapshot:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(
            f"Snapshot is not valid UTF-8: {e}",
            details={"format": "json", "original_error": str(e)}
        ) from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(
            f"Snapshot is not valid JSON: {e}",
            details={"format": "json", "original_error": str(e)}
        ) from e

    return Snapshot.from_dict(data)


# =============================================================================
# Binary
# =============================================================================

class _BinaryWriter:
    def __init__(self) -> None:
        self._buffer = bytearray()

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    def raw(self, data: bytes) -> None:
        self._buffer += data

    def u8(self, value: int) -> None:
        self._buffer += _U8.pack(value)

    def count(self, value: int) -> None:
        self._buffer += _U32.pack(value)

    def int64(self, value: int) -> None:
        try:
            self._buffer += _I64.pack(value)
        except struct.error as e:
            raise CodecError(
                f"Integer {value} does not fit in 64 bits",
                details={"value": value}
            ) from e

    def boolean(self, value: bool) -> None:
        self.u8(1 if value else 0)

    def string(self, value: str) -> None:
        data = value.encode("utf-8")
        self.count(len(data))
        self._buffer += data

    def optional_string(self, value: str | None) -> None:
        self.boolean(value is not None)
        if value is not None:
            self.string(value)

    def optional_int64(self, value: int | None) -> None:
        self.boolean(value is not None)
        if value is not None:
            self.int64(value)


class _BinaryReader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def _take(self, size: int, what: str) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise DecodeError(
                f"Truncated binary snapshot while reading {what}",
                details={"format": "binary", "offset": self._offset, "needed": size}
            )
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def raw(self, size: int, what: str) -> bytes:
        return self._take(size, what)

    def u8(self, what: str) -> int:
        return _U8.unpack(self._take(_U8.size, what))[0]

    def count(self, what: str) -> int:
        return _U32.unpack(self._take(_U32.size, what))[0]

    def int64(self, what: str) -> int:
        return _I64.unpack(self._take(_I64.size, what))[0]

    def boolean(self, what: str) -> bool:
        value = self.u8(what)
        if value not in (0, 1):
            raise DecodeError(
                f"Invalid boolean byte {value} for {what}",
                details={"format": "binary", "field": what}
            )
        return value == 1

    def string(self, what: str) -> str:
        data = self._take(self.count(what), what)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(
                f"Invalid UTF-8 in {what}",
                details={"format": "binary", "field": what}
            ) from e

    def optional_string(self, what: str) -> str | None:
        return self.string(what) if self.boolean(what) else None

    def optional_int64(self, what: str) -> int | None:
        return self.int64(what) if self.boolean(what) else None

    def items(self, what: str, read_item: Callable[["_BinaryReader"], T]) -> tuple[T, ...]:
        return tuple(read_item(self) for _ in range(self.count(what)))

    def finish(self) -> None:
        remaining = len(self._data) - self._offset
        if remaining:
            raise DecodeError(
                f"{remaining} trailing bytes after binary snapshot",
                details={"format": "binary", "trailing": remaining}
            )


def _decode_binary(payload: bytes) -> Snapshot:
    try:
        data = gzip.decompress(payload)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(
            f"Binary snapshot is not valid gzip: {e}",
            details={"format": "binary", "original_error": str(e)}
        ) from e

    logger.debug(f"Binary snapshot: {len(payload)} bytes compressed, {len(data)} bytes raw")
    reader = _BinaryReader(data)
    magic = reader.raw(len(MAGIC), "magic")
    if magic != MAGIC:
        raise DecodeError(
            "Binary snapshot has a wrong magic number",
            details={"format": "binary", "magic": magic.hex()}
        )
    layout = reader.u8("layout version")
    if layout != LAYOUT_VERSION:
        raise DecodeError(
            f"Unsupported binary layout version {layout}",
            details={"format": "binary", "layout": layout, "supported": LAYOUT_VERSION}
        )

    snapshot = _read_snapshot(reader)
    reader.finish()
    return snapshot


def _write_song(writer: _BinaryWriter, song: Song) -> None:
    writer.int64(song.id)
    writer.string(song.name)
    writer.string(song.artist)
    writer.string(song.album)
    writer.int64(song.album_id)
    writer.int64(song.duration_ms)
    writer.optional_string(song.cover_url)
    writer.int64(song.added_at)
    writer.optional_string(song.matched_lyric)
    writer.optional_string(song.matched_translated_lyric)
    writer.optional_string(song.matched_lyric_source)
    writer.optional_string(song.matched_song_id)
    writer.int64(song.user_lyric_offset_ms)
    writer.optional_string(song.custom_cover_url)
    writer.optional_string(song.custom_name)
    writer.optional_string(song.custom_artist)
    writer.optional_string(song.original_name)
    writer.optional_string(song.original_artist)
    writer.optional_string(song.original_cover_url)
    writer.optional_string(song.original_lyric)
    writer.optional_string(song.original_translated_lyric)


def _read_song(reader: _BinaryReader) -> Song:
    return Song(
        id=reader.int64("song.id"),
        name=reader.string("song.name"),
        artist=reader.string("song.artist"),
        album=reader.string("song.album"),
        album_id=reader.int64("song.albumId"),
        duration_ms=reader.int64("song.durationMs"),
        cover_url=reader.optional_string("song.coverUrl"),
        added_at=reader.int64("song.addedAt"),
        matched_lyric=reader.optional_string("song.matchedLyric"),
        matched_translated_lyric=reader.optional_string("song.matchedTranslatedLyric"),
        matched_lyric_source=reader.optional_string("song.matchedLyricSource"),
        matched_song_id=reader.optional_string("song.matchedSongId"),
        user_lyric_offset_ms=reader.int64("song.userLyricOffsetMs"),
        custom_cover_url=reader.optional_string("song.customCoverUrl"),
        custom_name=reader.optional_string("song.customName"),
        custom_artist=reader.optional_string("song.customArtist"),
        original_name=reader.optional_string("song.originalName"),
        original_artist=reader.optional_string("song.originalArtist"),
        original_cover_url=reader.optional_string("song.originalCoverUrl"),
        original_lyric=reader.optional_string("song.originalLyric"),
        original_translated_lyric=reader.optional_string("song.originalTranslatedLyric"),
    )


def _write_songs(writer: _BinaryWriter, songs: tuple[Song, ...]) -> None:
    writer.count(len(songs))
    for song in songs:
        _write_song(writer, song)


def _write_playlist(writer: _BinaryWriter, playlist: Playlist) -> None:
    writer.int64(playlist.id)
    writer.string(playlist.name)
    _write_songs(writer, playlist.songs)
    writer.int64(playlist.created_at)
    writer.int64(playlist.modified_at)
    writer.boolean(playlist.is_deleted)


def _read_playlist(reader: _BinaryReader) -> Playlist:
    return Playlist(
        id=reader.int64("playlist.id"),
        name=reader.string("playlist.name"),
        songs=reader.items("playlist.songs", _read_song),
        created_at=reader.int64("playlist.createdAt"),
        modified_at=reader.int64("playlist.modifiedAt"),
        is_deleted=reader.boolean("playlist.isDeleted"),
    )


def _write_favorite(writer: _BinaryWriter, favorite: FavoritePlaylist) -> None:
    writer.int64(favorite.id)
    writer.string(favorite.name)
    writer.optional_string(favorite.cover_url)
    writer.int64(favorite.track_count)
    writer.string(favorite.source)
    _write_songs(writer, favorite.songs)
    writer.int64(favorite.added_time)


def _read_favorite(reader: _BinaryReader) -> FavoritePlaylist:
    return FavoritePlaylist(
        id=reader.int64("favoritePlaylist.id"),
        name=reader.string("favoritePlaylist.name"),
        cover_url=reader.optional_string("favoritePlaylist.coverUrl"),
        track_count=reader.int64("favoritePlaylist.trackCount"),
        source=reader.string("favoritePlaylist.source"),
        songs=reader.items("favoritePlaylist.songs", _read_song),
        added_time=reader.int64("favoritePlaylist.addedTime"),
    )


def _write_recent_play(writer: _BinaryWriter, play: RecentPlay) -> None:
    writer.int64(play.song_id)
    _write_song(writer, play.song)
    writer.int64(play.played_at)
    writer.string(play.device_id)


def _read_recent_play(reader: _BinaryReader) -> RecentPlay:
    return RecentPlay(
        song_id=reader.int64("recentPlay.songId"),
        song=_read_song(reader),
        played_at=reader.int64("recentPlay.playedAt"),
        device_id=reader.string("recentPlay.deviceId"),
    )


def _write_log_entry(writer: _BinaryWriter, entry: OperationLogEntry) -> None:
    writer.int64(entry.timestamp)
    writer.string(entry.device_id)
    writer.string(entry.action.value)
    writer.optional_int64(entry.playlist_id)
    writer.optional_int64(entry.song_id)
    writer.optional_string(entry.details)


def _read_log_entry(reader: _BinaryReader) -> OperationLogEntry:
    timestamp = reader.int64("syncLog.timestamp")
    device_id = reader.string("syncLog.deviceId")
    raw_action = reader.string("syncLog.action")
    try:
        action = SyncAction(raw_action)
    except ValueError as e:
        raise DecodeError(
            f"Unknown action '{raw_action}' in syncLog",
            details={"format": "binary", "field": "syncLog.action", "value": raw_action}
        ) from e
    return OperationLogEntry(
        timestamp=timestamp,
        device_id=device_id,
        action=action,
        playlist_id=reader.optional_int64("syncLog.playlistId"),
        song_id=reader.optional_int64("syncLog.songId"),
        details=reader.optional_string("syncLog.details"),
    )


def _write_snapshot(writer: _BinaryWriter, snapshot: Snapshot) -> None:
    writer.string(snapshot.version)
    writer.string(snapshot.device_id)
    writer.string(snapshot.device_name)
    writer.int64(snapshot.last_modified)

    writer.count(len(snapshot.playlists))
    for playlist in snapshot.playlists:
        _write_playlist(writer, playlist)

    writer.count(len(snapshot.favorite_playlists))
    for favorite in snapshot.favorite_playlists:
        _write_favorite(writer, favorite)

    writer.count(len(snapshot.recent_plays))
    for play in snapshot.recent_plays:
        _write_recent_play(writer, play)

    writer.count(len(snapshot.operation_log))
    for entry in snapshot.operation_log:
        _write_log_entry(writer, entry)


def _read_snapshot(reader: _BinaryReader) -> Snapshot:
    version = reader.string("snapshot.version")
    check_schema_version(version)

    snapshot = Snapshot(
        version=version,
        device_id=reader.string("snapshot.deviceId"),
        device_name=reader.string("snapshot.deviceName"),
        last_modified=reader.int64("snapshot.lastModified"),
        playlists=reader.items("snapshot.playlists", _read_playlist),
        favorite_playlists=reader.items("snapshot.favoritePlaylists", _read_favorite),
        recent_plays=reader.items("snapshot.recentPlays", _read_recent_play),
        operation_log=reader.items("snapshot.syncLog", _read_log_entry),
    )

    ids = [playlist.id for playlist in snapshot.playlists]
    if len(ids) != len(set(ids)):
        raise DecodeError(
            "Duplicate playlist id in binary snapshot",
            details={"format": "binary", "field": "playlists"}
        )
    return snapshot
