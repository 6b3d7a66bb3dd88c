"""
Data models for the local music library.

This module defines immutable dataclasses representing what the device
itself owns: its playlists, the collections the user favorited, and the
play history. These are the AUTHORITATIVE records; sync snapshots are
built from them and merged results are written back into them.

Design Decisions:
    - All dataclasses are frozen (immutable) to prevent accidental modification
    - Ordered collections are tuples
    - Every timestamp is epoch milliseconds (int)
    - Cover references may be device-local paths here; they are rewritten
      to network URLs only when a sync snapshot is built
    - Models are independent of database storage format; the database
      stores them through to_database_dict()/from_database_dict()

Usage:
    from playlist_sync.library.models import Track, LocalPlaylist

    track = Track(id=1, name="Song", artist="Artist", album="Album",
                  album_id=10, duration_ms=215000, cover_url=None)
    playlist = LocalPlaylist(id=1700000000000, name="Road Trip",
                             tracks=(track,), created_at=..., modified_at=...)
"""

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True)
class Track:
    """
    Immutable representation of a song as stored on this device.

    Attributes:
        id: Numeric song id from the streaming platform.
        name: Track title as displayed.
        artist: Artist name as displayed.
        album: Album name.
        album_id: Numeric album id from the streaming platform.
        duration_ms: Track duration in milliseconds.
        cover_url: Cover image reference. May be a network URL or a
                   device-local file path (downloaded covers).

        matched_lyric: Lyrics the user matched manually, if any.
        matched_translated_lyric: Translated variant of matched_lyric.
        matched_lyric_source: Platform tag the matched lyrics came from.
        matched_song_id: Id of the song the lyrics were matched against.
        user_lyric_offset_ms: Lyric display offset chosen by the user.

        custom_cover_url: Cover override chosen by the user.
        custom_name: Title override chosen by the user.
        custom_artist: Artist override chosen by the user.

        original_name: Title before the user edited it (for revert).
        original_artist: Artist before the user edited it.
        original_cover_url: Cover before the user edited it.
        original_lyric: Lyrics before the user matched new ones.
        original_translated_lyric: Translated lyrics before matching.
    """

    id: int
    name: str
    artist: str
    album: str
    album_id: int
    duration_ms: int
    cover_url: str | None = None

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

    def to_database_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict for database storage."""
        return asdict(self)

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "Track":
        """
        Reconstruct a Track from a database dictionary.

        Keys the dataclass does not know are ignored, so rows written by a
        newer version of the application remain readable.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    @property
    def display_name(self) -> str:
        """Title the user sees: the custom override if set."""
        return self.custom_name or self.name


@dataclass(frozen=True)
class LocalPlaylist:
    """
    A playlist owned by this device.

    Attributes:
        id: Stable id, shared by every device that knows the playlist.
            New playlists use the creation time in epoch ms as id.
        name: Playlist title.
        tracks: Ordered tracks; the order is the play order.
        created_at: First-seen timestamp (epoch ms).
        modified_at: Last local modification (epoch ms). Drives the
                     "later modification wins" rules of the merge.
    """

    id: int
    name: str
    tracks: tuple[Track, ...]
    created_at: int
    modified_at: int

    @property
    def track_ids(self) -> list[int]:
        return [track.id for track in self.tracks]

    @property
    def track_count(self) -> int:
        return len(self.tracks)


@dataclass(frozen=True)
class FavoriteCollection:
    """
    A remote playlist or album the user favorited.

    Identity is (id, source): the same numeric id can exist on two
    platforms.

    Attributes:
        id: Id of the collection on its platform.
        source: Origin tag, e.g. "netease" or "bili".
        name: Title.
        cover_url: Cover reference.
        track_count: Track count as reported by the platform.
        tracks: Cached tracks of the collection.
        added_time: When the user favorited it (epoch ms).
    """

    id: int
    source: str
    name: str
    cover_url: str | None
    track_count: int
    tracks: tuple[Track, ...]
    added_time: int

    @property
    def key(self) -> tuple[int, str]:
        return (self.id, self.source)


@dataclass(frozen=True)
class LoggedOperation:
    """
    One entry of the local operation log.

    action holds a SyncAction name ("CREATE_PLAYLIST", "ADD_SONG", ...).
    The log is advisory: it travels with snapshots but never drives a merge.
    """

    timestamp: int
    action: str
    playlist_id: int | None = None
    song_id: int | None = None
    details: str | None = None


@dataclass(frozen=True)
class PlayedEntry:
    """
    One play of a track, as recorded in the local history.

    device_id is None for plays that happened on this device; plays
    restored from a sync keep the id of the device they came from.
    """

    track: Track
    played_at: int
    device_id: str | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.track.id, self.played_at)
