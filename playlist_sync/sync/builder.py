"""
Local snapshot builder.

Reads the local library and the sync bookkeeping and assembles the Snapshot
this device contributes to a sync. Cover references are rewritten to network
URLs here, before anything enters the snapshot, so the merge engine only
ever sees syncable data.
"""

from collections.abc import Callable
from dataclasses import replace

from playlist_sync.core.logger import get_logger
from playlist_sync.library.covers import CoverUrlMapper
from playlist_sync.library.models import FavoriteCollection, LocalPlaylist, PlayedEntry
from playlist_sync.library.repository import LocalLibrary, SyncStateStore
from playlist_sync.sync.models import (
    MAX_OPERATION_LOG,
    MAX_RECENT_PLAYS,
    FavoritePlaylist,
    OperationLogEntry,
    Playlist,
    RecentPlay,
    Snapshot,
)
from playlist_sync.utils import now_ms

logger = get_logger(__name__)


class LocalSnapshotBuilder:
    """
    Builds the local Snapshot for one sync attempt.

    Args:
        library: Source of playlists, favorites, plays and the operation log.
        state: Source of the device id and pending tombstones.
        cover_mapper: Rewrites device-local cover paths to network URLs.
        device_name: Human-readable name written into the snapshot.
        clock: Returns the current time in epoch milliseconds.
        history_limit: Number of recent plays to include (at most 500).

    Example:
        builder = LocalSnapshotBuilder(db, db, CoverUrlMapper(db.get_cover_mappings()), "Pixel 8")
        snapshot = builder.build()
    """

    def __init__(
        self,
        library: LocalLibrary,
        state: SyncStateStore,
        cover_mapper: CoverUrlMapper,
        device_name: str,
        clock: Callable[[], int] = now_ms,
        history_limit: int = MAX_RECENT_PLAYS
    ) -> None:
        self.library = library
        self.state = state
        self.cover_mapper = cover_mapper
        self.device_name = device_name
        self.clock = clock
        self.history_limit = min(history_limit, MAX_RECENT_PLAYS)

    def build(self) -> Snapshot:
        """
        Snapshot the local library.

        Behavior:
            - Live playlists come first, in local order, covers normalized.
            - Each pending tombstone whose playlist no longer exists locally
              becomes a deleted Playlist with modified_at = deletion time.
            - Recent plays are tagged with this device's id unless they
              already carry the id of the device that recorded them.
            - The operation log is newest first and capped at 100.
        """
        device_id = self.state.get_device_id()

        live = [self._playlist(p) for p in self.library.current_playlists()]
        live_ids = {p.id for p in live}
        tombstones = [
            Playlist.tombstone(playlist_id, deleted_at)
            for playlist_id, deleted_at in self.state.pending_tombstones()
            if playlist_id not in live_ids
        ]

        favorites = [self._favorite(f) for f in self.library.current_favorites()]
        plays = [
            self._recent_play(entry, device_id)
            for entry in self.library.current_recent_plays(self.history_limit)
        ]
        operations = sorted(
            self.library.recent_operations(MAX_OPERATION_LOG),
            key=lambda op: op.timestamp,
            reverse=True
        )[:MAX_OPERATION_LOG]

        snapshot = Snapshot(
            device_id=device_id,
            device_name=self.device_name,
            last_modified=self.clock(),
            playlists=tuple(live + tombstones),
            favorite_playlists=tuple(favorites),
            recent_plays=tuple(plays),
            operation_log=tuple(OperationLogEntry.from_local(op, device_id) for op in operations),
        )

        logger.debug(
            f"Built local snapshot: {len(live)} playlists, {len(tombstones)} tombstones, "
            f"{len(favorites)} favorites, {len(plays)} plays, {len(operations)} log entries"
        )
        return snapshot

    def _playlist(self, playlist: LocalPlaylist) -> Playlist:
        tracks = self.cover_mapper.normalize_tracks(playlist.tracks)
        return Playlist.from_local(replace(playlist, tracks=tracks))

    def _favorite(self, favorite: FavoriteCollection) -> FavoritePlaylist:
        normalized = replace(
            favorite,
            cover_url=self.cover_mapper.network_url(favorite.cover_url),
            tracks=self.cover_mapper.normalize_tracks(favorite.tracks),
        )
        return FavoritePlaylist.from_local(normalized)

    def _recent_play(self, entry: PlayedEntry, device_id: str) -> RecentPlay:
        track = self.cover_mapper.normalize_track(entry.track)
        return RecentPlay.from_local(replace(entry, track=track), device_id)
