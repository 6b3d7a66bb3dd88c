"""
Interfaces the sync engine needs from the host application.

The engine never reaches into storage directly. It reads the local library
and the sync bookkeeping through the two protocols below and writes merged
results back only through the whole-collection apply_* calls.
core.database.Database implements both; tests may substitute fakes.

This module also holds reconcile_playlists(), the pure function deciding how
a merged playlist list is folded into the playlists currently on the device.
"""

from collections.abc import Iterable, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import replace
from typing import Protocol

from playlist_sync.library.models import (
    FavoriteCollection,
    LocalPlaylist,
    LoggedOperation,
    PlayedEntry,
)


class LocalLibrary(Protocol):
    """Read and whole-collection write access to the device's library."""

    def current_playlists(self) -> list[LocalPlaylist]: ...

    def current_favorites(self) -> list[FavoriteCollection]: ...

    def current_recent_plays(self, limit: int) -> list[PlayedEntry]: ...

    def recent_operations(self, limit: int = 100) -> list[LoggedOperation]: ...

    def apply_merged_playlists(
        self,
        playlists: Sequence[LocalPlaylist],
        removed_ids: Iterable[int] = (),
        snapshot_times: Mapping[int, int] | None = None
    ) -> None: ...

    def apply_merged_favorites(self, favorites: Sequence[FavoriteCollection]) -> None: ...

    def apply_merged_recent_plays(self, entries: Sequence[PlayedEntry]) -> None: ...

    def transaction(self) -> AbstractContextManager[None]: ...


class SyncStateStore(Protocol):
    """Credential and version-token bookkeeping of one account."""

    def is_configured(self) -> bool: ...

    def invalidate_credential(self) -> None: ...

    def get_device_id(self) -> str: ...

    def get_remote_version(self, path: str) -> str | None: ...

    def save_remote_version(self, path: str, version: str) -> None: ...

    def get_last_sync_time(self) -> int | None: ...

    def save_last_sync_time(self, timestamp: int) -> None: ...

    def pending_tombstones(self) -> list[tuple[int, int]]: ...

    def clear_pending_tombstones(self, playlist_ids: Iterable[int]) -> None: ...


def reconcile_playlists(
    current: Sequence[LocalPlaylist],
    incoming: Sequence[LocalPlaylist],
    removed_ids: Iterable[int] = (),
    snapshot_times: Mapping[int, int] | None = None
) -> list[LocalPlaylist]:
    """
    Fold merged playlists into the playlists currently on the device.

    Args:
        current: Playlists in local storage, in display order.
        incoming: Playlists of the merged snapshot.
        removed_ids: Ids the merge dropped because of a tombstone.
        snapshot_times: modified_at of each local playlist when the snapshot
                        that went into the merge was built.

    Returns:
        The new local playlist list.

    Behavior:
        1. Each incoming playlist is matched to a local one by id. When no
           id matches, it may take over a local playlist with the same name,
           but only one whose id the merge does not list itself; a local
           playlist that is in incoming keeps its own entry.
        2. A matched local playlist that is unchanged since the snapshot
           (same modified_at as in snapshot_times) is replaced. One that
           changed, or is not in snapshot_times, is kept as is when its
           modified_at is strictly later than the incoming one. A replaced
           playlist takes the incoming name, tracks and modified_at; id and
           created_at stay local.
        3. Unmatched incoming playlists are appended.
        4. Local playlists the merge does not mention are kept, unless
           their id is in removed_ids.
    """
    removed = set(removed_ids)
    snapshot_times = snapshot_times or {}
    result: list[LocalPlaylist] = list(current)
    index_by_id = {playlist.id: i for i, playlist in enumerate(result)}
    incoming_ids = {playlist.id for playlist in incoming}
    index_by_name: dict[str, int] = {}
    for i, playlist in enumerate(result):
        if playlist.id not in incoming_ids:
            index_by_name.setdefault(playlist.name, i)

    for playlist in incoming:
        index = index_by_id.get(playlist.id)
        if index is None:
            index = index_by_name.pop(playlist.name, None)

        if index is None:
            index_by_id[playlist.id] = len(result)
            result.append(playlist)
            continue

        existing = result[index]
        unchanged = snapshot_times.get(existing.id) == existing.modified_at
        if not unchanged and existing.modified_at > playlist.modified_at:
            continue

        updated = replace(
            existing,
            name=playlist.name,
            tracks=playlist.tracks,
            modified_at=playlist.modified_at,
        )
        result[index] = updated

    return [playlist for playlist in result if playlist.id not in removed]
