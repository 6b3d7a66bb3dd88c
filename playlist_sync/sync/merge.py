"""
Merge engine.

Combines the snapshot built on this device with the snapshot found on the
remote. There is no stored common ancestor: the merge is two-way and
resolves disagreements with timestamp and emptiness heuristics. All
functions here are pure apart from logging.

Playlists (keyed by id, over the union of both sides):
    one side only, live        -> kept, counted as added
    one side only, tombstone   -> dropped, counted as deleted
    both sides, any tombstone  -> dropped, counted as deleted
    both sides, both live      -> merge_playlist()

Song list precedence inside merge_playlist() (first match wins):
    1. remote empty, local not      -> local
    2. local empty, remote not      -> remote
    3. first sync, remote not empty -> remote
    4. strictly later modified_at wins the whole list; a tie keeps local

The order of these rules matters. Rule 1 stops a device whose remote copy
is still empty from wiping playlists other devices filled; rule 3 stops a
brand new device from overwriting what the others already uploaded.

Favorites:    union keyed by (id, source), max added_time wins
Recent plays: union deduped by (song_id, played_at), newest first, <= 500
Operation log: union deduped by timestamp, newest first, <= 100
"""

from dataclasses import dataclass
from typing import Iterable

from playlist_sync.core.logger import get_logger, log_sync_conflict
from playlist_sync.sync.models import (
    MAX_OPERATION_LOG,
    MAX_RECENT_PLAYS,
    Conflict,
    ConflictResolution,
    ConflictType,
    FavoritePlaylist,
    MergeReport,
    OperationLogEntry,
    Playlist,
    RecentPlay,
    Snapshot,
)

logger = get_logger(__name__)


# =============================================================================
# Result types
# =============================================================================

@dataclass(frozen=True)
class PlaylistMerge:
    """
    Outcome of merging one playlist present on both sides.

    Attributes:
        playlist: The merged playlist.
        conflict: Name conflict, if the two names differed.
        songs_added: Ids on the remote side missing locally (telemetry only).
        songs_removed: Ids on the local side missing remotely (telemetry only).
        is_updated: True when the merged playlist differs from the local one.
    """
    playlist: Playlist
    conflict: Conflict | None = None
    songs_added: int = 0
    songs_removed: int = 0
    is_updated: bool = False


@dataclass(frozen=True)
class MergeResult:
    """Merged snapshot plus the report describing how it was reached."""
    snapshot: Snapshot
    report: MergeReport


# =============================================================================
# Playlists
# =============================================================================

def merge_playlist(local: Playlist, remote: Playlist, is_first_sync: bool = False) -> PlaylistMerge:
    """
    Merge two live copies of the same playlist.

    Args:
        local: This device's copy.
        remote: The remote copy (same id).
        is_first_sync: True when this device has never synced this remote path.

    Returns:
        PlaylistMerge with the merged playlist and its telemetry.

    Behavior:
        - Name: equal names are kept. Otherwise the side with the strictly
          later modified_at wins and a tie goes to the remote; a
          PLAYLIST_RENAMED_BOTH_SIDES conflict names both titles.
        - Songs: see the precedence table in the module docstring. The
          winning list is taken whole, never merged element by element.
        - id and created_at come from the local copy; modified_at is the
          max over the sides that supplied the name and the songs.

    Example:
        >>> merged = merge_playlist(local, remote, is_first_sync=False)
        >>> merged.playlist.song_ids
        [101, 102]
    """
    conflict: Conflict | None = None
    is_updated = False
    songs_added = 0
    songs_removed = 0

    # ===== Name =====
    name = local.name
    contributing_times: list[int] = []
    if local.name != remote.name:
        if local.modified_at > remote.modified_at:
            name, resolution, winner = local.name, ConflictResolution.LOCAL_WINS, "local"
            contributing_times.append(local.modified_at)
        else:
            name, resolution, winner = remote.name, ConflictResolution.REMOTE_WINS, "remote"
            contributing_times.append(remote.modified_at)
            is_updated = True
        conflict = Conflict(
            type=ConflictType.PLAYLIST_RENAMED_BOTH_SIDES,
            playlist_id=local.id,
            playlist_name=name,
            description=(
                f"Renamed on both sides: local '{local.name}', remote '{remote.name}'; "
                f"kept the {winner} name"
            ),
            resolution=resolution,
        )

    # ===== Songs =====
    local_ids = set(local.song_ids)
    remote_ids = set(remote.song_ids)

    if not remote_ids and local_ids:
        logger.debug(f"Remote copy of '{local.name}' is empty, keeping {len(local_ids)} local songs")
        songs, songs_time = local.songs, local.modified_at
    elif not local_ids and remote_ids:
        songs, songs_time = remote.songs, remote.modified_at
        songs_added = len(remote_ids)
        is_updated = True
    elif is_first_sync and remote_ids:
        logger.debug(f"First sync: adopting remote songs of '{local.name}' ({len(remote_ids)} songs)")
        songs, songs_time = remote.songs, remote.modified_at
        songs_added = len(remote_ids - local_ids)
        songs_removed = len(local_ids - remote_ids)
        is_updated = True
    elif remote.modified_at > local.modified_at:
        logger.debug(
            f"Remote copy of '{local.name}' is newer "
            f"(remote={remote.modified_at}, local={local.modified_at})"
        )
        songs, songs_time = remote.songs, remote.modified_at
        songs_added = len(remote_ids - local_ids)
        songs_removed = len(local_ids - remote_ids)
        is_updated = True
    else:
        songs, songs_time = local.songs, local.modified_at
        songs_added = len(remote_ids - local_ids)
        songs_removed = len(local_ids - remote_ids)
        if songs_added or songs_removed:
            is_updated = True

    contributing_times.append(songs_time)

    merged = Playlist(
        id=local.id,
        name=name,
        songs=songs,
        created_at=local.created_at,
        modified_at=max(contributing_times),
    )
    return PlaylistMerge(
        playlist=merged,
        conflict=conflict,
        songs_added=songs_added,
        songs_removed=songs_removed,
        is_updated=is_updated,
    )


def _union_ids(local: Iterable[Playlist], remote: Iterable[Playlist]) -> list[int]:
    """Playlist ids in local order, then remote-only ids in remote order."""
    ids: list[int] = []
    seen: set[int] = set()
    for playlist in (*local, *remote):
        if playlist.id not in seen:
            seen.add(playlist.id)
            ids.append(playlist.id)
    return ids


# =============================================================================
# Collections
# =============================================================================

def merge_favorites(
    local: Iterable[FavoritePlaylist],
    remote: Iterable[FavoritePlaylist]
) -> tuple[FavoritePlaylist, ...]:
    """
    Union favorites by (id, source), keeping the entry with max added_time.

    Keys keep the position of their first appearance (local before remote).
    On an added_time tie the first entry seen is kept.
    """
    merged: dict[tuple[int, str], FavoritePlaylist] = {}
    for favorite in (*local, *remote):
        current = merged.get(favorite.key)
        if current is None or favorite.added_time > current.added_time:
            merged[favorite.key] = favorite
    return tuple(merged.values())


def merge_recent_plays(
    local: Iterable[RecentPlay],
    remote: Iterable[RecentPlay],
    limit: int = MAX_RECENT_PLAYS
) -> tuple[RecentPlay, ...]:
    """Union plays deduped by (song_id, played_at), newest first, at most limit."""
    unique: dict[tuple[int, int], RecentPlay] = {}
    for play in (*local, *remote):
        unique.setdefault(play.key, play)
    ordered = sorted(unique.values(), key=lambda play: play.played_at, reverse=True)
    return tuple(ordered[:limit])


def merge_operation_log(
    local: Iterable[OperationLogEntry],
    remote: Iterable[OperationLogEntry],
    limit: int = MAX_OPERATION_LOG
) -> tuple[OperationLogEntry, ...]:
    unique: dict[int, OperationLogEntry] = {}
    for entry in (*local, *remote):
        unique.setdefault(entry.timestamp, entry)
    ordered = sorted(unique.values(), key=lambda entry: entry.timestamp, reverse=True)
    return tuple(ordered[:limit])


# =============================================================================
# Snapshot
# =============================================================================

def merge_snapshots(local: Snapshot, remote: Snapshot, is_first_sync: bool, now: int) -> MergeResult:
    """
    Merge the local snapshot with the remote one.

    Args:
        local: Snapshot built on this device.
        remote: Snapshot decoded from the remote blob.
        is_first_sync: True when no version token is stored for the remote path.
        now: Current time in epoch ms, used as the merged last_modified.

    Returns:
        MergeResult. The merged snapshot has this device's identity, contains
        no tombstones, and report.deleted_playlist_ids lists every playlist
        dropped because of a tombstone.

    Note:
        Conflicts are logged through log_sync_conflict() so they end up in
        the sync conflict report file.
    """
    local_by_id = {p.id: p for p in local.playlists}
    remote_by_id = {p.id: p for p in remote.playlists}

    playlists: list[Playlist] = []
    conflicts: list[Conflict] = []
    deleted_ids: list[int] = []
    added = updated = deleted = songs_added = songs_removed = 0

    for playlist_id in _union_ids(local.playlists, remote.playlists):
        local_playlist = local_by_id.get(playlist_id)
        remote_playlist = remote_by_id.get(playlist_id)

        if local_playlist is None or remote_playlist is None:
            sides = [p for p in (local_playlist, remote_playlist) if p is not None]
            if sides[0].is_deleted:
                deleted += 1
                deleted_ids.append(playlist_id)
            else:
                playlists.append(sides[0])
                added += 1
            continue

        if local_playlist.is_deleted or remote_playlist.is_deleted:
            deleted += 1
            deleted_ids.append(playlist_id)
            continue

        result = merge_playlist(local_playlist, remote_playlist, is_first_sync)
        playlists.append(result.playlist)
        if result.conflict is not None:
            conflicts.append(result.conflict)
            log_sync_conflict(logger, result.conflict)
        songs_added += result.songs_added
        songs_removed += result.songs_removed
        if result.is_updated:
            updated += 1

    snapshot = Snapshot(
        device_id=local.device_id,
        device_name=local.device_name,
        last_modified=now,
        playlists=tuple(playlists),
        favorite_playlists=merge_favorites(local.favorite_playlists, remote.favorite_playlists),
        recent_plays=merge_recent_plays(local.recent_plays, remote.recent_plays),
        operation_log=merge_operation_log(local.operation_log, remote.operation_log),
    )
    report = MergeReport(
        playlists_added=added,
        playlists_updated=updated,
        playlists_deleted=deleted,
        songs_added=songs_added,
        songs_removed=songs_removed,
        conflicts=tuple(conflicts),
        deleted_playlist_ids=tuple(deleted_ids),
    )

    logger.debug(
        f"Merged {len(local.playlists)} local and {len(remote.playlists)} remote playlists "
        f"into {len(playlists)}: {report.summary()}"
    )
    return MergeResult(snapshot=snapshot, report=report)
