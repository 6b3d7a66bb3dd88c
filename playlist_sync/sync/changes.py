"""
Change detection between a merged snapshot and the remote one.

Decides whether uploading the merged snapshot is worth a network round
trip. The comparison is deliberately coarse: the operation log, timestamps
and device identity are ignored, and only the head of the play history is
compared.
"""

from playlist_sync.sync.models import Snapshot


RECENT_PLAYS_COMPARE_LIMIT = 50


def has_changed(remote: Snapshot, merged: Snapshot) -> bool:
    """
    Return True if merged differs from remote in a way worth uploading.

    Compared:
        - number of playlists
        - per playlist id: name and the ordered song id sequence
        - favorite (id, source) key sets
        - first 50 recent plays as ordered (song_id, played_at) pairs

    Not compared: the operation log, last_modified, device id and name,
    song metadata other than ids.
    """
    if len(remote.playlists) != len(merged.playlists):
        return True

    remote_by_id = {p.id: p for p in remote.playlists}
    for playlist in merged.playlists:
        other = remote_by_id.get(playlist.id)
        if other is None:
            return True
        if other.name != playlist.name or other.song_ids != playlist.song_ids:
            return True

    if {f.key for f in remote.favorite_playlists} != {f.key for f in merged.favorite_playlists}:
        return True

    remote_plays = [p.key for p in remote.recent_plays[:RECENT_PLAYS_COMPARE_LIMIT]]
    merged_plays = [p.key for p in merged.recent_plays[:RECENT_PLAYS_COMPARE_LIMIT]]
    return remote_plays != merged_plays
