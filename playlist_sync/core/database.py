"""
Thread-safe SQLite database for playlist-sync.

One database file holds everything a device knows: the local library
(playlists, favorited collections, play history, operation log) and the
sync bookkeeping of the account (credential, per-path version tokens,
pending tombstones, device id, cover URL mappings).

Schema:
    playlists:           Local playlists, tracks stored as a JSON array
    favorite_playlists:  Favorited collections keyed by (id, source)
    play_history:        Plays keyed by (song_id, played_at)
    operation_log:       Advisory log of local mutations
    pending_tombstones:  Playlists deleted locally, not yet uploaded
    remote_versions:     Last observed version token per remote path
    sync_state:          Key/value store (token, repository, device id, ...)
    cover_mappings:      Local cover path -> network URL

The Database class implements both LocalLibrary and SyncStateStore from
playlist_sync.library.repository, so the sync orchestrator receives the
same instance twice.

Usage:
    db = Database(data_dir / "library.db")

    playlist = db.create_playlist("Road Trip")
    db.add_track_to_playlist(playlist.id, track)

    db.save_credentials(token, "octocat/music-backup")
    with db.transaction():
        db.apply_merged_playlists(merged, removed_ids=[...])
        db.apply_merged_favorites(favorites)
"""

import json
import sqlite3
import threading
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from playlist_sync.core.exceptions import DatabaseError
from playlist_sync.core.logger import get_logger
from playlist_sync.library.covers import is_local_url, local_path
from playlist_sync.library.models import (
    FavoriteCollection,
    LocalPlaylist,
    LoggedOperation,
    PlayedEntry,
    Track,
)
from playlist_sync.library.repository import reconcile_playlists
from playlist_sync.utils import now_ms

logger = get_logger(__name__)


DATABASE_VERSION = 1

# Local retention; snapshots carry at most the same amounts
OPERATION_LOG_LIMIT = 100
PLAY_HISTORY_LIMIT = 500

# sync_state keys
STATE_TOKEN = "token"
STATE_REPOSITORY = "repository"
STATE_DEVICE_ID = "device_id"
STATE_LAST_SYNC = "last_sync_time"


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS playlists (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    tracks TEXT NOT NULL,  -- JSON array of track dicts
    created_at INTEGER NOT NULL,
    modified_at INTEGER NOT NULL,
    position INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS favorite_playlists (
    id INTEGER NOT NULL,
    source TEXT NOT NULL,
    name TEXT NOT NULL,
    cover_url TEXT,
    track_count INTEGER NOT NULL DEFAULT 0,
    tracks TEXT NOT NULL,  -- JSON array of track dicts
    added_time INTEGER NOT NULL,
    PRIMARY KEY (id, source)
);

CREATE TABLE IF NOT EXISTS play_history (
    song_id INTEGER NOT NULL,
    played_at INTEGER NOT NULL,
    track TEXT NOT NULL,  -- JSON track dict
    device_id TEXT,
    PRIMARY KEY (song_id, played_at)
);

CREATE TABLE IF NOT EXISTS operation_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    action TEXT NOT NULL,
    playlist_id INTEGER,
    song_id INTEGER,
    details TEXT
);

CREATE TABLE IF NOT EXISTS pending_tombstones (
    playlist_id INTEGER PRIMARY KEY,
    deleted_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS remote_versions (
    path TEXT PRIMARY KEY,
    version TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS cover_mappings (
    local_url TEXT PRIMARY KEY,
    network_url TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_play_history_played_at ON play_history(played_at);
CREATE INDEX IF NOT EXISTS idx_playlists_position ON playlists(position);
"""


class Database:
    """
    Thread-safe SQLite database for the local library and sync state.

    Uses a single persistent connection with a re-entrant lock. All public
    methods acquire self._lock before executing; transaction() holds it for
    the whole block so several apply_* calls commit (or roll back) together.

    Args:
        db_path: Path of the SQLite file. The parent directory must exist.
        clock: Epoch-ms clock used for created/modified/deleted stamps.
    """

    def __init__(self, db_path: Path, clock: Callable[[], int] = now_ms) -> None:
        self.db_path = db_path
        self._clock = clock
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._transaction_depth = 0

        if not db_path.parent.exists():
            raise DatabaseError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
        yield self._conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def _commit(self, conn: sqlite3.Connection) -> None:
        """Commit unless an outer transaction() owns the commit."""
        if self._transaction_depth == 0:
            conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Group several writes into one atomic commit.

        Every write made inside the block, from this thread, is committed
        when the outermost block exits normally and rolled back if it
        raises. Other threads wait on the lock until the block ends.

        Example:
            with db.transaction():
                db.apply_merged_playlists(playlists)
                db.apply_merged_favorites(favorites)
        """
        with self._lock:
            with self._get_connection() as conn:
                self._transaction_depth += 1
                try:
                    yield
                except BaseException:
                    self._transaction_depth -= 1
                    if self._transaction_depth == 0:
                        conn.rollback()
                    raise
                self._transaction_depth -= 1
                if self._transaction_depth == 0:
                    conn.commit()

    # =========================================================================
    # Serialization helpers
    # =========================================================================

    @staticmethod
    def _dump_tracks(tracks: Iterable[Track]) -> str:
        return json.dumps([track.to_database_dict() for track in tracks], ensure_ascii=False)

    @staticmethod
    def _load_json(raw: str, column: str) -> Any:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise DatabaseError(
                f"Corrupted JSON in column '{column}': {e}",
                details={"column": column, "original_error": str(e)}
            ) from e

    def _load_tracks(self, raw: str) -> tuple[Track, ...]:
        return tuple(Track.from_database_dict(item) for item in self._load_json(raw, "tracks"))

    def _playlist_from_row(self, row: sqlite3.Row) -> LocalPlaylist:
        return LocalPlaylist(
            id=row["id"],
            name=row["name"],
            tracks=self._load_tracks(row["tracks"]),
            created_at=row["created_at"],
            modified_at=row["modified_at"],
        )

    def _favorite_from_row(self, row: sqlite3.Row) -> FavoriteCollection:
        return FavoriteCollection(
            id=row["id"],
            source=row["source"],
            name=row["name"],
            cover_url=row["cover_url"],
            track_count=row["track_count"],
            tracks=self._load_tracks(row["tracks"]),
            added_time=row["added_time"],
        )

    def _fetch_playlists(self, conn: sqlite3.Connection) -> list[LocalPlaylist]:
        cursor = conn.execute(
            "SELECT id, name, tracks, created_at, modified_at FROM playlists ORDER BY position, id"
        )
        return [self._playlist_from_row(row) for row in cursor.fetchall()]

    def _fetch_playlist(self, conn: sqlite3.Connection, playlist_id: int) -> LocalPlaylist:
        cursor = conn.execute(
            "SELECT id, name, tracks, created_at, modified_at FROM playlists WHERE id = ?",
            (playlist_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise DatabaseError(
                f"Playlist not found: {playlist_id}",
                details={"playlist_id": playlist_id}
            )
        return self._playlist_from_row(row)

    def _write_playlist(self, conn: sqlite3.Connection, playlist: LocalPlaylist, position: int) -> None:
        conn.execute("""
            INSERT INTO playlists (id, name, tracks, created_at, modified_at, position)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                tracks = excluded.tracks,
                created_at = excluded.created_at,
                modified_at = excluded.modified_at,
                position = excluded.position
        """, (
            playlist.id,
            playlist.name,
            self._dump_tracks(playlist.tracks),
            playlist.created_at,
            playlist.modified_at,
            position,
        ))

    def _update_playlist(
        self,
        conn: sqlite3.Connection,
        playlist: LocalPlaylist,
        name: str,
        tracks: tuple[Track, ...],
        modified_at: int
    ) -> LocalPlaylist:
        conn.execute(
            "UPDATE playlists SET name = ?, tracks = ?, modified_at = ? WHERE id = ?",
            (name, self._dump_tracks(tracks), modified_at, playlist.id)
        )
        return LocalPlaylist(
            id=playlist.id,
            name=name,
            tracks=tracks,
            created_at=playlist.created_at,
            modified_at=modified_at,
        )

    def _log_operation(
        self,
        conn: sqlite3.Connection,
        timestamp: int,
        action: str,
        playlist_id: int | None = None,
        song_id: int | None = None,
        details: str | None = None
    ) -> None:
        conn.execute(
            "INSERT INTO operation_log (timestamp, action, playlist_id, song_id, details) "
            "VALUES (?, ?, ?, ?, ?)",
            (timestamp, action, playlist_id, song_id, details)
        )
        conn.execute("""
            DELETE FROM operation_log WHERE id NOT IN (
                SELECT id FROM operation_log ORDER BY id DESC LIMIT ?
            )
        """, (OPERATION_LOG_LIMIT,))

    def _get_state(self, conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute("SELECT value FROM sync_state WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def _set_state(self, conn: sqlite3.Connection, key: str, value: str | None) -> None:
        conn.execute("""
            INSERT INTO sync_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """, (key, value))

    # =========================================================================
    # Local Library (read side)
    # =========================================================================

    def current_playlists(self) -> list[LocalPlaylist]:
        """All local playlists in display order."""
        with self._lock:
            with self._get_connection() as conn:
                return self._fetch_playlists(conn)

    def get_playlist(self, playlist_id: int) -> LocalPlaylist | None:
        with self._lock:
            with self._get_connection() as conn:
                try:
                    return self._fetch_playlist(conn, playlist_id)
                except DatabaseError:
                    return None

    def current_favorites(self) -> list[FavoriteCollection]:
        """All favorited collections, most recently added first."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT id, source, name, cover_url, track_count, tracks, added_time
                    FROM favorite_playlists
                    ORDER BY added_time DESC
                """)
                return [self._favorite_from_row(row) for row in cursor.fetchall()]

    def current_recent_plays(self, limit: int = PLAY_HISTORY_LIMIT) -> list[PlayedEntry]:
        """The newest `limit` plays, newest first."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT played_at, track, device_id FROM play_history
                    ORDER BY played_at DESC, song_id
                    LIMIT ?
                """, (limit,))
                return [
                    PlayedEntry(
                        track=Track.from_database_dict(self._load_json(row["track"], "track")),
                        played_at=row["played_at"],
                        device_id=row["device_id"],
                    )
                    for row in cursor.fetchall()
                ]

    def recent_operations(self, limit: int = OPERATION_LOG_LIMIT) -> list[LoggedOperation]:
        """The newest `limit` operation log entries, newest first."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT timestamp, action, playlist_id, song_id, details
                    FROM operation_log
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                """, (limit,))
                return [
                    LoggedOperation(
                        timestamp=row["timestamp"],
                        action=row["action"],
                        playlist_id=row["playlist_id"],
                        song_id=row["song_id"],
                        details=row["details"],
                    )
                    for row in cursor.fetchall()
                ]

    # =========================================================================
    # Local Library (merged results)
    # =========================================================================

    def apply_merged_playlists(
        self,
        playlists: Sequence[LocalPlaylist],
        removed_ids: Iterable[int] = (),
        snapshot_times: Mapping[int, int] | None = None
    ) -> None:
        """
        Fold the playlists of a merged snapshot into local storage.

        See reconcile_playlists() for the matching rules. The playlists
        table is rewritten in the resulting order.
        """
        with self._lock:
            with self._get_connection() as conn:
                try:
                    current = self._fetch_playlists(conn)
                    result = reconcile_playlists(current, playlists, removed_ids, snapshot_times)

                    conn.execute("DELETE FROM playlists")
                    for position, playlist in enumerate(result):
                        self._write_playlist(conn, playlist, position)
                    self._commit(conn)
                except sqlite3.Error as e:
                    raise DatabaseError(
                        f"Failed to apply merged playlists: {e}",
                        details={"path": str(self.db_path), "playlists": len(playlists)}
                    ) from e

                logger.debug(f"Applied merged playlists: {len(current)} -> {len(result)} local playlists")

    def apply_merged_favorites(self, favorites: Sequence[FavoriteCollection]) -> None:
        """Upsert every merged favorite by (id, source); local-only ones stay."""
        with self._lock:
            with self._get_connection() as conn:
                try:
                    for favorite in favorites:
                        self._upsert_favorite(conn, favorite)
                    self._commit(conn)
                except sqlite3.Error as e:
                    raise DatabaseError(
                        f"Failed to apply merged favorites: {e}",
                        details={"path": str(self.db_path), "favorites": len(favorites)}
                    ) from e

    def apply_merged_recent_plays(self, entries: Sequence[PlayedEntry]) -> None:
        """Replace the play history with the merged history."""
        with self._lock:
            with self._get_connection() as conn:
                try:
                    conn.execute("DELETE FROM play_history")
                    conn.executemany(
                        "INSERT OR REPLACE INTO play_history (song_id, played_at, track, device_id) "
                        "VALUES (?, ?, ?, ?)",
                        [
                            (
                                entry.track.id,
                                entry.played_at,
                                json.dumps(entry.track.to_database_dict(), ensure_ascii=False),
                                entry.device_id,
                            )
                            for entry in entries
                        ]
                    )
                    self._commit(conn)
                except sqlite3.Error as e:
                    raise DatabaseError(
                        f"Failed to apply merged play history: {e}",
                        details={"path": str(self.db_path), "entries": len(entries)}
                    ) from e

    def _upsert_favorite(self, conn: sqlite3.Connection, favorite: FavoriteCollection) -> None:
        conn.execute("""
            INSERT INTO favorite_playlists
                (id, source, name, cover_url, track_count, tracks, added_time)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id, source) DO UPDATE SET
                name = excluded.name,
                cover_url = excluded.cover_url,
                track_count = excluded.track_count,
                tracks = excluded.tracks,
                added_time = excluded.added_time
        """, (
            favorite.id,
            favorite.source,
            favorite.name,
            favorite.cover_url,
            favorite.track_count,
            self._dump_tracks(favorite.tracks),
            favorite.added_time,
        ))

    # =========================================================================
    # Library Mutations
    # =========================================================================

    def create_playlist(self, name: str, tracks: Sequence[Track] = ()) -> LocalPlaylist:
        """
        Create a playlist. Its id is the creation time in epoch ms,
        bumped by one until it is free.
        """
        with self._lock:
            with self._get_connection() as conn:
                now = self._clock()
                playlist_id = now
                while conn.execute("SELECT 1 FROM playlists WHERE id = ?", (playlist_id,)).fetchone():
                    playlist_id += 1

                row = conn.execute("SELECT COALESCE(MAX(position), -1) FROM playlists").fetchone()
                playlist = LocalPlaylist(
                    id=playlist_id,
                    name=name,
                    tracks=tuple(tracks),
                    created_at=now,
                    modified_at=now,
                )
                self._write_playlist(conn, playlist, row[0] + 1)
                self._log_operation(conn, now, "CREATE_PLAYLIST", playlist_id=playlist_id, details=name)
                self._commit(conn)
                return playlist

    def rename_playlist(self, playlist_id: int, name: str) -> LocalPlaylist:
        with self._lock:
            with self._get_connection() as conn:
                playlist = self._fetch_playlist(conn, playlist_id)
                now = self._clock()
                updated = self._update_playlist(conn, playlist, name, playlist.tracks, now)
                self._log_operation(conn, now, "RENAME_PLAYLIST", playlist_id=playlist_id, details=name)
                self._commit(conn)
                return updated

    def set_playlist_tracks(self, playlist_id: int, tracks: Sequence[Track]) -> LocalPlaylist:
        """Replace the whole track list (reorder, bulk edit)."""
        with self._lock:
            with self._get_connection() as conn:
                playlist = self._fetch_playlist(conn, playlist_id)
                now = self._clock()
                updated = self._update_playlist(conn, playlist, playlist.name, tuple(tracks), now)
                self._log_operation(conn, now, "REORDER_SONGS", playlist_id=playlist_id)
                self._commit(conn)
                return updated

    def add_track_to_playlist(self, playlist_id: int, track: Track) -> LocalPlaylist:
        """Append track unless a track with the same id is already there."""
        with self._lock:
            with self._get_connection() as conn:
                playlist = self._fetch_playlist(conn, playlist_id)
                if track.id in playlist.track_ids:
                    return playlist

                now = self._clock()
                updated = self._update_playlist(
                    conn, playlist, playlist.name, playlist.tracks + (track,), now
                )
                self._log_operation(conn, now, "ADD_SONG", playlist_id=playlist_id, song_id=track.id)
                self._commit(conn)
                return updated

    def remove_track_from_playlist(self, playlist_id: int, song_id: int) -> LocalPlaylist:
        with self._lock:
            with self._get_connection() as conn:
                playlist = self._fetch_playlist(conn, playlist_id)
                remaining = tuple(track for track in playlist.tracks if track.id != song_id)
                if len(remaining) == len(playlist.tracks):
                    return playlist

                now = self._clock()
                updated = self._update_playlist(conn, playlist, playlist.name, remaining, now)
                self._log_operation(conn, now, "REMOVE_SONG", playlist_id=playlist_id, song_id=song_id)
                self._commit(conn)
                return updated

    def delete_playlist(self, playlist_id: int) -> bool:
        """
        Delete a playlist and remember it as a pending tombstone.

        The tombstone is sent with every sync until an upload succeeds,
        so other devices drop the playlist too.

        Returns:
            True if the playlist existed.
        """
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))
                if cursor.rowcount == 0:
                    self._commit(conn)
                    return False

                now = self._clock()
                conn.execute("""
                    INSERT INTO pending_tombstones (playlist_id, deleted_at) VALUES (?, ?)
                    ON CONFLICT(playlist_id) DO UPDATE SET deleted_at = excluded.deleted_at
                """, (playlist_id, now))
                self._log_operation(conn, now, "DELETE_PLAYLIST", playlist_id=playlist_id)
                self._commit(conn)
                return True

    def add_favorite(self, favorite: FavoriteCollection) -> None:
        with self._lock:
            with self._get_connection() as conn:
                self._upsert_favorite(conn, favorite)
                self._commit(conn)

    def remove_favorite(self, favorite_id: int, source: str) -> bool:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM favorite_playlists WHERE id = ? AND source = ?",
                    (favorite_id, source)
                )
                self._commit(conn)
                return cursor.rowcount > 0

    def record_play(self, track: Track, played_at: int | None = None) -> PlayedEntry:
        """Record a play on this device; history keeps the newest 500."""
        with self._lock:
            with self._get_connection() as conn:
                if played_at is None:
                    played_at = self._clock()
                conn.execute(
                    "INSERT OR REPLACE INTO play_history (song_id, played_at, track, device_id) "
                    "VALUES (?, ?, ?, NULL)",
                    (track.id, played_at, json.dumps(track.to_database_dict(), ensure_ascii=False))
                )
                conn.execute("""
                    DELETE FROM play_history WHERE rowid NOT IN (
                        SELECT rowid FROM play_history ORDER BY played_at DESC LIMIT ?
                    )
                """, (PLAY_HISTORY_LIMIT,))
                self._log_operation(conn, played_at, "PLAY_SONG", song_id=track.id)
                self._commit(conn)
                return PlayedEntry(track=track, played_at=played_at)

    # =========================================================================
    # Credential and Sync State
    # =========================================================================

    def save_credentials(self, token: str, repository: str) -> None:
        """Store the account token and the "owner/name" remote location."""
        with self._lock:
            with self._get_connection() as conn:
                self._set_state(conn, STATE_TOKEN, token)
                self._set_state(conn, STATE_REPOSITORY, repository)
                self._commit(conn)

    def get_token(self) -> str | None:
        with self._lock:
            with self._get_connection() as conn:
                return self._get_state(conn, STATE_TOKEN)

    def get_remote_location(self) -> str | None:
        with self._lock:
            with self._get_connection() as conn:
                return self._get_state(conn, STATE_REPOSITORY)

    def is_configured(self) -> bool:
        """True when both a token and a remote location are stored."""
        with self._lock:
            with self._get_connection() as conn:
                return bool(self._get_state(conn, STATE_TOKEN)) and bool(
                    self._get_state(conn, STATE_REPOSITORY)
                )

    def invalidate_credential(self) -> None:
        """Forget the token. The remote location is kept for re-configuration."""
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM sync_state WHERE key = ?", (STATE_TOKEN,))
                self._commit(conn)
                logger.debug("Stored credential invalidated")

    def get_device_id(self) -> str:
        """Stable id of this installation, generated on first use."""
        with self._lock:
            with self._get_connection() as conn:
                device_id = self._get_state(conn, STATE_DEVICE_ID)
                if device_id is None:
                    device_id = str(uuid.uuid4())
                    self._set_state(conn, STATE_DEVICE_ID, device_id)
                    self._commit(conn)
                return device_id

    def get_remote_version(self, path: str) -> str | None:
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT version FROM remote_versions WHERE path = ?", (path,)
                ).fetchone()
                return row[0] if row else None

    def save_remote_version(self, path: str, version: str) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO remote_versions (path, version, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET
                        version = excluded.version,
                        updated_at = excluded.updated_at
                """, (path, version, self._clock()))
                self._commit(conn)

    def get_remote_versions(self) -> dict[str, str]:
        """All stored version tokens by remote path."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT path, version FROM remote_versions ORDER BY path")
                return {row[0]: row[1] for row in cursor.fetchall()}

    def get_last_sync_time(self) -> int | None:
        with self._lock:
            with self._get_connection() as conn:
                value = self._get_state(conn, STATE_LAST_SYNC)
                return int(value) if value is not None else None

    def save_last_sync_time(self, timestamp: int) -> None:
        with self._lock:
            with self._get_connection() as conn:
                self._set_state(conn, STATE_LAST_SYNC, str(timestamp))
                self._commit(conn)

    def pending_tombstones(self) -> list[tuple[int, int]]:
        """(playlist_id, deleted_at) of every deletion not yet uploaded."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT playlist_id, deleted_at FROM pending_tombstones ORDER BY deleted_at, playlist_id"
                )
                return [(row[0], row[1]) for row in cursor.fetchall()]

    def clear_pending_tombstones(self, playlist_ids: Iterable[int]) -> None:
        """Drop the given tombstones; deletions made since stay pending."""
        with self._lock:
            with self._get_connection() as conn:
                conn.executemany(
                    "DELETE FROM pending_tombstones WHERE playlist_id = ?",
                    [(playlist_id,) for playlist_id in playlist_ids]
                )
                self._commit(conn)

    # =========================================================================
    # Cover Mappings
    # =========================================================================

    def save_cover_mapping(self, local_url: str | None, network_url: str | None) -> bool:
        """
        Remember which network URL a downloaded cover came from.

        Returns:
            False (nothing stored) if either value is blank or local_url
            is not a local reference.
        """
        if not local_url or not local_url.strip() or not network_url or not network_url.strip():
            return False
        if not is_local_url(local_url):
            return False

        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO cover_mappings (local_url, network_url) VALUES (?, ?)
                    ON CONFLICT(local_url) DO UPDATE SET network_url = excluded.network_url
                """, (local_url, network_url))
                self._commit(conn)
                logger.debug(f"Saved cover mapping: {local_url} -> {network_url}")
                return True

    def get_cover_mappings(self) -> dict[str, str]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT local_url, network_url FROM cover_mappings")
                return {row[0]: row[1] for row in cursor.fetchall()}

    def cleanup_cover_mappings(self) -> int:
        """
        Remove mappings whose local file no longer exists.

        Returns:
            Number of mappings removed.
        """
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT local_url FROM cover_mappings")
                stale = [
                    row[0] for row in cursor.fetchall()
                    if not Path(local_path(row[0])).exists()
                ]
                conn.executemany(
                    "DELETE FROM cover_mappings WHERE local_url = ?",
                    [(url,) for url in stale]
                )
                self._commit(conn)

                if stale:
                    logger.debug(f"Cleaned up {len(stale)} invalid cover mappings")
                return len(stale)
