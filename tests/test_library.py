"""Tests for cover normalization and playlist reconciliation"""

import pytest

from playlist_sync.library.covers import CoverUrlMapper, is_local_url, local_path
from playlist_sync.library.models import Track
from playlist_sync.library.repository import reconcile_playlists

T0 = 1_700_000_000_000


class TestCovers:
    """Local cover references"""

    @pytest.mark.parametrize("url,expected", [
        ("/sdcard/Music/cover.jpg", True),
        ("file:///tmp/cover.jpg", True),
        ("content://media/data/covers/1", True),
        ("https://host/storage/emulated/0/a.jpg", True),
        ("https://img.example.com/1.jpg", False),
        ("", False),
    ])
    def test_is_local_url(self, url, expected):
        assert is_local_url(url) is expected

    def test_local_path_strips_scheme(self):
        assert local_path("file:///tmp/a.jpg") == "/tmp/a.jpg"
        assert local_path("/tmp/a.jpg") == "/tmp/a.jpg"

    def test_network_url(self):
        mapper = CoverUrlMapper({"/data/covers/1.jpg": "https://img/1.jpg"})

        assert mapper.network_url("/data/covers/1.jpg") == "https://img/1.jpg"
        assert mapper.network_url("/data/covers/2.jpg") == "/data/covers/2.jpg"
        assert mapper.network_url("https://img/3.jpg") == "https://img/3.jpg"
        assert mapper.network_url(None) is None
        assert mapper.network_url("  ") == "  "
        assert len(mapper) == 1

    def test_normalize_track_rewrites_all_covers(self, make_track):
        mapper = CoverUrlMapper({
            "/data/a.jpg": "https://img/a.jpg",
            "/data/b.jpg": "https://img/b.jpg",
        })
        track = make_track(1, cover_url="/data/a.jpg", custom_cover_url="/data/b.jpg", original_cover_url="/data/a.jpg")

        normalized = mapper.normalize_track(track)

        assert normalized.cover_url == "https://img/a.jpg"
        assert normalized.custom_cover_url == "https://img/b.jpg"
        assert normalized.original_cover_url == "https://img/a.jpg"
        assert normalized.name == track.name

    def test_normalize_track_unchanged_is_same_object(self, make_track):
        track = make_track(1)

        assert CoverUrlMapper({"/data/a.jpg": "https://img/a.jpg"}).normalize_track(track) is track


class TestTrack:
    """Stored track JSON"""

    def test_database_dict_round_trip(self, make_track):
        track = make_track(3, matched_lyric="[00:01.00] la", user_lyric_offset_ms=120)

        assert Track.from_database_dict(track.to_database_dict()) == track

    def test_unknown_keys_ignored(self, make_track):
        data = make_track(3).to_database_dict()
        data["legacyField"] = 1

        assert Track.from_database_dict(data).id == 3

    def test_display_name_prefers_custom(self, make_track):
        assert make_track(3, custom_name="Mine").display_name == "Mine"
        assert make_track(3).display_name == "Song 3"


class TestReconcilePlaylists:
    """Folding merged playlists into local storage"""

    def test_match_by_id_replaces_contents(self, make_local_playlist):
        current = [make_local_playlist(1, "Old", [1], created_at=T0 - 10)]
        incoming = [make_local_playlist(1, "New", [2, 3], modified_at=T0 + 5, created_at=T0)]

        result = reconcile_playlists(current, incoming)

        assert len(result) == 1
        assert result[0].name == "New"
        assert result[0].track_ids == [2, 3]
        assert result[0].modified_at == T0 + 5
        assert result[0].created_at == T0 - 10

    def test_match_by_name_keeps_local_id(self, make_local_playlist):
        current = [make_local_playlist(1, "Road Trip", [1])]
        incoming = [make_local_playlist(99, "Road Trip", [4], modified_at=T0 + 1)]

        result = reconcile_playlists(current, incoming)

        assert [(p.id, p.track_ids) for p in result] == [(1, [4])]

    def test_later_local_copy_is_kept(self, make_local_playlist):
        local = make_local_playlist(1, "Mine", [1], modified_at=T0 + 10)

        result = reconcile_playlists([local], [make_local_playlist(1, "Theirs", [2], modified_at=T0)])

        assert result == [local]

    def test_tie_takes_incoming(self, make_local_playlist):
        current = [make_local_playlist(1, "Mine", [1])]

        result = reconcile_playlists(current, [make_local_playlist(1, "Theirs", [2])])

        assert result[0].name == "Theirs"

    def test_unchanged_since_snapshot_is_replaced(self, make_local_playlist):
        local = make_local_playlist(1, "Mix", [1], modified_at=T0 + 10)
        older = make_local_playlist(1, "Mix", [2, 3], modified_at=T0)

        result = reconcile_playlists([local], [older], snapshot_times={1: T0 + 10})

        assert result[0].track_ids == [2, 3]
        assert result[0].modified_at == T0

    def test_edited_since_snapshot_falls_back_to_timestamps(self, make_local_playlist):
        local = make_local_playlist(1, "Mix", [1, 4], modified_at=T0 + 20)
        older = make_local_playlist(1, "Mix", [2, 3], modified_at=T0)

        result = reconcile_playlists([local], [older], snapshot_times={1: T0 + 10})

        assert result == [local]

    def test_new_playlists_appended_in_order(self, make_local_playlist):
        current = [make_local_playlist(1, "A")]
        incoming = [make_local_playlist(3, "C"), make_local_playlist(2, "B")]

        result = reconcile_playlists(current, incoming)

        assert [p.id for p in result] == [1, 3, 2]

    def test_unmentioned_kept_unless_removed(self, make_local_playlist):
        current = [make_local_playlist(1, "A"), make_local_playlist(2, "B"), make_local_playlist(3, "C")]

        result = reconcile_playlists(current, [], removed_ids=[2])

        assert [p.id for p in result] == [1, 3]

    def test_same_name_different_playlists_stay_apart(self, make_local_playlist):
        local = make_local_playlist(1, "Mix", [1])
        incoming = [local, make_local_playlist(2, "Mix", [2], modified_at=T0 + 5)]

        result = reconcile_playlists([local], incoming, snapshot_times={1: T0})

        assert [(p.id, p.name, p.track_ids) for p in result] == [(1, "Mix", [1]), (2, "Mix", [2])]

    def test_name_match_is_used_once(self, make_local_playlist):
        current = [make_local_playlist(1, "Mix", [1])]
        incoming = [
            make_local_playlist(2, "Mix", [2], modified_at=T0 + 1),
            make_local_playlist(3, "Mix", [3], modified_at=T0 + 1),
        ]

        result = reconcile_playlists(current, incoming)

        assert [(p.id, p.track_ids) for p in result] == [(1, [2]), (3, [3])]

    def test_renamed_playlist_frees_old_name(self, make_local_playlist):
        current = [make_local_playlist(1, "Old")]
        incoming = [
            make_local_playlist(1, "New", modified_at=T0 + 1),
            make_local_playlist(7, "Old", [5], modified_at=T0 + 1),
        ]

        result = reconcile_playlists(current, incoming)

        assert [(p.id, p.name) for p in result] == [(1, "New"), (7, "Old")]
