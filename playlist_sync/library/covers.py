"""
Cover reference normalization.

Covers downloaded to the device are referenced by local file paths, which
mean nothing on another device. When a cover is downloaded, the host
application records the network URL it came from (Database.save_cover_mapping);
before a snapshot leaves the device every cover reference of every track is
rewritten through CoverUrlMapper so that only network URLs are synced.
"""

from collections.abc import Mapping
from dataclasses import replace

from playlist_sync.library.models import Track


FILE_URL_PREFIX = "file://"


def is_local_url(url: str) -> bool:
    """
    Return True if url points at the device's own storage.

    Absolute paths, file:// URLs and anything under an Android-style
    data or storage mount count as local.
    """
    return (
        url.startswith("/")
        or url.startswith(FILE_URL_PREFIX)
        or "/data/" in url
        or "/storage/" in url
    )


def local_path(url: str) -> str:
    """Strip the file:// prefix from a local cover reference."""
    return url.removeprefix(FILE_URL_PREFIX)


class CoverUrlMapper:
    """
    Rewrites local cover references into network URLs.

    Args:
        mapping: local reference -> network URL, usually
                 Database.get_cover_mappings().

    Example:
        mapper = CoverUrlMapper(db.get_cover_mappings())
        mapper.network_url("/data/covers/1.jpg")  # "https://..."
        mapper.network_url("https://example.com/a.jpg")  # unchanged
    """

    def __init__(self, mapping: Mapping[str, str] | None = None) -> None:
        self._mapping = dict(mapping or {})

    def network_url(self, url: str | None) -> str | None:
        """
        Return the network URL for url.

        None, blank and non-local references are returned unchanged, as is a
        local reference without a recorded mapping.
        """
        if not url or not url.strip():
            return url
        if not is_local_url(url):
            return url
        return self._mapping.get(url, url)

    def normalize_track(self, track: Track) -> Track:
        """Return track with all three cover references rewritten."""
        cover_url = self.network_url(track.cover_url)
        custom_cover_url = self.network_url(track.custom_cover_url)
        original_cover_url = self.network_url(track.original_cover_url)

        if (
            cover_url == track.cover_url
            and custom_cover_url == track.custom_cover_url
            and original_cover_url == track.original_cover_url
        ):
            return track

        return replace(
            track,
            cover_url=cover_url,
            custom_cover_url=custom_cover_url,
            original_cover_url=original_cover_url,
        )

    def normalize_tracks(self, tracks: tuple[Track, ...]) -> tuple[Track, ...]:
        return tuple(self.normalize_track(track) for track in tracks)

    def __len__(self) -> int:
        return len(self._mapping)
