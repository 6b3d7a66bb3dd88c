"""
Utility functions for playlist-sync.

This module provides small helpers used across the application:
    - Epoch-millisecond clock (every timestamp in the library and in
      snapshots is epoch ms)
    - Human-readable formatting of timestamps and payload sizes for the CLI

Usage:
    from playlist_sync.utils import now_ms, format_timestamp, format_size
"""

import time
from datetime import datetime


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def format_timestamp(timestamp_ms: int | None) -> str:
    """
    Format an epoch-ms timestamp in local time.

    Examples:
        format_timestamp(None)           # "never"
        format_timestamp(1700000000000)  # "2023-11-14 23:13:20" (UTC+1)
    """
    if timestamp_ms is None:
        return "never"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_size(size_bytes: int) -> str:
    """
    Format a byte count for display.

    Examples:
        format_size(512)      # "512 B"
        format_size(2048)     # "2.0 KB"
        format_size(3145728)  # "3.0 MB"
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"
