"""
Time utilities.

Cached records carry epoch-millisecond timestamps; latency metrics
use microseconds.
"""

import time


def get_timestamp_us() -> int:
    """
    Get current timestamp in microseconds.

    Returns:
        Current Unix timestamp in microseconds.
    """
    return time.time_ns() // 1000


def get_timestamp_ms() -> int:
    """
    Get current timestamp in milliseconds.

    All stored `updatedAt` fields use this resolution.

    Returns:
        Current Unix timestamp in milliseconds.
    """
    return time.time_ns() // 1_000_000


def is_older_than(timestamp_ms: int, max_age_ms: int, now_ms: int | None = None) -> bool:
    """
    Check whether a stored timestamp has outlived its TTL.

    Args:
        timestamp_ms: Timestamp recorded with the value.
        max_age_ms: Maximum allowed age.
        now_ms: Reference time (defaults to now).

    Returns:
        True if the value is stale.
    """
    now = get_timestamp_ms() if now_ms is None else now_ms
    return now - timestamp_ms > max_age_ms


class LatencyTimer:
    """
    Context manager for measuring operation latency.

    Example:
        >>> with LatencyTimer() as timer:
        ...     do_something()
        >>> print(f"Latency: {timer.latency_us}μs")
    """

    __slots__ = ("start_us", "end_us", "latency_us")

    def __init__(self) -> None:
        self.start_us: int = 0
        self.end_us: int = 0
        self.latency_us: int = 0

    def __enter__(self) -> "LatencyTimer":
        self.start_us = get_timestamp_us()
        return self

    def __exit__(self, *args: object) -> None:
        self.end_us = get_timestamp_us()
        self.latency_us = self.end_us - self.start_us
