"""Utility functions for the price service."""

from pricehub.utils.time import (
    LatencyTimer,
    get_timestamp_ms,
    get_timestamp_us,
    is_older_than,
)


__all__ = [
    "LatencyTimer",
    "get_timestamp_ms",
    "get_timestamp_us",
    "is_older_than",
]
