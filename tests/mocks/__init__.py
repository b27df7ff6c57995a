"""Mock implementations for testing."""

from tests.mocks.clock import FakeClock
from tests.mocks.providers import MockMarketClient


__all__ = [
    "FakeClock",
    "MockMarketClient",
]
