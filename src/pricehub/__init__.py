"""
Market price aggregation and caching service.

Maintains a shared universe of tracked tokens, a merged price map and a
USD/JPY FX rate in a key-value cache, and guards a simulated trade
execution endpoint with a distributed lock and an idempotency cache.
"""

__version__ = "1.0.0"
__author__ = "Tim"
