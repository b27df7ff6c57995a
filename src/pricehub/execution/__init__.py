"""Execution module for idempotent trade handling."""

from pricehub.execution.executor import TradeExecutor, generate_tx_hash


__all__ = [
    "TradeExecutor",
    "generate_tx_hash",
]
