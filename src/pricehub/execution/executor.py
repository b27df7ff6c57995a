"""
Simulated trade execution.

Guards each request with an idempotency key and a per-pair lock held in
the shared cache, so concurrent or repeated submissions resolve to a
single execution.
"""

import logging
import secrets

from pricehub.config.constants import KEY_IDEMPOTENCY_PREFIX, KEY_TRADE_LOCK_PREFIX
from pricehub.config.settings import Settings
from pricehub.core.types import TradeOutcome, TradeOutcomeKind, TradeRequest, TradeResult
from pricehub.storage.kv import KVCache, KVError
from pricehub.telemetry.metrics import MetricsCollector
from pricehub.utils.time import LatencyTimer


logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Order executed successfully via server-side"
CONFLICT_MESSAGE = "Trade in progress for this pair"
MISSING_KEY_MESSAGE = "Missing idempotencyKey"
STORE_MISSING_MESSAGE = "KV store configuration missing"


def generate_tx_hash() -> str:
    """Random transaction hash: 0x followed by 64 hex characters."""
    return "0x" + secrets.token_hex(32)


class TradeExecutor:
    """
    Executes (simulated) trades exactly once per idempotency key.

    Features:
    - Replays the stored result for a repeated key
    - Per-pair exclusive lock with expiry
    - Lock released whatever the outcome
    """

    def __init__(
        self,
        cache: KVCache,
        settings: Settings,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize executor.

        Args:
            cache: Shared key-value cache holding locks and results.
            settings: Application settings (TTLs, local lock policy).
            metrics: Metrics collector holding the outcome counts
                (a private one if None).
        """
        self._cache = cache
        self._settings = settings
        self._metrics = metrics if metrics is not None else MetricsCollector()

    @property
    def can_lock(self) -> bool:
        """Whether locks held in this cache protect anything."""
        return self._cache.is_shared or self._settings.allow_local_trade_lock

    async def execute(self, request: TradeRequest) -> TradeOutcome:
        """
        Execute a trade request.

        Args:
            request: Trade request.

        Returns:
            TradeOutcome describing how the request was resolved.
        """
        outcome = await self._execute(request)
        self._metrics.record_trade(outcome.kind.value)
        return outcome

    async def _execute(self, request: TradeRequest) -> TradeOutcome:
        if not self.can_lock:
            logger.error("Trade refused: no shared KV store configured")
            return TradeOutcome(TradeOutcomeKind.FAILED, error_message=STORE_MISSING_MESSAGE)

        if not request.idempotency_key:
            return TradeOutcome(TradeOutcomeKind.REJECTED, error_message=MISSING_KEY_MESSAGE)

        idem_key = f"{KEY_IDEMPOTENCY_PREFIX}{request.idempotency_key}"
        lock_key = f"{KEY_TRADE_LOCK_PREFIX}{request.pair}"

        try:
            existing = await self._cache.get_model(idem_key, TradeResult)
            if existing is not None:
                logger.info("Idempotency hit: %s", request.idempotency_key)
                return TradeOutcome(TradeOutcomeKind.DUPLICATE, result=existing)

            acquired = await self._cache.set_if_absent(
                lock_key, "1", self._settings.trade_lock_ttl_seconds
            )
        except KVError as e:
            logger.error("Trade lock error: %s", e)
            return TradeOutcome(TradeOutcomeKind.FAILED, error_message=str(e))

        if not acquired:
            logger.info("Trade conflict on pair %s", request.pair)
            return TradeOutcome(TradeOutcomeKind.CONFLICT, error_message=CONFLICT_MESSAGE)

        try:
            # A request holding the same key may have finished while we waited
            existing = await self._cache.get_model(idem_key, TradeResult)
            if existing is not None:
                logger.info("Idempotency hit after lock: %s", request.idempotency_key)
                return TradeOutcome(TradeOutcomeKind.DUPLICATE, result=existing)

            with LatencyTimer() as timer:
                result = await self._simulate_swap(request)
                await self._cache.set(
                    idem_key, result, self._settings.idempotency_ttl_seconds
                )
            self._metrics.record_latency("trade.execute", timer.latency_us)
            return TradeOutcome(TradeOutcomeKind.EXECUTED, result=result)

        except Exception as e:
            logger.error("Trade execute error: %s", e)
            return TradeOutcome(TradeOutcomeKind.FAILED, error_message=str(e))

        finally:
            try:
                await self._cache.delete(lock_key)
            except KVError as e:
                logger.error("Failed to release lock %s: %s", lock_key, e)

    async def _simulate_swap(self, request: TradeRequest) -> TradeResult:
        """Pretend to sign and submit the swap."""
        logger.info(
            "Trade execute: pair=%s action=%s amount=%s price=%s",
            request.pair,
            request.action,
            request.amount,
            request.price,
        )
        return TradeResult(tx_hash=generate_tx_hash(), message=SUCCESS_MESSAGE)

    @property
    def stats(self) -> dict[str, int]:
        """Get execution statistics."""
        return self._metrics.trade_stats.to_dict()

    @property
    def success_rate(self) -> float:
        """Share of requests that executed or replayed."""
        return self._metrics.trade_stats.success_rate
