"""
FastAPI server for the price service.

Exposes the refresh, dashboard, quote, chart, trade and user-data
routes. Every error body is {"ok": false, "error": "<message>"}.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pricehub import __version__
from pricehub.config.constants import DEFAULT_CHART_DAYS
from pricehub.config.settings import Settings, get_settings
from pricehub.core.types import TokenRef, TradeOutcomeKind, TradeRequest
from pricehub.execution.executor import TradeExecutor
from pricehub.market.service import MarketService, PriceRefreshLoop, UniverseNotReadyError
from pricehub.providers.client import MarketDataClient, ProviderError
from pricehub.storage.kv import KVCache
from pricehub.telemetry.metrics import MetricsCollector
from pricehub.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)

_TRADE_STATUS = {
    TradeOutcomeKind.REJECTED: 400,
    TradeOutcomeKind.CONFLICT: 409,
    TradeOutcomeKind.FAILED: 500,
}


@dataclass
class ServiceState:
    """Components shared by the route handlers."""

    settings: Settings
    cache: KVCache
    client: MarketDataClient
    metrics: MetricsCollector
    service: MarketService
    executor: TradeExecutor
    refresh_loop: PriceRefreshLoop | None = None


class FavoritesRequest(BaseModel):
    """Body of the favorites update."""

    tokens: list[TokenRef] = Field(default_factory=list)


def _state(request: Request) -> ServiceState:
    return request.app.state.hub


def error_response(status_code: int, message: str) -> JSONResponse:
    """Uniform JSON error body."""
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


# =============================================================================
# Exception Handlers
# =============================================================================


async def _universe_not_ready(request: Request, exc: UniverseNotReadyError) -> JSONResponse:
    return error_response(503, str(exc))


async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
    logger.error("Upstream error on %s: %s", request.url.path, exc)
    return error_response(502, str(exc))


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(400, "Invalid request body")


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return error_response(500, str(exc) or type(exc).__name__)


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    hub: ServiceState = app.state.hub
    logger.info("Starting pricehub (store: %s)", hub.cache.backend_name)
    if hub.refresh_loop is not None:
        hub.refresh_loop.start()
    yield
    logger.info("Shutting down pricehub...")
    if hub.refresh_loop is not None:
        await hub.refresh_loop.stop()
    await hub.client.close()
    await hub.cache.close()


def create_app(
    settings: Settings | None = None,
    cache: KVCache | None = None,
    client: MarketDataClient | None = None,
    metrics: MetricsCollector | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (loaded from the environment if None).
        cache: Key-value cache (built from settings if None).
        client: Provider client (created if None).
        metrics: Metrics collector (created if None).

    Returns:
        Configured FastAPI app.
    """
    settings = settings or get_settings()
    metrics = metrics or MetricsCollector()
    cache = cache or KVCache.from_settings(settings)
    client = client or MarketDataClient(
        timeout_seconds=settings.provider_timeout_seconds,
        requests_per_minute=settings.provider_requests_per_minute,
        metrics=metrics,
    )

    service = MarketService(cache, client, settings, metrics)
    refresh_loop = None
    if settings.refresh_interval_seconds > 0:
        refresh_loop = PriceRefreshLoop(
            service,
            settings.refresh_interval_seconds,
            settings.refresh_scopes,
        )

    app = FastAPI(title="pricehub", version=__version__, lifespan=lifespan)
    app.state.hub = ServiceState(
        settings=settings,
        cache=cache,
        client=client,
        metrics=metrics,
        service=service,
        executor=TradeExecutor(cache, settings, metrics),
        refresh_loop=refresh_loop,
    )

    app.add_exception_handler(UniverseNotReadyError, _universe_not_ready)  # type: ignore[arg-type]
    app.add_exception_handler(ProviderError, _provider_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error)

    app.post("/api/agents/refresh-universe")(refresh_universe)
    app.post("/api/market/refresh")(refresh_market)
    app.post("/api/cron/update-prices")(update_prices)
    app.get("/api/market/dashboard")(get_dashboard)
    app.get("/api/market/prices")(get_prices)
    app.get("/api/market/chart")(get_chart)
    app.post("/api/trade/execute")(execute_trade)
    app.put("/api/user/favorites/{user_id}")(put_favorites)
    app.get("/api/user/agent-state")(get_agent_state)
    app.post("/api/user/agent-state")(post_agent_state)
    app.get("/api/status")(get_status)
    return app


# =============================================================================
# Routes
# =============================================================================


async def refresh_universe(request: Request) -> dict[str, Any]:
    counts = await _state(request).service.refresh_universe()
    return {"ok": True, "counts": counts, "source": "static-fallback"}


async def refresh_market(request: Request) -> dict[str, Any]:
    keys = await _state(request).service.refresh_all()
    return {
        "ok": True,
        "status": "KV Initialized",
        "keys": keys,
        "timestamp": get_timestamp_ms(),
    }


async def update_prices(request: Request, scope: str = "majors") -> dict[str, Any]:
    result = await _state(request).service.update_prices(scope)
    return result.to_dict()


async def get_dashboard(request: Request) -> dict[str, Any]:
    return await _state(request).service.dashboard()


async def get_prices(request: Request, ids: str = "") -> dict[str, Any]:
    return await _state(request).service.quote_symbols(ids.split(","))


async def get_chart(
    request: Request,
    symbol: str | None = Query(default=None, alias="id"),
    days: str = str(DEFAULT_CHART_DAYS),
) -> Any:
    if not symbol:
        return error_response(400, "ID required")
    try:
        span = int(days)
    except ValueError:
        # "max" and other non-numeric spans get daily candles
        span = 365
    return await _state(request).service.chart(symbol, span)


async def execute_trade(request: Request) -> Any:
    try:
        body = await request.json()
        trade = TradeRequest.model_validate(body)
    except ValueError:
        return error_response(400, "Invalid request body")

    outcome = await _state(request).executor.execute(trade)
    if outcome.is_success and outcome.result is not None:
        return outcome.result.to_json_dict()
    return error_response(_TRADE_STATUS.get(outcome.kind, 500), outcome.error_message)


async def put_favorites(request: Request, user_id: str, body: FavoritesRequest) -> dict[str, Any]:
    universe = await _state(request).service.set_favorites(user_id, body.tokens)
    favorites = universe.favorites_by_user.get(user_id, [])
    return {
        "ok": True,
        "userId": user_id,
        "favorites": [t.to_json_dict() for t in favorites],
    }


async def get_agent_state(
    request: Request,
    user_id: str | None = Query(default=None, alias="userId"),
) -> Any:
    if not user_id:
        return error_response(400, "userId is required")
    state = await _state(request).service.get_agent_state(user_id)
    return {"state": state}


async def post_agent_state(request: Request) -> Any:
    try:
        body = await request.json()
    except ValueError:
        return error_response(400, "Invalid request body")

    user_id = body.get("userId") if isinstance(body, dict) else None
    state = body.get("state") if isinstance(body, dict) else None
    if not user_id or state is None:
        return error_response(400, "userId and state are required")

    await _state(request).service.set_agent_state(str(user_id), state)
    return {"success": True}


async def get_status(request: Request) -> dict[str, Any]:
    hub = _state(request)
    return {
        "ok": True,
        "version": __version__,
        "store": hub.cache.backend_name,
        "refreshLoop": hub.refresh_loop.is_running if hub.refresh_loop else False,
        "metrics": hub.metrics.to_dict(),
    }

