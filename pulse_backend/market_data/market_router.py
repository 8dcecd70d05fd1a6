# pulse_backend/market_data/market_router.py
"""
Market data API router.
"""
from typing import Any, Dict

from fastapi import APIRouter, Query, Request

from .adapters.finnhub_adapter import INTERVAL_MAP
from .market_data_service import MarketDataService
from .types import CandleResponse, MarketDataError, QuotesResponse, TechnicalSeries
from ..utils.circuit_breaker import CircuitOpenError
from ..utils.error_handler import handle_market_data_error, handle_validation_error

router = APIRouter(prefix="/market", tags=["market"])

MAX_SYMBOLS_PER_REQUEST = 50


def _service(request: Request) -> MarketDataService:
    return request.app.state.market_data_service


@router.get("/quotes", response_model=QuotesResponse)
def get_quotes(
    request: Request,
    symbols: str = Query(..., description="Comma-separated symbols, e.g. AAPL,MSFT"),
):
    """
    Quotes for several symbols. Symbols that fail are listed in "errors"
    instead of failing the whole request.
    """
    requested = [s.strip() for s in symbols.split(",") if s.strip()]
    if not requested:
        raise handle_validation_error("symbols", "at least one symbol is required")
    if len(requested) > MAX_SYMBOLS_PER_REQUEST:
        raise handle_validation_error("symbols", f"at most {MAX_SYMBOLS_PER_REQUEST} symbols per request")

    try:
        return _service(request).get_quotes(requested)
    except (MarketDataError, CircuitOpenError) as e:
        raise handle_market_data_error(e)


@router.get("/candles/{symbol}", response_model=CandleResponse)
def get_candles(
    symbol: str,
    request: Request,
    timeframe: str = Query("1d", description="One of 1m, 5m, 15m, 30m, 1h, 1d, 1w, 1M"),
):
    if timeframe not in INTERVAL_MAP:
        raise handle_validation_error("timeframe", f"unsupported timeframe '{timeframe}'")

    try:
        candles = _service(request).get_candles(symbol, timeframe)
    except (MarketDataError, CircuitOpenError) as e:
        raise handle_market_data_error(e, symbol.upper())
    return CandleResponse(symbol=symbol.upper(), timeframe=timeframe, candles=candles)


@router.get("/technical/{symbol}", response_model=TechnicalSeries)
def get_technical(symbol: str, request: Request):
    """Daily candles with SMA(20), EMA(20) and RSI(14)."""
    try:
        return _service(request).get_technical_series(symbol)
    except (MarketDataError, CircuitOpenError) as e:
        raise handle_market_data_error(e, symbol.upper())


@router.post("/invalidate/{symbol}")
def invalidate_symbol(symbol: str, request: Request) -> Dict[str, Any]:
    removed = _service(request).invalidate_symbol(symbol)
    return {"symbol": symbol.upper(), "removed": removed}


@router.post("/refresh")
def force_refresh(request: Request) -> Dict[str, Any]:
    """Drop every cached quote, candle series and technical series."""
    _service(request).force_refresh()
    return {"status": "ok"}


@router.get("/cache/stats")
def cache_stats(request: Request) -> Dict[str, Any]:
    service = _service(request)
    return {
        "cache": service.cache.stats(),
        "circuitBreaker": service.breaker.info(),
    }
