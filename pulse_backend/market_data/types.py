# pulse_backend/market_data/types.py
"""
Type definitions for market data.
"""
from typing import Dict, Optional, List
from datetime import datetime
from pydantic import BaseModel


class Quote(BaseModel):
    """Live quote for a symbol."""
    symbol: str
    price: float
    timestamp: datetime
    change: Optional[float] = None  # Change from previous close
    change_percent: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None


class Candle(BaseModel):
    """OHLCV candle data."""
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int


class CandleResponse(BaseModel):
    """Response containing multiple candles."""
    symbol: str
    timeframe: str  # e.g., "1d", "1h", "15m"
    candles: List[Candle]


class TechnicalSeries(BaseModel):
    """Ascending daily candles plus the indicator series derived from them."""
    symbol: str
    candles: List[Candle]
    sma_20: List[float]
    ema_20: List[float]
    rsi_14: List[float]


class MarketDataError(Exception):
    """Base error for market data provider failures."""
    pass


class TransientMarketDataError(MarketDataError):
    """Timeouts, connection resets and 5xx responses; safe to retry."""
    pass


class SymbolNotFoundError(MarketDataError):
    """Upstream answered, but has no data for the requested symbol."""

    def __init__(self, message: str, symbol: str):
        super().__init__(message)
        self.symbol = symbol


class ProviderRateLimitError(MarketDataError):
    """Upstream answered 429."""

    def __init__(self, message: str, reset_in_ms: int = 60_000):
        super().__init__(message)
        self.reset_in_ms = reset_in_ms


class QuotesResponse(BaseModel):
    """Quotes that resolved plus per-symbol errors for the ones that did not."""
    quotes: List[Quote]
    errors: Dict[str, str] = {}
