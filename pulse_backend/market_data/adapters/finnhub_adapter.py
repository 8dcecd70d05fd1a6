# pulse_backend/market_data/adapters/finnhub_adapter.py
"""
Finnhub market data client.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..types import (
    Quote,
    Candle,
    MarketDataError,
    TransientMarketDataError,
    ProviderRateLimitError,
    SymbolNotFoundError,
)

DEFAULT_RATE_LIMIT_RESET_MS = 60_000

# Finnhub supports: 1, 5, 15, 30, 60, D, W, M
INTERVAL_MAP = {
    "1m": "1",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "1h": "60",
    "1d": "D",
    "1w": "W",
    "1M": "M",
}

# Lookback per timeframe when no explicit range is given
LOOKBACK = {
    "1m": timedelta(days=1),
    "5m": timedelta(days=5),
    "15m": timedelta(days=10),
    "30m": timedelta(days=20),
    "1h": timedelta(days=30),
    "1d": timedelta(days=365),
    "1w": timedelta(days=365 * 3),
    "1M": timedelta(days=365 * 10),
}


def _retry_after_ms(response: httpx.Response) -> int:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return DEFAULT_RATE_LIMIT_RESET_MS
    try:
        return max(0, int(float(raw) * 1000))
    except ValueError:
        return DEFAULT_RATE_LIMIT_RESET_MS


class FinnhubDataProvider:
    """Finnhub REST client for quotes and candles."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://finnhub.io/api/v1",
                 timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def is_available(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)

    def _make_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make a request to the Finnhub API."""
        if not self.is_available():
            raise MarketDataError("FINNHUB_API_KEY not configured (authentication unavailable)")

        params = dict(params or {})
        params["token"] = self.api_key
        url = f"{self.base_url}/{endpoint}"

        try:
            response = self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientMarketDataError(f"Finnhub request timed out: {e}")
        except httpx.TransportError as e:
            raise TransientMarketDataError(f"Finnhub network error: {e}")

        if response.status_code == 429:
            raise ProviderRateLimitError(
                "Finnhub rate limit exceeded. Please try again later.",
                reset_in_ms=_retry_after_ms(response),
            )
        if response.status_code in (401, 403):
            raise MarketDataError(f"Finnhub authentication failed ({response.status_code})")
        if response.status_code >= 500:
            raise TransientMarketDataError(f"Finnhub service unavailable: {response.status_code}")
        if response.status_code >= 400:
            raise MarketDataError(f"Finnhub API error: {response.status_code} - {response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise MarketDataError(f"Finnhub returned invalid JSON: {e}")

    def get_quote(self, symbol: str) -> Quote:
        """Get real-time quote for a symbol."""
        data = self._make_request("quote", {"symbol": symbol.upper()})

        # 'c' is current price; Finnhub answers unknown symbols with all zeros
        if not data or not data.get("c"):
            raise SymbolNotFoundError(f"Finnhub: no data for {symbol}", symbol.upper())

        current_price = float(data["c"])
        previous_close = float(data.get("pc") or current_price)
        change = current_price - previous_close
        change_percent = (change / previous_close * 100) if previous_close > 0 else 0.0
        ts = data.get("t")

        return Quote(
            symbol=symbol.upper(),
            price=current_price,
            timestamp=datetime.fromtimestamp(ts, tz=timezone.utc) if ts else datetime.now(timezone.utc),
            change=change,
            change_percent=change_percent,
            high=data.get("h"),
            low=data.get("l"),
            open=data.get("o"),
            previous_close=previous_close,
        )

    def get_candles(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Candle]:
        """
        Get historical OHLCV candles, sorted ascending by timestamp.

        Raises:
            MarketDataError: for unsupported timeframes
            SymbolNotFoundError: when no data is returned for the symbol
        """
        resolution = INTERVAL_MAP.get(timeframe)
        if resolution is None:
            raise MarketDataError(f"Unsupported timeframe: {timeframe}")

        end = end or datetime.now(timezone.utc)
        start = start or (end - LOOKBACK[timeframe])

        data = self._make_request("stock/candle", {
            "symbol": symbol.upper(),
            "resolution": resolution,
            "from": int(start.timestamp()),
            "to": int(end.timestamp()),
        })

        if data.get("s") != "ok":
            raise SymbolNotFoundError(f"Finnhub: no data for {symbol} ({timeframe})", symbol.upper())

        candles = [
            Candle(
                symbol=symbol.upper(),
                timestamp=datetime.fromtimestamp(t, tz=timezone.utc),
                open=float(o),
                high=float(h),
                low=float(l),
                close=float(c),
                volume=int(v),
            )
            for t, o, h, l, c, v in zip(data["t"], data["o"], data["h"], data["l"], data["c"], data["v"])
        ]
        candles.sort(key=lambda candle: candle.timestamp)
        return candles

    def close(self) -> None:
        self.client.close()
