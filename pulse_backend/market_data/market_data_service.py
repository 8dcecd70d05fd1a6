# pulse_backend/market_data/market_data_service.py
"""
Market data access for the dashboard.

Every read goes through the category cache first. On a miss the upstream
client is called behind a circuit breaker with exponential backoff for
transient failures, and the outcome is reported to the provider health
tracker so the status banner reflects what callers are experiencing.
"""
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .cache import MarketDataCache
from .indicators import calculate_ema, calculate_rsi, calculate_sma
from .provider_health import ProviderHealthTracker, ProviderName
from .types import (
    Candle,
    MarketDataError,
    ProviderRateLimitError,
    Quote,
    QuotesResponse,
    SymbolNotFoundError,
    TechnicalSeries,
    TransientMarketDataError,
)
from ..utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from ..utils.exponential_backoff import retry_with_backoff
from ..utils.logger import log

TECHNICAL_TIMEFRAME = "1d"


class MarketDataService:
    PROVIDER = ProviderName.MARKET_DATA

    def __init__(
        self,
        client,
        cache: MarketDataCache,
        health: ProviderHealthTracker,
        breaker: Optional[CircuitBreaker] = None,
        max_retries: int = 2,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.client = client
        self.cache = cache
        self.health = health
        self.breaker = breaker or CircuitBreaker(self.PROVIDER.value, ignored_exceptions=(SymbolNotFoundError,))
        self.max_retries = max_retries
        self._sleep = sleep

    def _call_upstream(self, func: Callable[..., Any], *args) -> Any:
        """Run one upstream call and report its outcome to the health tracker."""
        def fetch():
            return retry_with_backoff(
                func, *args,
                max_retries=self.max_retries,
                exceptions=(TransientMarketDataError,),
                sleep=self._sleep,
            )

        # CircuitOpenError propagates without touching health: nothing was called
        try:
            result = self.breaker.call(fetch)
        except SymbolNotFoundError:
            # The provider answered; an unknown ticker is the caller's problem
            self.health.record_success(self.PROVIDER)
            raise
        except ProviderRateLimitError as e:
            self.health.record_rate_limit(self.PROVIDER, e.reset_in_ms)
            raise
        except MarketDataError as e:
            self.health.record_error(self.PROVIDER, str(e))
            raise
        self.health.record_success(self.PROVIDER)
        return result

    @staticmethod
    def _normalize(symbols: Sequence[str]) -> List[str]:
        seen: Dict[str, None] = {}
        for symbol in symbols:
            cleaned = symbol.strip().upper()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)

    def get_quotes(self, symbols: Sequence[str]) -> QuotesResponse:
        """
        Quotes for symbols, fetching only those not freshly cached.

        A failure for one symbol is reported in errors; rate limits and an
        open circuit abort the whole request since later calls would fail too.
        Unknown symbols never count against the provider or the circuit.
        """
        quotes: List[Quote] = []
        errors: Dict[str, str] = {}
        for symbol in self._normalize(symbols):
            cached = self.cache.get_quote(symbol)
            if cached is not None:
                quotes.append(cached)
                continue
            try:
                quote = self._call_upstream(self.client.get_quote, symbol)
            except (ProviderRateLimitError, CircuitOpenError):
                raise
            except MarketDataError as e:
                errors[symbol] = str(e)
                continue
            self.cache.set_quote(symbol, quote)
            quotes.append(quote)
        return QuotesResponse(quotes=quotes, errors=errors)

    def get_candles(self, symbol: str, timeframe: str = "1d") -> List[Candle]:
        symbol = symbol.strip().upper()
        cached = self.cache.get_candles(symbol, timeframe)
        if cached is not None:
            return cached
        candles = self._call_upstream(self.client.get_candles, symbol, timeframe)
        self.cache.set_candles(symbol, timeframe, candles)
        return candles

    def get_technical_series(self, symbol: str) -> TechnicalSeries:
        """Daily candles plus SMA(20), EMA(20) and RSI(14) of the closes."""
        symbol = symbol.strip().upper()
        cached = self.cache.get_technical(symbol)
        if cached is not None:
            return cached

        candles = self._call_upstream(self.client.get_candles, symbol, TECHNICAL_TIMEFRAME)
        candles = sorted(candles, key=lambda candle: candle.timestamp)
        closes = [candle.close for candle in candles]
        series = TechnicalSeries(
            symbol=symbol,
            candles=candles,
            sma_20=calculate_sma(closes, 20),
            ema_20=calculate_ema(closes, 20),
            rsi_14=calculate_rsi(closes, 14),
        )
        self.cache.set_technical(symbol, series)
        return series

    def invalidate_symbol(self, symbol: str) -> int:
        removed = self.cache.invalidate_symbol(symbol)
        log(f"Invalidated {removed} cache entries for {symbol.upper()}", "DEBUG")
        return removed

    def force_refresh(self) -> None:
        self.cache.force_refresh()
        log("Market data cache cleared (force refresh)")
