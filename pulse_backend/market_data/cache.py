# pulse_backend/market_data/cache.py
"""
In-memory TTL cache for market data.
- One TTL per cache instance (not per entry)
- Deterministic keys built from ordered parts
- A façade partitions quotes, candles and technical series
"""
from typing import Any, Dict, List, Optional, Tuple
from threading import Lock

from ..utils.clock import Clock, now_ms

KEY_SEPARATOR = "::"


def make_cache_key(*parts: Any) -> str:
    """
    Join ordered key parts with the fixed separator.

    Raises:
        ValueError: if no parts are given or a part contains the separator
    """
    if not parts:
        raise ValueError("cache key needs at least one part")
    str_parts = [str(part) for part in parts]
    for part in str_parts:
        if KEY_SEPARATOR in part:
            raise ValueError(f"cache key part {part!r} contains separator {KEY_SEPARATOR!r}")
    return KEY_SEPARATOR.join(str_parts)


class TTLCache:
    """
    Thread-safe key/value store where every entry expires ttl_ms after insertion.
    """

    def __init__(self, ttl_ms: int = 60_000, clock: Clock = now_ms):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._store: Dict[str, Tuple[int, Any]] = {}  # key -> (stored_at, value)
        self._lock = Lock()

    def _is_valid(self, stored_at: int, now: int) -> bool:
        return now - stored_at < self.ttl_ms

    def get(self, key: str) -> Optional[Any]:
        """Return the value if present and fresh; expired entries are evicted."""
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            stored_at, value = item
            if not self._is_valid(stored_at, self._clock()):
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._store[key] = (self._clock(), value)

    def is_fresh(self, key: str) -> bool:
        """True iff an entry exists and is within TTL. Never evicts."""
        with self._lock:
            item = self._store.get(key)
            return item is not None and self._is_valid(item[0], self._clock())

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def invalidate_pattern(self, substring: str) -> int:
        """
        Remove every entry whose key contains substring.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [key for key in self._store if substring in key]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def invalidate_segment(self, segment: str) -> int:
        """
        Remove every entry with a key part exactly equal to segment.

        Unlike invalidate_pattern, "A" does not match "BA" or "AAPL".
        """
        with self._lock:
            doomed = [key for key in self._store if segment in key.split(KEY_SEPARATOR)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def cleanup_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        with self._lock:
            now = self._clock()
            doomed = [key for key, (stored_at, _) in self._store.items() if not self._is_valid(stored_at, now)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def size(self) -> int:
        with self._lock:
            return len(self._store)


class MarketDataCache:
    """
    Category façade over three independently configured TTL caches:
    live quotes (short TTL), candle series and technical series (medium TTL).
    """

    QUOTE = "quote"
    CANDLES = "candles"
    TECHNICAL = "technical"

    def __init__(
        self,
        quotes_ttl_ms: int = 30_000,
        candles_ttl_ms: int = 300_000,
        technical_ttl_ms: int = 300_000,
        clock: Clock = now_ms,
    ):
        self.quotes = TTLCache(quotes_ttl_ms, clock)
        self.candles = TTLCache(candles_ttl_ms, clock)
        self.technical = TTLCache(technical_ttl_ms, clock)

    @staticmethod
    def _symbol(symbol: str) -> str:
        return symbol.strip().upper()

    # Quotes (one entry per symbol)
    def quote_key(self, symbol: str) -> str:
        return make_cache_key(self.QUOTE, self._symbol(symbol))

    def get_quote(self, symbol: str) -> Optional[Any]:
        return self.quotes.get(self.quote_key(symbol))

    def set_quote(self, symbol: str, quote: Any) -> None:
        self.quotes.set(self.quote_key(symbol), quote)

    def is_quote_fresh(self, symbol: str) -> bool:
        return self.quotes.is_fresh(self.quote_key(symbol))

    # Candles (per symbol and timeframe)
    def candles_key(self, symbol: str, timeframe: str) -> str:
        return make_cache_key(self.CANDLES, self._symbol(symbol), timeframe)

    def get_candles(self, symbol: str, timeframe: str) -> Optional[Any]:
        return self.candles.get(self.candles_key(symbol, timeframe))

    def set_candles(self, symbol: str, timeframe: str, candles: Any) -> None:
        self.candles.set(self.candles_key(symbol, timeframe), candles)

    def is_candles_fresh(self, symbol: str, timeframe: str) -> bool:
        return self.candles.is_fresh(self.candles_key(symbol, timeframe))

    # Technical-indicator series (per symbol)
    def technical_key(self, symbol: str) -> str:
        return make_cache_key(self.TECHNICAL, self._symbol(symbol))

    def get_technical(self, symbol: str) -> Optional[Any]:
        return self.technical.get(self.technical_key(symbol))

    def set_technical(self, symbol: str, series: Any) -> None:
        self.technical.set(self.technical_key(symbol), series)

    def is_technical_fresh(self, symbol: str) -> bool:
        return self.technical.is_fresh(self.technical_key(symbol))

    def _partitions(self) -> List[TTLCache]:
        return [self.quotes, self.candles, self.technical]

    def invalidate_symbol(self, symbol: str) -> int:
        """Drop everything cached for one symbol across all categories."""
        segment = self._symbol(symbol)
        return sum(cache.invalidate_segment(segment) for cache in self._partitions())

    def force_refresh(self) -> None:
        """Clear all three partitions."""
        for cache in self._partitions():
            cache.clear()

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            "quotes": {"entries": self.quotes.size(), "ttl_ms": self.quotes.ttl_ms},
            "candles": {"entries": self.candles.size(), "ttl_ms": self.candles.ttl_ms},
            "technical": {"entries": self.technical.size(), "ttl_ms": self.technical.ttl_ms},
        }
