# pulse_backend/market_data/provider_health.py
"""
Provider health tracking.

Turns a stream of per-call outcomes (success, error, rate limit) for each
external provider into a three-level status plus a global worst-of status.
Errors must accumulate past a threshold inside a time window before a
provider degrades, and recovery is gradual: each success forgives one
error, and a provider that has only succeeded for RECOVERY_TIME_MS is
reset by the periodic sweep.

One tracker is built by the app factory and shared by every consumer; the
app lifespan starts its sweep. Observers subscribe for synchronous change
notification.
"""
import itertools
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..utils.clock import Clock, now_ms
from ..utils.logger import log_warning, log_error
from ..workers.health_sweeper import HealthSweeper


class ProviderName(str, Enum):
    MARKET_DATA = "market-data"
    AI_FEATURES = "ai-features"
    NEWS = "news"
    FUNDAMENTALS = "fundamentals"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


class UnknownProviderError(ValueError):
    """A provider name outside the fixed set was passed to the tracker."""

    def __init__(self, provider: object, known: Iterable["ProviderName"]):
        known_names = ", ".join(p.value for p in known)
        super().__init__(f"Unknown provider {provider!r}; expected one of: {known_names}")
        self.provider = provider


@dataclass(frozen=True)
class HealthThresholds:
    error_threshold_degraded: int = 2
    error_threshold_unhealthy: int = 5
    error_window_ms: int = 300_000
    recovery_time_ms: int = 120_000
    sweep_interval_ms: int = 30_000

    @classmethod
    def from_settings(cls, settings) -> "HealthThresholds":
        return cls(
            error_threshold_degraded=settings.error_threshold_degraded,
            error_threshold_unhealthy=settings.error_threshold_unhealthy,
            error_window_ms=settings.error_window_ms,
            recovery_time_ms=settings.recovery_time_ms,
            sweep_interval_ms=settings.health_sweep_interval_ms,
        )


@dataclass
class ProviderHealth:
    status: HealthStatus = HealthStatus.HEALTHY
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[int] = None
    last_success_time: Optional[int] = None
    rate_limited: bool = False
    rate_limit_reset_time: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "errorCount": self.error_count,
            "lastError": self.last_error,
            "lastErrorTime": self.last_error_time,
            "lastSuccessTime": self.last_success_time,
            "rateLimited": self.rate_limited,
            "rateLimitResetTime": self.rate_limit_reset_time,
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Consistent copy of every provider record and the global status."""
    providers: Dict[ProviderName, ProviderHealth] = field(default_factory=dict)
    global_status: HealthStatus = HealthStatus.HEALTHY

    def degraded_providers(self) -> List[ProviderName]:
        return [name for name, health in self.providers.items() if health.status != HealthStatus.HEALTHY]

    def rate_limited_providers(self) -> List[ProviderName]:
        return [name for name, health in self.providers.items() if health.rate_limited]


Listener = Callable[[HealthSnapshot], None]


def calculate_status(error_count: int, last_error_time: Optional[int], now: int,
                     thresholds: HealthThresholds = HealthThresholds()) -> HealthStatus:
    """Status from the error count, recency of the last error, and the current time."""
    if last_error_time is None or now - last_error_time > thresholds.error_window_ms:
        return HealthStatus.HEALTHY
    if error_count >= thresholds.error_threshold_unhealthy:
        return HealthStatus.UNHEALTHY
    if error_count >= thresholds.error_threshold_degraded:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def calculate_global_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Worst status across providers; healthy when there are none."""
    worst = HealthStatus.HEALTHY
    for status in statuses:
        if status.severity > worst.severity:
            worst = status
    return worst


class ProviderHealthTracker:
    """
    Aggregates call outcomes per provider.

    Mutations and notifications happen under one re-entrant lock, so every
    listener receives snapshots in mutation order and never sees a record
    set that is half updated. Listeners may call the query methods.
    """

    def __init__(
        self,
        thresholds: Optional[HealthThresholds] = None,
        clock: Clock = now_ms,
        auto_sweep: bool = True,
        providers: Iterable[ProviderName] = tuple(ProviderName),
    ):
        self.thresholds = thresholds or HealthThresholds()
        self.auto_sweep = auto_sweep
        self._clock = clock
        self._records: Dict[ProviderName, ProviderHealth] = {p: ProviderHealth() for p in providers}
        self._global_status = HealthStatus.HEALTHY
        self._lock = RLock()
        self._listeners: Dict[int, Listener] = {}
        self._listener_ids = itertools.count()
        self._sweeper: Optional[HealthSweeper] = None
        self._started = False

    # ------------------------------------------------------------------ helpers

    def _resolve(self, provider: Union[str, ProviderName]) -> ProviderName:
        try:
            name = ProviderName(provider)
        except ValueError:
            raise UnknownProviderError(provider, self._records.keys()) from None
        if name not in self._records:
            raise UnknownProviderError(provider, self._records.keys())
        return name

    def _derive_status(self, record: ProviderHealth, now: int) -> HealthStatus:
        if record.rate_limited:
            return HealthStatus.DEGRADED
        return calculate_status(record.error_count, record.last_error_time, now, self.thresholds)

    def _snapshot_locked(self) -> HealthSnapshot:
        return HealthSnapshot(
            providers={name: replace(record) for name, record in self._records.items()},
            global_status=self._global_status,
        )

    def _publish_locked(self) -> None:
        self._global_status = calculate_global_status(r.status for r in self._records.values())
        if not self._listeners:
            return
        snapshot = self._snapshot_locked()
        for listener in list(self._listeners.values()):
            try:
                listener(snapshot)
            except Exception as e:
                log_error(f"Health listener failed: {e}", exc_info=True)

    # ----------------------------------------------------------------- mutations

    def record_error(self, provider: Union[str, ProviderName], message: str) -> None:
        name = self._resolve(provider)
        with self._lock:
            now = self._clock()
            record = self._records[name]
            record.error_count += 1
            record.last_error = message
            record.last_error_time = now
            record.status = self._derive_status(record, now)
            self._publish_locked()
            count = record.error_count
        log_warning(f"[ApiHealth] {name.value} error recorded: {message} (count: {count})")

    def record_success(self, provider: Union[str, ProviderName]) -> None:
        name = self._resolve(provider)
        with self._lock:
            now = self._clock()
            record = self._records[name]
            record.last_success_time = now
            if record.error_count > 0:
                record.error_count -= 1
                record.status = self._derive_status(record, now)
                self._publish_locked()

    def record_rate_limit(self, provider: Union[str, ProviderName], reset_in_ms: int) -> None:
        name = self._resolve(provider)
        with self._lock:
            record = self._records[name]
            record.rate_limited = True
            record.rate_limit_reset_time = self._clock() + max(0, int(reset_in_ms))
            record.status = HealthStatus.DEGRADED
            self._publish_locked()
        log_warning(f"[ApiHealth] {name.value} rate limited, resets in {reset_in_ms}ms")

    def recalculate(self) -> bool:
        """
        Sweep every provider: recover after a quiet period of successes,
        decay stale errors by one, and clear expired rate limits.

        Returns:
            True if any provider record changed
        """
        with self._lock:
            now = self._clock()
            changed = False
            for record in self._records.values():
                before = (record.error_count, record.status, record.rate_limited)

                if (record.last_success_time is not None
                        and record.last_error_time is not None
                        and record.last_success_time > record.last_error_time
                        and now - record.last_success_time > self.thresholds.recovery_time_ms):
                    record.error_count = 0

                # One step per sweep regardless of how long the error has been stale
                if record.last_error_time is not None and now - record.last_error_time > self.thresholds.error_window_ms:
                    record.error_count = max(0, record.error_count - 1)

                if record.rate_limit_reset_time is not None and now >= record.rate_limit_reset_time:
                    record.rate_limited = False
                    record.rate_limit_reset_time = None

                record.status = self._derive_status(record, now)
                if (record.error_count, record.status, record.rate_limited) != before:
                    changed = True

            if changed:
                self._publish_locked()
            return changed

    # ------------------------------------------------------------------- queries

    @property
    def global_status(self) -> HealthStatus:
        with self._lock:
            return self._global_status

    @property
    def providers(self) -> List[ProviderName]:
        return list(self._records.keys())

    def is_provider_healthy(self, provider: Union[str, ProviderName]) -> bool:
        name = self._resolve(provider)
        with self._lock:
            return self._records[name].status == HealthStatus.HEALTHY

    def get_provider_status(self, provider: Union[str, ProviderName]) -> ProviderHealth:
        """Return a copy; mutating it does not affect the tracker."""
        name = self._resolve(provider)
        with self._lock:
            return replace(self._records[name])

    def get_degraded_providers(self) -> List[ProviderName]:
        with self._lock:
            return [name for name, r in self._records.items() if r.status != HealthStatus.HEALTHY]

    def get_rate_limited_providers(self) -> List[ProviderName]:
        with self._lock:
            return [name for name, r in self._records.items() if r.rate_limited]

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return self._snapshot_locked()

    # ----------------------------------------------------------------- observers

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    @property
    def sweeper_running(self) -> bool:
        with self._lock:
            return self._sweeper is not None and self._sweeper.is_running

    def _ensure_sweeper_locked(self) -> None:
        if self.auto_sweep and self._sweeper is None:
            self._sweeper = HealthSweeper(
                self.recalculate,
                interval_seconds=self.thresholds.sweep_interval_ms / 1000.0,
            )
            self._sweeper.start()

    def start(self) -> None:
        """
        Keep the periodic sweep running until close(), with or without listeners.

        The app lifespan calls this so readers that poll the snapshot still see
        expired rate limits clear and stale errors decay.
        """
        with self._lock:
            self._started = True
            self._ensure_sweeper_locked()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with a HealthSnapshot after every change.

        The periodic sweep runs while at least one listener is registered,
        and for the whole lifetime of a started tracker.

        Returns:
            A callable that unregisters the listener (idempotent)
        """
        with self._lock:
            token = next(self._listener_ids)
            self._listeners[token] = listener
            self._ensure_sweeper_locked()

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)
                if not self._listeners and not self._started and self._sweeper is not None:
                    self._sweeper.stop()
                    self._sweeper = None

        return unsubscribe

    def close(self) -> None:
        """Drop all listeners and stop the sweeper."""
        with self._lock:
            self._listeners.clear()
            self._started = False
            sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.stop(timeout=1.0)
