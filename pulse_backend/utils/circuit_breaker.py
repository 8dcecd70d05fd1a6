# pulse_backend/utils/circuit_breaker.py
"""
Circuit breaker for upstream providers.

CLOSED: calls pass through; consecutive failures are counted.
OPEN: calls fail fast until reset_timeout_ms has elapsed.
HALF_OPEN: trial calls pass; success_threshold successes close the circuit,
any failure re-opens it.
"""
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Tuple, Type

from .clock import Clock, now_ms
from .logger import log


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised instead of calling through while the circuit is open."""

    def __init__(self, name: str):
        super().__init__(f"Circuit breaker {name} is open")
        self.name = name


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout_ms: int = 60_000


class CircuitBreaker:
    """
    Exceptions listed in ignored_exceptions still propagate, but count as a
    completed call: the upstream answered, so the circuit treats it as a success.
    """

    def __init__(self, name: str, config: CircuitBreakerConfig = CircuitBreakerConfig(),
                 clock: Clock = now_ms,
                 ignored_exceptions: Tuple[Type[BaseException], ...] = ()):
        self.name = name
        self.config = config
        self.ignored_exceptions = ignored_exceptions
        self._clock = clock
        self._lock = Lock()
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.successes = 0
        self.last_failure = 0
        self.last_state_change = clock()

    def _transition_to(self, new_state: CircuitState) -> None:
        if self.state == new_state:
            return
        log(f"[CircuitBreaker:{self.name}] State transition: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.last_state_change = self._clock()
        if new_state == CircuitState.CLOSED:
            self.failures = 0
            self.successes = 0
        elif new_state == CircuitState.HALF_OPEN:
            self.successes = 0

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._clock() - self.last_state_change >= self.config.reset_timeout_ms:
                    self._transition_to(CircuitState.HALF_OPEN)
                    return True
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.CLOSED:
                self.failures = 0
            elif self.state == CircuitState.HALF_OPEN:
                self.successes += 1
                if self.successes >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.last_failure = self._clock()
            if self.state == CircuitState.CLOSED and self.failures >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)
            elif self.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run func through the breaker.

        Raises:
            CircuitOpenError: if the circuit is open
        """
        if not self.can_execute():
            raise CircuitOpenError(self.name)
        try:
            result = func(*args, **kwargs)
        except self.ignored_exceptions:
            self.record_success()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def info(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self.state.value,
                "failures": self.failures,
                "successes": self.successes,
                "lastFailure": self.last_failure,
                "lastStateChange": self.last_state_change,
            }
