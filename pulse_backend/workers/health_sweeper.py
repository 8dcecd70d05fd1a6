# pulse_backend/workers/health_sweeper.py
"""
Background sweep for the provider health tracker.

Runs the tracker's recalculation on a fixed interval in a daemon thread so
stale errors decay and expired rate limits clear even when no new outcomes
are recorded.
"""
import threading
from typing import Callable, Optional

from ..utils.logger import log


class HealthSweeper:
    """Daemon thread that calls sweep() every interval_seconds until stopped."""

    def __init__(self, sweep: Callable[[], bool], interval_seconds: float = 30.0,
                 name: str = "provider-health-sweeper"):
        self.interval_seconds = interval_seconds
        self._sweep = sweep
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._name = name
        self.cycles = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        log(f"Health sweeper started (interval: {self.interval_seconds}s)", "DEBUG")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Signal the loop to exit.

        Args:
            timeout: If given, wait up to this many seconds for the thread to exit.
                Must not be used while holding a lock the sweep needs.
        """
        self._stop_event.set()
        thread = self._thread
        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                changed = self._sweep()
                self.cycles += 1
                if changed:
                    log("Provider health recalculated after sweep", "DEBUG")
            except Exception as e:
                log(f"❌ Health sweep error: {e}", "ERROR")
