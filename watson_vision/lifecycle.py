"""Process-lifetime shared state: the stop signal, clock sync, and shutdown."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClockSnapshot:
    server_time_us: int
    observed_at: float  # time.monotonic() when server_time_us was read


class ClockSync:
    """Latest (server clock, local instant) pairing, written by the network loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot: Optional[ClockSnapshot] = None

    def update(self, server_time_us: int, observed_at: Optional[float] = None) -> None:
        if observed_at is None:
            observed_at = time.monotonic()
        with self._lock:
            self._snapshot = ClockSnapshot(int(server_time_us), observed_at)

    def snapshot(self) -> Optional[ClockSnapshot]:
        with self._lock:
            return self._snapshot

    def estimate_server_time(self, local_instant: float) -> Optional[int]:
        snap = self.snapshot()
        if snap is None:
            return None
        return snap.server_time_us + int(round((local_instant - snap.observed_at) * 1_000_000))

    def sample_time(self, local_instant: float) -> int:
        """Server time at ``local_instant`` as the 32-bit wire value, 0 if unsynced."""
        estimate = self.estimate_server_time(local_instant)
        if estimate is None:
            return 0
        return estimate & 0xFFFFFFFF


class Lifecycle:
    """Stop signal, clock sync, and the supervisor's thread, handed to every component."""

    def __init__(self) -> None:
        self.stop_event = threading.Event()
        self.clock = ClockSync()
        self._lock = threading.Lock()
        self._supervisor_thread: Optional[threading.Thread] = None

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self) -> None:
        self.stop_event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if the stop signal was set meanwhile."""
        return self.stop_event.wait(timeout)

    def start_supervisor(self, supervisor) -> threading.Thread:
        with self._lock:
            if self._supervisor_thread is not None:
                raise RuntimeError("supervisor already started")
            thread = threading.Thread(target=supervisor.run, name="frame-pipeline", daemon=True)
            self._supervisor_thread = thread
        thread.start()
        return thread

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Set the stop signal and wait for the supervisor to release its device."""
        self.request_stop()
        with self._lock:
            thread = self._supervisor_thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        if thread.is_alive():
            logger.error("frame pipeline did not stop within %.1fs", timeout or 0.0)
            return False
        logger.info("frame pipeline stopped")
        return True
