"""Timers that drive the simulated acquisition loop.

IntervalTimer is a small pacing thread; CaptureScheduler owns the connect
delay, the capture-cycle timer, and the heartbeat timer for one engine.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IntervalTimer(threading.Thread):
    def __init__(self, interval_s: float, callback: Callable[[], None], name: str = "interval-timer"):
        super().__init__(daemon=True, name=name)
        self.interval_s = float(interval_s)
        self._callback = callback
        self._stopped = threading.Event()

    def stop(self) -> None:
        # Does not join; a callback already running finishes on its own.
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def run(self) -> None:
        while not self._stopped.wait(self.interval_s):
            try:
                self._callback()
            except Exception:
                logger.exception("%s callback failed", self.name)


class CaptureScheduler:
    """Starts and cancels the engine's timers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connect_timer: Optional[threading.Timer] = None
        self._capture_timer: Optional[IntervalTimer] = None
        self._heartbeat_timer: Optional[IntervalTimer] = None

    @property
    def capture_running(self) -> bool:
        return self._capture_timer is not None

    def schedule_connect(self, delay_s: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._connect_timer is not None:
                self._connect_timer.cancel()
            timer = threading.Timer(delay_s, callback)
            timer.daemon = True
            self._connect_timer = timer
        timer.start()

    def cancel_connect(self) -> None:
        with self._lock:
            timer, self._connect_timer = self._connect_timer, None
        if timer is not None:
            timer.cancel()

    def start_capture(
        self,
        capture_interval_s: float,
        on_capture: Callable[[], None],
        heartbeat_interval_s: float,
        on_heartbeat: Callable[[], None],
    ) -> None:
        with self._lock:
            if self._capture_timer is not None:
                return
            self._capture_timer = IntervalTimer(capture_interval_s, on_capture, name="capture-timer")
            self._heartbeat_timer = IntervalTimer(heartbeat_interval_s, on_heartbeat, name="heartbeat-timer")
            self._capture_timer.start()
            self._heartbeat_timer.start()

    def stop_capture(self) -> None:
        with self._lock:
            timers = (self._capture_timer, self._heartbeat_timer)
            self._capture_timer = None
            self._heartbeat_timer = None
        for timer in timers:
            if timer is not None:
                timer.stop()

    def close(self) -> None:
        self.cancel_connect()
        self.stop_capture()
