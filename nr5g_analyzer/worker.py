"""Worker thread for offloaded spectrum analysis.

Runs heavy trace analysis off the caller's thread. Only one request is
pending at a time: a new request supersedes a queued one, and the superseded
future is cancelled. This module must not import engine or server classes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Optional, Tuple

from nr5g_analyzer.dsp.computer import SpectrumRequest
from nr5g_analyzer.dsp.spectrum import SpectrumAnalysis

logger = logging.getLogger(__name__)

ProcessFn = Callable[[SpectrumRequest], SpectrumAnalysis]


class SpectrumWorker(threading.Thread):
    def __init__(self, process: ProcessFn):
        super().__init__(daemon=True, name="spectrum-worker")
        self._process = process
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._running = threading.Event()
        self._running.set()
        self._pending: Optional[Tuple[SpectrumRequest, Future]] = None

    def stop(self) -> None:
        self._running.clear()
        self._wakeup.set()
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is not None:
            pending[1].cancel()

    def queue_request(self, request: SpectrumRequest) -> "Future[SpectrumAnalysis]":
        if not self._running.is_set():
            raise RuntimeError("Spectrum worker is stopped")
        future: Future[SpectrumAnalysis] = Future()
        with self._lock:
            superseded, self._pending = self._pending, (request, future)
        if superseded is not None:
            # Never started, so nothing will resolve it.
            superseded[1].cancel()
        self._wakeup.set()
        return future

    def run(self) -> None:
        while self._running.is_set():
            self._wakeup.wait()
            with self._lock:
                pending, self._pending = self._pending, None
                self._wakeup.clear()
            if pending is None:
                continue
            request, future = pending
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = self._process(request)
            except Exception as exc:
                logger.warning("Spectrum worker failed on %d points: %s", len(request.points), exc)
                future.set_exception(exc)
                continue
            future.set_result(result)
