"""Execution strategies for spectrum analysis.

A SpectrumComputer runs process_spectrum either on the calling thread or on a
background worker. Both variants call the same numeric core, so their results
are interchangeable.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional, Tuple

from nr5g_analyzer.dsp.spectrum import SpectrumAnalysis, SpectrumPoint, process_spectrum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpectrumRequest:
    """Self-contained analysis input; holds its own copy of the trace."""

    points: Tuple[SpectrumPoint, ...]
    width: Optional[float] = None
    height: Optional[float] = None
    compute_coords: bool = False


def run_request(request: SpectrumRequest) -> SpectrumAnalysis:
    return process_spectrum(
        request.points,
        width=request.width,
        height=request.height,
        compute_coords=request.compute_coords,
    )


class SpectrumComputer:
    """Interface shared by the inline and offloaded execution paths."""

    name = "base"

    @property
    def available(self) -> bool:
        return True

    def submit(self, request: SpectrumRequest) -> "Future[SpectrumAnalysis]":
        raise NotImplementedError

    def close(self) -> None:
        return None


class InlineSpectrumComputer(SpectrumComputer):
    """Runs the analysis synchronously and returns an already-completed future."""

    name = "inline"

    def compute(self, request: SpectrumRequest) -> SpectrumAnalysis:
        return run_request(request)

    def submit(self, request: SpectrumRequest) -> "Future[SpectrumAnalysis]":
        future: Future[SpectrumAnalysis] = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(self.compute(request))
        except Exception as exc:
            future.set_exception(exc)
        return future


class WorkerSpectrumComputer(SpectrumComputer):
    """Hands requests to a single background SpectrumWorker thread."""

    name = "worker"

    def __init__(self) -> None:
        self._worker = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def available(self) -> bool:
        return not self._closed

    def _ensure_worker(self):
        # Local import keeps the worker module out of inline-only processes.
        from nr5g_analyzer.worker import SpectrumWorker

        with self._lock:
            if self._closed:
                raise RuntimeError("Spectrum worker is closed")
            if self._worker is None or not self._worker.is_alive():
                self._worker = SpectrumWorker(run_request)
                self._worker.start()
                logger.debug("Started spectrum worker thread")
            return self._worker

    def submit(self, request: SpectrumRequest) -> "Future[SpectrumAnalysis]":
        worker = self._ensure_worker()
        return worker.queue_request(request)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop()
            worker.join(timeout=1.0)
