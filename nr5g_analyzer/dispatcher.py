"""Inline/offloaded dispatch of spectrum analysis.

Small traces are analysed synchronously on the caller's thread. Traces at or
above the offload threshold go to the worker computer and resolve later.
Every submission gets a monotonic generation number so callers can drop
results for traces that are no longer current.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import replace
from typing import Optional, Tuple

from nr5g_analyzer.dsp.computer import (
    InlineSpectrumComputer,
    SpectrumComputer,
    SpectrumRequest,
    WorkerSpectrumComputer,
)
from nr5g_analyzer.dsp.spectrum import SpectrumAnalysis

logger = logging.getLogger(__name__)

DEFAULT_OFFLOAD_THRESHOLD = 1000


class SpectrumDispatcher:
    """Chooses an execution path per submission and tags results with a generation."""

    def __init__(
        self,
        offload_threshold: int = DEFAULT_OFFLOAD_THRESHOLD,
        offloaded: Optional[SpectrumComputer] = None,
        inline: Optional[InlineSpectrumComputer] = None,
    ):
        self.offload_threshold = int(offload_threshold)
        self._inline = inline or InlineSpectrumComputer()
        self._offloaded = offloaded if offloaded is not None else WorkerSpectrumComputer()
        self._lock = threading.Lock()
        self._generation = 0
        self._active: SpectrumComputer = self._inline

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def active_path(self) -> str:
        """Name of the path used for the most recent submission."""

        return self._active.name

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def invalidate(self) -> int:
        """Mark every outstanding submission stale."""

        with self._lock:
            self._generation += 1
            return self._generation

    def select(self, point_count: int) -> SpectrumComputer:
        if point_count >= self.offload_threshold and self._offloaded.available:
            return self._offloaded
        return self._inline

    def compute_inline(self, request: SpectrumRequest) -> Tuple[int, SpectrumAnalysis]:
        generation = self.invalidate()
        self._active = self._inline
        return generation, replace(self._inline.compute(request), generation=generation)

    def submit(self, request: SpectrumRequest) -> "Tuple[int, Future[SpectrumAnalysis]]":
        """
        Analyse a trace and return (generation, future).

        The future is already resolved for the inline path. Offloaded failures
        are recomputed inline, so the future never carries an exception. It is
        cancelled when the request was superseded before producing a result.
        """

        computer = self.select(len(request.points))
        if computer is self._inline:
            generation, result = self.compute_inline(request)
            future: Future[SpectrumAnalysis] = Future()
            future.set_result(result)
            return generation, future

        generation = self.invalidate()
        self._active = computer
        outer: Future[SpectrumAnalysis] = Future()
        try:
            inner = computer.submit(request)
        except Exception as exc:
            logger.warning("Offloaded analysis unavailable (%s); computing inline", exc)
            self._active = self._inline
            outer.set_result(replace(self._inline.compute(request), generation=generation))
            return generation, outer
        inner.add_done_callback(lambda done: self._resolve(generation, request, done, outer))
        return generation, outer

    def _resolve(
        self,
        generation: int,
        request: SpectrumRequest,
        inner: "Future[SpectrumAnalysis]",
        outer: "Future[SpectrumAnalysis]",
    ) -> None:
        if inner.cancelled():
            outer.cancel()
            return
        exc = inner.exception()
        if exc is None:
            outer.set_result(replace(inner.result(), generation=generation))
            return
        if not self.is_current(generation):
            outer.cancel()
            return
        logger.warning("Offloaded analysis failed (%s); computing inline", exc)
        outer.set_result(replace(self._inline.compute(request), generation=generation))

    def close(self) -> None:
        self.invalidate()
        self._offloaded.close()
        self._inline.close()
