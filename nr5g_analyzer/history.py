"""Bounded session history: event log, measurement log, trace memory.

Entries are immutable once created; eviction of the oldest entries is the
only way they leave a buffer.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple, TypeVar

from nr5g_analyzer.config import AnalyzerConfig
from nr5g_analyzer.dsp.spectrum import SpectrumPoint, compute_noise_floor

T = TypeVar("T")

TRACE_MEMORY_LIMIT = 6
EVENT_LOG_LIMIT = 60
MEASUREMENT_LOG_LIMIT = 120

LOG_LEVELS = ("info", "warning", "error")

# Sentinel amplitude for captures without samples.
EMPTY_TRACE_DBM = -200.0


def append_with_limit(items: Sequence[T], next_item: T, limit: int) -> Tuple[T, ...]:
    combined = (*items, next_item)
    return combined[-limit:] if len(combined) > limit else combined


def append_many_with_limit(items: Sequence[T], next_items: Iterable[T], limit: int) -> Tuple[T, ...]:
    extra = tuple(next_items)
    if not extra:
        return tuple(items)
    combined = (*items, *extra)
    return combined[-limit:] if len(combined) > limit else combined


def create_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EventLogEntry:
    id: str
    timestamp: datetime
    level: str
    source: str
    message: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class MeasurementLogEntry:
    id: str
    timestamp: datetime
    measurement_id: str
    label: str
    value: str
    status: str
    unit: Optional[str] = None
    delta: Optional[str] = None


@dataclass(frozen=True)
class TraceMemory:
    """Summary statistics of one completed capture."""

    id: str
    label: str
    captured_at: datetime
    peak_frequency_hz: float
    peak_amplitude_dbm: float
    noise_floor_dbm: float
    reference_level_dbm: float
    span_ghz: float
    path_mode: str


def create_event_log_entry(
    level: str,
    source: str,
    message: str,
    detail: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> EventLogEntry:
    if level not in LOG_LEVELS:
        raise ValueError(f"Unsupported log level: {level}")
    return EventLogEntry(
        id=create_id("log"),
        timestamp=timestamp or utc_now(),
        level=level,
        source=source,
        message=message,
        detail=detail,
    )


def create_trace_memory(
    trace: Sequence[SpectrumPoint],
    config: AnalyzerConfig,
    label: str,
    captured_at: datetime,
) -> TraceMemory:
    memory_id = f"trace-{uuid.uuid4().hex[:8]}"
    if not trace:
        return TraceMemory(
            id=memory_id,
            label=label,
            captured_at=captured_at,
            peak_frequency_hz=config.center_frequency_ghz * 1e9,
            peak_amplitude_dbm=EMPTY_TRACE_DBM,
            noise_floor_dbm=EMPTY_TRACE_DBM,
            reference_level_dbm=config.reference_level_dbm,
            span_ghz=config.span_ghz,
            path_mode=config.path_mode,
        )

    # First maximum wins on ties.
    peak = trace[0]
    for point in trace[1:]:
        if point.amplitude > peak.amplitude:
            peak = point
    floor = compute_noise_floor(trace)
    return TraceMemory(
        id=memory_id,
        label=label,
        captured_at=captured_at,
        peak_frequency_hz=peak.frequency,
        peak_amplitude_dbm=round(peak.amplitude, 1),
        noise_floor_dbm=round(EMPTY_TRACE_DBM if floor is None else floor, 1),
        reference_level_dbm=config.reference_level_dbm,
        span_ghz=config.span_ghz,
        path_mode=config.path_mode,
    )
