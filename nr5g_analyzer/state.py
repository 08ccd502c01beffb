"""Aggregate analyzer session state and patch application.

AnalyzerState is immutable; every change produces a new instance through
apply_patch, so a reader holding a state reference never sees a torn write.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from nr5g_analyzer.config import AnalyzerConfig
from nr5g_analyzer.dsp.spectrum import SpectrumAnalysis, SpectrumPoint, generate_spectrum_trace
from nr5g_analyzer.history import (
    EventLogEntry,
    MeasurementLogEntry,
    TraceMemory,
    create_trace_memory,
    utc_now,
)
from nr5g_analyzer.markers import Marker
from nr5g_analyzer.measurements import MEASUREMENT_SPECS, Measurement, create_measurement_snapshot

CONNECTION_STATES = ("disconnected", "connecting", "connected")
ACQUISITION_STATES = ("idle", "armed", "capturing")

DEFAULT_SEED = 0x9E3779B9
DEFAULT_TRACE_POINTS = 256


@dataclass(frozen=True)
class AnalyzerState:
    model: str = "T&M SPAX3044"
    serial: str = "1023.0012K03/203"
    firmware: str = "1.08.3"
    connection_state: str = "disconnected"
    acquisition_state: str = "idle"
    last_sync: Optional[datetime] = None
    config: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    measurements: Tuple[Measurement, ...] = ()
    spectrum: Tuple[SpectrumPoint, ...] = ()
    markers: Tuple[Marker, ...] = ()
    marker_auto_peak_search: bool = True
    trace_memories: Tuple[TraceMemory, ...] = ()
    event_log: Tuple[EventLogEntry, ...] = ()
    measurement_log: Tuple[MeasurementLogEntry, ...] = ()
    # Derived statistics for the current spectrum.
    analysis: Optional[SpectrumAnalysis] = None
    # Fields delivered by a bridge state patch that this engine does not model.
    extras: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def connected(self) -> bool:
        return self.connection_state == "connected"

    @property
    def capturing(self) -> bool:
        return self.connected and self.acquisition_state == "capturing"


STATE_FIELDS = frozenset(f.name for f in fields(AnalyzerState))
_TUPLE_FIELDS = {"measurements", "spectrum", "markers", "trace_memories", "event_log", "measurement_log"}


def apply_patch(state: AnalyzerState, patch: Mapping[str, Any]) -> AnalyzerState:
    """
    Return a new state with the patch applied.

    Each key replaces the whole field, except ``config`` (a partial mapping is
    merged into the current config) and ``extras`` (merged key by key).
    """

    unknown = set(patch) - STATE_FIELDS
    if unknown:
        raise KeyError(f"Unknown state fields: {sorted(unknown)}")
    changes = {}
    for key, value in patch.items():
        if key == "config" and not isinstance(value, AnalyzerConfig):
            value = state.config.merged(value)
        elif key == "extras":
            value = MappingProxyType({**state.extras, **value})
        elif key in _TUPLE_FIELDS:
            value = tuple(value)
        elif key == "connection_state" and value not in CONNECTION_STATES:
            raise ValueError(f"Invalid connection state: {value!r}")
        elif key == "acquisition_state" and value not in ACQUISITION_STATES:
            raise ValueError(f"Invalid acquisition state: {value!r}")
        changes[key] = value
    return replace(state, **changes)


def create_initial_state(
    seed: int = DEFAULT_SEED,
    trace_points: int = DEFAULT_TRACE_POINTS,
    now: Optional[datetime] = None,
) -> AnalyzerState:
    config = AnalyzerConfig()
    now = now or utc_now()
    spectrum = generate_spectrum_trace(config.center_frequency_ghz, config.span_ghz, trace_points, seed=seed)

    # Reference captures shown as history before the first live capture.
    reference_captures = (
        (
            replace(config, span_ghz=2.0, analysis_bandwidth_ghz=2.0, trigger_mode="video", path_mode="correlation"),
            111,
            "Correlation capture",
            7,
        ),
        (
            replace(config, center_frequency_ghz=24.0, span_ghz=4.0, analysis_bandwidth_ghz=4.0, path_mode="2RF"),
            222,
            "Dual-path capture",
            9,
        ),
        (
            replace(config, center_frequency_ghz=18.0, span_ghz=3.0, analysis_bandwidth_ghz=3.0, path_mode="1RF"),
            333,
            "Single-path capture",
            12,
        ),
    )
    memories = []
    for memory_config, memory_seed, name, minutes_ago in reference_captures:
        captured_at = now - timedelta(minutes=minutes_ago)
        trace = generate_spectrum_trace(
            memory_config.center_frequency_ghz,
            memory_config.span_ghz,
            trace_points,
            seed=memory_seed,
        )
        memories.append(
            create_trace_memory(
                trace,
                memory_config,
                label=f"{name} • {captured_at:%H:%M:%S}",
                captured_at=captured_at,
            )
        )

    return AnalyzerState(
        config=config,
        measurements=tuple(create_measurement_snapshot(spec) for spec in MEASUREMENT_SPECS),
        spectrum=spectrum,
        # Oldest first, matching append order.
        trace_memories=tuple(sorted(memories, key=lambda memory: memory.captured_at)),
    )
