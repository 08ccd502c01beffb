"""Headless engine for the analyzer session.

Owns the AnalyzerState and is the only place it changes. Timers, bridge
callbacks, offloaded analysis results, and user commands all go through
Engine._update, which builds a patch and applies it under one lock.
"""

from __future__ import annotations

import logging
import random
import threading
from concurrent.futures import Future
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from nr5g_analyzer.bridge import BridgeConnection, SendResult
from nr5g_analyzer.config import (
    AnalyzerConfig,
    EngineSettings,
    coerce_config_patch,
    preset_config,
    summarize_config_changes,
)
from nr5g_analyzer.dispatcher import SpectrumDispatcher
from nr5g_analyzer.dsp.computer import SpectrumRequest
from nr5g_analyzer.dsp.spectrum import SpectrumAnalysis, SpectrumPoint, generate_spectrum_trace
from nr5g_analyzer.history import (
    EVENT_LOG_LIMIT,
    MEASUREMENT_LOG_LIMIT,
    TRACE_MEMORY_LIMIT,
    append_many_with_limit,
    append_with_limit,
    create_event_log_entry,
    create_trace_memory,
    utc_now,
)
from nr5g_analyzer.markers import add_marker, delete_marker, find_markers, move_marker
from nr5g_analyzer.measurements import perturb_measurements
from nr5g_analyzer.protocol import (
    AcquisitionMessage,
    ConfigMessage,
    HeartbeatMessage,
    InboundMessage,
    MeasurementsMessage,
    MessageParseError,
    MessageValidationError,
    SpectrumMessage,
    StateMessage,
    decode_inbound,
    make_command,
    make_config_update,
    make_handshake,
    make_preset_recall,
)
from nr5g_analyzer.scheduler import CaptureScheduler
from nr5g_analyzer.state import AnalyzerState, apply_patch, create_initial_state

logger = logging.getLogger(__name__)

StateCallback = Callable[[AnalyzerState], None]
Patch = Dict[str, Any]

_LOG_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class Engine:
    """Owns session state, the acquisition loop, and the bridge lifecycle."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        scheduler: Optional[CaptureScheduler] = None,
        dispatcher: Optional[SpectrumDispatcher] = None,
        bridge_factory: Optional[Callable[..., BridgeConnection]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or EngineSettings()
        self._lock = threading.RLock()
        self._committing = False
        self._building = False
        # Analysis results that resolved while a patch was being built.
        self._deferred: list[SpectrumAnalysis] = []
        self._last_capture_log_at: Optional[datetime] = None
        self._scheduler = scheduler or CaptureScheduler()
        self._dispatcher = dispatcher or SpectrumDispatcher(self.settings.offload_threshold)
        self._bridge_factory = bridge_factory or BridgeConnection
        self._clock = clock or utc_now
        self._rng = rng or random.Random()
        self._subscribers: list[StateCallback] = []
        self._bridge: Optional[BridgeConnection] = None
        # Incremented on every teardown so callbacks from old connections are ignored.
        self._bridge_id = 0
        self._viewport = (
            self.settings.viewport_width,
            self.settings.viewport_height,
            self.settings.compute_coords,
        )
        self._state = self._initial_state()
        self._update(lambda state: self._dispatch_analysis(state.spectrum))

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> AnalyzerState:
        return self._state

    @property
    def dispatcher(self) -> SpectrumDispatcher:
        return self._dispatcher

    @property
    def bridge_mode(self) -> bool:
        return self.settings.bridge_mode

    def subscribe(self, callback: StateCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: StateCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _initial_state(self) -> AnalyzerState:
        return create_initial_state(
            seed=self.settings.initial_seed,
            trace_points=self.settings.trace_points,
            now=self._clock(),
        )

    def _commit(self, patch: Patch) -> AnalyzerState:
        # Caller holds self._lock.
        if self._committing:
            raise RuntimeError("Re-entrant state patch")
        self._committing = True
        try:
            self._state = apply_patch(self._state, patch)
        finally:
            self._committing = False
        self._sync_timers()
        return self._state

    def _update(self, build: Callable[[AnalyzerState], Optional[Patch]]) -> AnalyzerState:
        with self._lock:
            building, self._building = self._building, True
            try:
                patch = build(self._state)
            finally:
                self._building = building
            patch = self._take_deferred(patch)
            if not patch:
                return self._state
            snapshot = self._commit(patch)
        self._emit(snapshot)
        return snapshot

    def _take_deferred(self, patch: Optional[Patch]) -> Optional[Patch]:
        # Caller holds self._lock.
        deferred, self._deferred = self._deferred, []
        for result in deferred:
            if self._dispatcher.is_current(result.generation):
                patch = {**(patch or {}), "analysis": result}
        return patch

    def _emit(self, snapshot: AnalyzerState) -> None:
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("State subscriber failed")

    # ------------------------------------------------------------------
    # Patch helpers
    # ------------------------------------------------------------------

    def _event(
        self,
        patch: Patch,
        state: AnalyzerState,
        level: str,
        source: str,
        message: str,
        detail: Optional[str] = None,
    ) -> None:
        entry = create_event_log_entry(level, source, message, detail=detail, timestamp=self._clock())
        logger.log(_LOG_LEVELS[level], "[%s] %s%s", source, message, f" ({detail})" if detail else "")
        patch["event_log"] = append_with_limit(patch.get("event_log", state.event_log), entry, EVENT_LOG_LIMIT)

    def _request(self, points: Sequence[SpectrumPoint]) -> SpectrumRequest:
        width, height, compute_coords = self._viewport
        return SpectrumRequest(points=tuple(points), width=width, height=height, compute_coords=compute_coords)

    def _dispatch_analysis(self, points: Sequence[SpectrumPoint]) -> Patch:
        _, future = self._dispatcher.submit(self._request(points))
        if future.done() and not future.cancelled():
            return {"analysis": future.result()}
        future.add_done_callback(self._on_analysis_done)
        return {}

    def _on_analysis_done(self, future: "Future[SpectrumAnalysis]") -> None:
        if future.cancelled():
            return
        result = future.result()
        with self._lock:
            if self._building:
                # Resolved synchronously inside a build on this thread; _update
                # folds it into the patch being built.
                self._deferred.append(result)
                return

        def build(state: AnalyzerState) -> Optional[Patch]:
            # Checked under the engine lock, where every new submission is made.
            if not self._dispatcher.is_current(result.generation):
                logger.debug("Dropping stale analysis for generation %d", result.generation)
                return None
            return {"analysis": result}

        self._update(build)

    def _install_spectrum(self, patch: Patch, state: AnalyzerState, points: Sequence[SpectrumPoint]) -> None:
        patch["spectrum"] = tuple(points)
        if patch.get("marker_auto_peak_search", state.marker_auto_peak_search):
            patch["markers"] = find_markers(points)
        patch.update(self._dispatch_analysis(points))

    def _generate_trace(self, config: AnalyzerConfig) -> Sequence[SpectrumPoint]:
        return generate_spectrum_trace(
            config.center_frequency_ghz,
            config.span_ghz,
            self.settings.trace_points,
            seed=self._rng.getrandbits(32),
        )

    def _apply_config(self, patch: Patch, state: AnalyzerState, partial: Mapping[str, Any], log: bool = True) -> None:
        patch["config"] = dict(partial)
        if state.connected:
            # Keep the displayed trace in step with the new settings.
            self._install_spectrum(patch, state, self._generate_trace(state.config.merged(partial)))
        if log and partial:
            self._event(patch, state, "info", "config", "Updated analyzer settings", summarize_config_changes(partial))

    def _send(self, message: Mapping[str, Any], patch: Patch, state: AnalyzerState) -> SendResult:
        bridge = self._bridge
        result = bridge.send(message) if bridge is not None else SendResult(ok=False, error="WebSocket not open")
        if not result.ok:
            self._event(
                patch,
                state,
                "warning",
                "connection",
                f"Failed to send {message['type']} to bridge",
                result.error,
            )
        return result

    def _sync_timers(self) -> None:
        if self.bridge_mode:
            return
        capturing = self._state.capturing
        if capturing and not self._scheduler.capture_running:
            self._scheduler.start_capture(
                self.settings.capture_interval_s,
                self.capture_tick,
                self.settings.heartbeat_interval_s,
                self.heartbeat_tick,
            )
        elif not capturing and self._scheduler.capture_running:
            self._scheduler.stop_capture()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> AnalyzerState:
        def build(state: AnalyzerState) -> Patch:
            patch: Patch = {"connection_state": "connecting"}
            if self.bridge_mode:
                self._event(
                    patch, state, "info", "connection", "Opening analyzer session via bridge...", self.settings.bridge_url
                )
                self._open_bridge()
            else:
                self._event(patch, state, "info", "connection", "Opening analyzer session...")
                self._scheduler.schedule_connect(self.settings.connect_delay_s, self._complete_connect)
            return patch

        return self._update(build)

    def _complete_connect(self) -> None:
        def build(state: AnalyzerState) -> Optional[Patch]:
            if state.connection_state != "connecting":
                return None
            patch: Patch = {
                "connection_state": "connected",
                "acquisition_state": "armed",
                "last_sync": self._clock(),
            }
            self._event(patch, state, "info", "connection", "Analyzer connected", "Acquisition armed; ready for capture.")
            return patch

        self._update(build)

    def disconnect(self) -> AnalyzerState:
        def build(state: AnalyzerState) -> Patch:
            self._scheduler.cancel_connect()
            self._close_bridge()
            patch: Patch = {"connection_state": "disconnected", "acquisition_state": "idle"}
            if state.analysis is None or not self._dispatcher.is_current(state.analysis.generation):
                # An offloaded result is still outstanding; supersede it.
                _, analysis = self._dispatcher.compute_inline(self._request(state.spectrum))
                patch["analysis"] = analysis
            self._event(patch, state, "info", "connection", "Analyzer link closed by user.")
            return patch

        return self._update(build)

    def reconnect(self) -> AnalyzerState:
        self.disconnect()
        return self.connect()

    def _open_bridge(self) -> None:
        self._close_bridge()
        conn_id = self._bridge_id
        bridge = self._bridge_factory(
            self.settings.bridge_url,
            on_open=partial(self._on_bridge_open, conn_id),
            on_message=partial(self.handle_bridge_message, conn_id=conn_id),
            on_error=partial(self._on_bridge_error, conn_id),
            on_close=partial(self._on_bridge_close, conn_id),
            open_timeout=self.settings.bridge_open_timeout_s,
        )
        self._bridge = bridge
        bridge.start()

    def _close_bridge(self) -> None:
        bridge, self._bridge = self._bridge, None
        self._bridge_id += 1
        if bridge is not None:
            bridge.close()

    def _on_bridge_open(self, conn_id: int) -> None:
        def build(state: AnalyzerState) -> Optional[Patch]:
            if conn_id != self._bridge_id:
                return None
            patch: Patch = {
                "connection_state": "connected",
                "acquisition_state": "armed",
                "last_sync": self._clock(),
            }
            self._event(patch, state, "info", "connection", "Analyzer connected (bridge)")
            self._send(make_handshake(self.settings.client_name, self.settings.client_version), patch, state)
            return patch

        self._update(build)

    def _on_bridge_error(self, conn_id: int, detail: str) -> None:
        def build(state: AnalyzerState) -> Optional[Patch]:
            if conn_id != self._bridge_id:
                return None
            patch: Patch = {}
            self._event(patch, state, "error", "connection", "Bridge connection error", detail or "socket error")
            return patch

        self._update(build)

    def _on_bridge_close(self, conn_id: int) -> None:
        def build(state: AnalyzerState) -> Optional[Patch]:
            if conn_id != self._bridge_id:
                return None
            self._bridge = None
            patch: Patch = {"connection_state": "disconnected", "acquisition_state": "idle"}
            self._event(patch, state, "info", "connection", "Analyzer link closed.")
            return patch

        self._update(build)

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def toggle_acquisition(self) -> AnalyzerState:
        def build(state: AnalyzerState) -> Optional[Patch]:
            if state.connection_state != "connected":
                return None
            started = state.acquisition_state != "capturing"
            patch: Patch = {"acquisition_state": "capturing" if started else "armed"}
            if started:
                patch["last_sync"] = self._clock()
            if self.bridge_mode:
                self._send(make_command("startCapture" if started else "stopCapture"), patch, state)
            if started:
                detail = f"Span {state.config.span_ghz:.2f} GHz • Path {state.config.path_mode}"
                self._event(patch, state, "info", "acquisition", "Started wideband acquisition", detail)
            else:
                self._event(patch, state, "info", "acquisition", "Return to armed state")
            return patch

        return self._update(build)

    def capture_tick(self) -> AnalyzerState:
        """One simulated capture cycle; a no-op unless connected and capturing."""

        def build(state: AnalyzerState) -> Optional[Patch]:
            if not state.capturing:
                return None
            now = self._clock()
            config = state.config
            spectrum = self._generate_trace(config)
            patch: Patch = {"last_sync": now}
            self._install_spectrum(patch, state, spectrum)

            measurements, log_entries = perturb_measurements(state.measurements, self._rng, now)
            patch["measurements"] = measurements
            patch["measurement_log"] = append_many_with_limit(state.measurement_log, log_entries, MEASUREMENT_LOG_LIMIT)

            memory = create_trace_memory(
                spectrum,
                config,
                label=f"Live capture • {now.astimezone():%H:%M:%S}",
                captured_at=now,
            )
            patch["trace_memories"] = append_with_limit(state.trace_memories, memory, TRACE_MEMORY_LIMIT)
            last_logged = self._last_capture_log_at
            if last_logged is None or (now - last_logged).total_seconds() > self.settings.capture_log_gap_s:
                self._last_capture_log_at = now
                self._event(
                    patch,
                    state,
                    "info",
                    "acquisition",
                    f"Captured trace ({config.span_ghz:.1f} GHz span)",
                    f"Peak {memory.peak_amplitude_dbm:.1f} dBm @ {memory.peak_frequency_hz / 1e9:.3f} GHz",
                )
            return patch

        return self._update(build)

    def heartbeat_tick(self) -> AnalyzerState:
        def build(state: AnalyzerState) -> Optional[Patch]:
            if not state.capturing:
                return None
            return {"last_sync": self._clock()}

        return self._update(build)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_config(self, **updates: Any) -> AnalyzerState:
        partial_config = coerce_config_patch(updates)

        def build(state: AnalyzerState) -> Optional[Patch]:
            if not partial_config:
                return None
            patch: Patch = {}
            self._apply_config(patch, state, partial_config)
            if self.bridge_mode:
                self._send(make_config_update(partial_config), patch, state)
            return patch

        return self._update(build)

    def recall_preset(self, name: str) -> AnalyzerState:
        preset = preset_config(name)

        def build(state: AnalyzerState) -> Patch:
            patch: Patch = {}
            self._event(patch, state, "info", "preset", f"Recalled preset {name}", summarize_config_changes(preset))
            if self.bridge_mode:
                self._send(make_preset_recall(name), patch, state)
            self._apply_config(patch, state, coerce_config_patch(preset))
            return patch

        return self._update(build)

    def set_viewport(self, width: float, height: float, compute_coords: bool = True) -> AnalyzerState:
        def build(state: AnalyzerState) -> Patch:
            self._viewport = (width, height, compute_coords)
            return self._dispatch_analysis(state.spectrum)

        return self._update(build)

    # ------------------------------------------------------------------
    # Markers
    # ------------------------------------------------------------------

    def set_marker_auto_peak_search(self, enabled: bool) -> AnalyzerState:
        def build(state: AnalyzerState) -> Patch:
            patch: Patch = {"marker_auto_peak_search": bool(enabled)}
            if enabled and state.spectrum:
                patch["markers"] = find_markers(state.spectrum)
            return patch

        return self._update(build)

    def clear_markers(self) -> AnalyzerState:
        return self._update(lambda state: {"markers": (), "marker_auto_peak_search": False})

    def add_marker_at_frequency(self, frequency_hz: float) -> AnalyzerState:
        def build(state: AnalyzerState) -> Optional[Patch]:
            markers = add_marker(state.markers, state.spectrum, frequency_hz)
            if markers is None:
                return None
            return {"markers": markers, "marker_auto_peak_search": False}

        return self._update(build)

    def delete_marker(self, label: str) -> AnalyzerState:
        def build(state: AnalyzerState) -> Patch:
            return {"markers": delete_marker(state.markers, label), "marker_auto_peak_search": False}

        return self._update(build)

    def move_marker_to_frequency(self, label: str, frequency_hz: float) -> AnalyzerState:
        def build(state: AnalyzerState) -> Optional[Patch]:
            markers = move_marker(state.markers, state.spectrum, label, frequency_hz)
            if markers is None:
                return None
            return {"markers": markers, "marker_auto_peak_search": False}

        return self._update(build)

    # ------------------------------------------------------------------
    # Bridge messages
    # ------------------------------------------------------------------

    def handle_bridge_message(self, raw: str | bytes, conn_id: Optional[int] = None) -> AnalyzerState:
        if conn_id is not None and conn_id != self._bridge_id:
            return self._state
        try:
            message = decode_inbound(raw)
        except MessageParseError as exc:
            return self._update(
                lambda state: self._warning_patch(state, "Failed to parse bridge message", str(exc))
            )
        except MessageValidationError as exc:
            return self._update(
                lambda state: self._warning_patch(
                    state, "Bridge message failed schema validation", "; ".join(exc.issues)
                )
            )
        return self._update(lambda state: self._message_patch(state, message))

    def _warning_patch(self, state: AnalyzerState, message: str, detail: str) -> Patch:
        patch: Patch = {}
        self._event(patch, state, "warning", "bridge", message, detail)
        return patch

    def _message_patch(self, state: AnalyzerState, message: InboundMessage) -> Patch:
        patch: Patch = {"last_sync": self._clock()}
        if isinstance(message, HeartbeatMessage):
            return patch
        if isinstance(message, SpectrumMessage):
            self._install_spectrum(patch, state, message.points)
            return patch
        if isinstance(message, MeasurementsMessage):
            patch["measurements"] = message.measurements
            return patch
        if isinstance(message, ConfigMessage):
            self._apply_config(patch, state, coerce_config_patch(message.patch), log=False)
            return patch
        if isinstance(message, AcquisitionMessage):
            patch["acquisition_state"] = message.acquisition_state
            return patch
        if isinstance(message, StateMessage):
            patch.update(message.patch)
            # Stamped locally after the patch.
            patch["last_sync"] = self._clock()
            if "spectrum" in message.patch:
                patch.update(self._dispatch_analysis(message.patch["spectrum"]))
            return patch
        raise TypeError(f"Unhandled bridge message: {message!r}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def reset(self) -> AnalyzerState:
        """Tear down timers and the bridge and restore the initial session."""

        with self._lock:
            self._scheduler.cancel_connect()
            self._close_bridge()
            self._state = self._initial_state()
            self._last_capture_log_at = None
            self._sync_timers()
        # Initial analysis is None, so the patch always commits and notifies.
        return self._update(lambda state: {"analysis": None, **self._dispatch_analysis(state.spectrum)})

    def close(self) -> None:
        with self._lock:
            self._scheduler.close()
            self._close_bridge()
        self._dispatcher.close()
