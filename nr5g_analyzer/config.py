"""Analyzer configuration, presets, and runtime settings.

Defines the AnalyzerConfig dataclass, the named presets, and the
EngineSettings used to wire timers, the bridge, and the offload dispatcher.
This module should not import engine or server classes.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from nr5g_analyzer import __version__

logger = logging.getLogger(__name__)

TRIGGER_MODES = ("free run", "video", "external")
PATH_MODES = ("1RF", "2RF", "correlation")


@dataclass(frozen=True)
class AnalyzerConfig:
    """
    Front-panel configuration of the analyzer.

    Notes
    Frequencies are in GHz, RBW/VBW in kHz. Only whole-field partial patches
    change it; the engine replaces the instance on every update.
    """

    center_frequency_ghz: float = 28.0
    span_ghz: float = 6.0
    analysis_bandwidth_ghz: float = 8.0
    reference_level_dbm: float = 10.0

    # Sweep filter settings.
    rbw_khz: float = 100.0
    vbw_khz: float = 30.0

    attenuation_db: float = 20.0
    averaging_count: int = 100

    trigger_mode: str = "free run"
    path_mode: str = "correlation"

    def merged(self, partial: Mapping[str, Any]) -> "AnalyzerConfig":
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(coerce_config_patch(partial))
        return AnalyzerConfig(**values)


CONFIG_FIELDS = tuple(f.name for f in fields(AnalyzerConfig))
_INT_FIELDS = {"averaging_count"}
_ENUM_FIELDS = {"trigger_mode": TRIGGER_MODES, "path_mode": PATH_MODES}


def coerce_config_patch(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Filter and cast a loose mapping into a typed partial config."""

    patch: Dict[str, Any] = {}
    for key, value in updates.items():
        if key not in CONFIG_FIELDS:
            logger.warning("Ignoring unknown config field %r", key)
            continue
        if key in _ENUM_FIELDS:
            if value not in _ENUM_FIELDS[key]:
                raise ValueError(f"Invalid {key}: {value!r}")
            patch[key] = str(value)
        else:
            try:
                number = float(value)
            except OverflowError as exc:
                raise ValueError(f"Invalid {key}: {value!r}") from exc
            if not math.isfinite(number):
                raise ValueError(f"Invalid {key}: {value!r}")
            patch[key] = int(number) if key in _INT_FIELDS else number
    return patch


PRESETS: Dict[str, Dict[str, Any]] = {
    "5g-fr2": {
        "center_frequency_ghz": 28.0,
        "span_ghz": 2.0,
        "analysis_bandwidth_ghz": 2.0,
        "rbw_khz": 100.0,
        "vbw_khz": 30.0,
        "trigger_mode": "video",
        "path_mode": "correlation",
    },
    "satcom": {
        "center_frequency_ghz": 20.0,
        "span_ghz": 1.0,
        "analysis_bandwidth_ghz": 1.2,
        "rbw_khz": 10.0,
        "vbw_khz": 10.0,
        "trigger_mode": "free run",
        "path_mode": "1RF",
    },
    "radar": {
        "center_frequency_ghz": 77.0,
        "span_ghz": 6.0,
        "analysis_bandwidth_ghz": 4.0,
        "rbw_khz": 50.0,
        "vbw_khz": 20.0,
        "trigger_mode": "external",
        "path_mode": "2RF",
    },
}


def preset_config(name: str) -> Dict[str, Any]:
    if name not in PRESETS:
        raise ValueError(f"Unknown preset: {name}")
    return dict(PRESETS[name])


def format_config_fragment(key: str, value: Any) -> str:
    if key == "center_frequency_ghz":
        return f"center {float(value):.2f} GHz"
    if key == "span_ghz":
        return f"span {float(value):.2f} GHz"
    if key == "analysis_bandwidth_ghz":
        return f"BW {float(value):.2f} GHz"
    if key == "reference_level_dbm":
        return f"ref {float(value):.1f} dBm"
    if key == "rbw_khz":
        return f"RBW {float(value):.0f} kHz"
    if key == "vbw_khz":
        return f"VBW {float(value):.0f} kHz"
    if key == "attenuation_db":
        return f"atten {float(value):.0f} dB"
    if key == "averaging_count":
        return f"avg ×{value}"
    if key == "trigger_mode":
        return f"trigger {value}"
    if key == "path_mode":
        return f"path {value}"
    return f"{key} {value}"


def summarize_config_changes(partial: Mapping[str, Any]) -> str:
    return " • ".join(format_config_fragment(key, value) for key, value in partial.items())


def _env(environ: Mapping[str, str], name: str, default: str) -> str:
    return environ.get(f"NR5G_{name}", default)


@dataclass
class EngineSettings:
    """
    Runtime wiring for the engine.

    Notes
    A bridge URL switches the engine from the local simulator to the remote
    bridge; timers only drive the simulator.
    """

    bridge_url: Optional[str] = None
    bridge_open_timeout_s: float = 5.0
    client_name: str = "nr5g-webui"
    client_version: str = __version__

    # Simulator timing.
    connect_delay_s: float = 0.8
    capture_interval_s: float = 1.5
    heartbeat_interval_s: float = 3.0
    capture_log_gap_s: float = 4.0

    # Synthetic trace generation.
    trace_points: int = 256
    initial_seed: int = 0x9E3779B9

    # Traces at or above this size are analysed off the calling thread.
    offload_threshold: int = 1000

    # Render target for coordinate projection.
    viewport_width: int = 1200
    viewport_height: int = 400
    compute_coords: bool = True

    @property
    def bridge_mode(self) -> bool:
        return bool(self.bridge_url)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            bridge_url=_env(env, "BRIDGE_URL", "") or None,
            bridge_open_timeout_s=float(_env(env, "BRIDGE_OPEN_TIMEOUT_S", str(defaults.bridge_open_timeout_s))),
            client_name=_env(env, "CLIENT_NAME", defaults.client_name),
            client_version=_env(env, "CLIENT_VERSION", defaults.client_version),
            connect_delay_s=float(_env(env, "CONNECT_DELAY_S", str(defaults.connect_delay_s))),
            capture_interval_s=float(_env(env, "CAPTURE_INTERVAL_S", str(defaults.capture_interval_s))),
            heartbeat_interval_s=float(_env(env, "HEARTBEAT_INTERVAL_S", str(defaults.heartbeat_interval_s))),
            capture_log_gap_s=float(_env(env, "CAPTURE_LOG_GAP_S", str(defaults.capture_log_gap_s))),
            trace_points=int(_env(env, "TRACE_POINTS", str(defaults.trace_points))),
            initial_seed=int(_env(env, "INITIAL_SEED", str(defaults.initial_seed)), 0),
            offload_threshold=int(_env(env, "OFFLOAD_THRESHOLD", str(defaults.offload_threshold))),
            viewport_width=int(_env(env, "VIEWPORT_WIDTH", str(defaults.viewport_width))),
            viewport_height=int(_env(env, "VIEWPORT_HEIGHT", str(defaults.viewport_height))),
            compute_coords=_env(env, "COMPUTE_COORDS", "1").lower() not in {"0", "false", "no"},
        )
