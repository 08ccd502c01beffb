"""Bridge message schemas, decoding, and wire conversion.

Inbound bridge messages are JSON objects ``{"type": ..., "payload": ...}``
validated against the JSON schema returned by bridge_inbound_json_schema()
before they are turned into typed message objects. Outbound messages are
dict objects built via helpers. Wire names are camelCase; the engine uses
snake_case field names.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import jsonschema

from nr5g_analyzer.config import PATH_MODES, TRIGGER_MODES
from nr5g_analyzer.dsp.spectrum import SpectrumAnalysis, SpectrumPoint
from nr5g_analyzer.history import EventLogEntry, MeasurementLogEntry, TraceMemory
from nr5g_analyzer.markers import Marker
from nr5g_analyzer.measurements import MEASUREMENT_STATUSES, Measurement
from nr5g_analyzer.state import ACQUISITION_STATES, CONNECTION_STATES, AnalyzerState

INBOUND_TYPES = ("heartbeat", "spectrum", "measurements", "config", "acquisition", "state")
OUTBOUND_TYPES = ("handshake", "command", "config.update", "preset.recall")
COMMANDS = ("startCapture", "stopCapture")

CONFIG_WIRE_NAMES = {
    "center_frequency_ghz": "centerFrequencyGHz",
    "span_ghz": "spanGHz",
    "analysis_bandwidth_ghz": "analysisBandwidthGHz",
    "reference_level_dbm": "referenceLevelDbm",
    "rbw_khz": "rbwKHz",
    "vbw_khz": "vbwKHz",
    "attenuation_db": "attenuationDb",
    "averaging_count": "averagingCount",
    "trigger_mode": "triggerMode",
    "path_mode": "pathMode",
}
CONFIG_FIELD_NAMES = {wire: name for name, wire in CONFIG_WIRE_NAMES.items()}

# State patch keys modelled by AnalyzerState; anything else is kept in extras.
STATE_WIRE_NAMES = {
    "model": "model",
    "serial": "serial",
    "firmware": "firmware",
    "connectionState": "connection_state",
    "acquisitionState": "acquisition_state",
    "lastSync": "last_sync",
    "config": "config",
    "measurements": "measurements",
    "spectrum": "spectrum",
    "markers": "markers",
    "markerAutoPeakSearch": "marker_auto_peak_search",
}


class ProtocolError(Exception):
    """Inbound message could not be used."""


class MessageParseError(ProtocolError):
    pass


class MessageValidationError(ProtocolError):
    def __init__(self, issues: Sequence[str]):
        self.issues = list(issues)
        super().__init__("; ".join(self.issues))


def _config_partial_schema() -> dict[str, Any]:
    number = {"type": "number"}
    return {
        "type": "object",
        "properties": {
            "centerFrequencyGHz": number,
            "spanGHz": number,
            "analysisBandwidthGHz": number,
            "referenceLevelDbm": number,
            "rbwKHz": number,
            "vbwKHz": number,
            "attenuationDb": number,
            "averagingCount": number,
            "triggerMode": {"enum": list(TRIGGER_MODES)},
            "pathMode": {"enum": list(PATH_MODES)},
        },
    }


def _spectrum_point_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "frequency": {"type": "number"},
            "amplitude": {"type": "number"},
        },
        "required": ["frequency", "amplitude"],
    }


def _measurement_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "label": {"type": "string"},
            "value": {"type": "string"},
            "unit": {"type": "string"},
            "delta": {"type": "string"},
            "status": {"enum": list(MEASUREMENT_STATUSES)},
            "description": {"type": "string"},
        },
        "required": ["id", "label", "value", "status"],
    }


def payload_schemas() -> dict[str, dict[str, Any]]:
    """Payload schema per inbound message type."""

    marker = _spectrum_point_schema()
    marker = {
        **marker,
        "properties": {**marker["properties"], "label": {"type": "string"}},
        "required": [*marker["required"], "label"],
    }
    return {
        "heartbeat": {},
        "spectrum": {"type": "array", "items": _spectrum_point_schema()},
        "measurements": {"type": "array", "items": _measurement_schema()},
        "config": _config_partial_schema(),
        "acquisition": {"enum": list(ACQUISITION_STATES)},
        "state": {
            "type": "object",
            "properties": {
                "model": {"type": "string"},
                "serial": {"type": "string"},
                "firmware": {"type": "string"},
                "connectionState": {"enum": list(CONNECTION_STATES)},
                "acquisitionState": {"enum": list(ACQUISITION_STATES)},
                "lastSync": {},
                "config": _config_partial_schema(),
                "measurements": {"type": "array", "items": _measurement_schema()},
                "spectrum": {"type": "array", "items": _spectrum_point_schema()},
                "markers": {"type": "array", "items": marker},
                "markerAutoPeakSearch": {"type": "boolean"},
            },
            # Unknown fields pass through to the state extras.
            "additionalProperties": True,
        },
    }


def bridge_inbound_json_schema() -> dict[str, Any]:
    """Return the JSON schema for inbound bridge messages."""

    payloads = payload_schemas()
    variants = []
    for message_type in INBOUND_TYPES:
        variant = {
            "title": f"{message_type} message",
            "type": "object",
            "properties": {
                "type": {"const": message_type},
                "payload": payloads[message_type],
            },
            "required": ["type"] if message_type == "heartbeat" else ["type", "payload"],
        }
        variants.append(variant)
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": "Analyzer Bridge Inbound Messages",
        "type": "object",
        "oneOf": variants,
    }


_ENVELOPE_SCHEMA = {
    "type": "object",
    "properties": {"type": {"enum": list(INBOUND_TYPES)}},
    "required": ["type"],
}
_ENVELOPE_VALIDATOR = jsonschema.Draft202012Validator(_ENVELOPE_SCHEMA)
_VARIANT_VALIDATORS = {
    variant["properties"]["type"]["const"]: jsonschema.Draft202012Validator(variant)
    for variant in bridge_inbound_json_schema()["oneOf"]
}


def _issue(error: jsonschema.ValidationError) -> str:
    path = ".".join(str(part) for part in error.absolute_path)
    return f"{path}: {error.message}" if path else error.message


def _non_finite_issues(value: Any, path: str) -> List[str]:
    """Report numbers that do not fit a finite float (``NaN``, ``Infinity``, ``1e400``)."""

    if isinstance(value, dict):
        issues: List[str] = []
        for key, item in value.items():
            issues.extend(_non_finite_issues(item, f"{path}.{key}" if path else str(key)))
        return issues
    if isinstance(value, list):
        issues = []
        for index, item in enumerate(value):
            issues.extend(_non_finite_issues(item, f"{path}.{index}" if path else str(index)))
        return issues
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            finite = math.isfinite(float(value))
        except OverflowError:
            finite = False
        if not finite:
            return [f"{path}: non-finite number" if path else "non-finite number"]
    return []


def validate_inbound(message: Any) -> List[str]:
    """Return schema issues for a decoded message; empty when valid."""

    issues = _non_finite_issues(message, "")
    if issues:
        return issues
    issues = [_issue(err) for err in _ENVELOPE_VALIDATOR.iter_errors(message)]
    if issues:
        return issues
    validator = _VARIANT_VALIDATORS[message["type"]]
    errors = sorted(validator.iter_errors(message), key=lambda err: list(err.absolute_path))
    return [_issue(err) for err in errors]


@dataclass(frozen=True)
class HeartbeatMessage:
    payload: Any = None


@dataclass(frozen=True)
class SpectrumMessage:
    points: Tuple[SpectrumPoint, ...]


@dataclass(frozen=True)
class MeasurementsMessage:
    measurements: Tuple[Measurement, ...]


@dataclass(frozen=True)
class ConfigMessage:
    """Partial config with snake_case keys."""

    patch: Mapping[str, Any]


@dataclass(frozen=True)
class AcquisitionMessage:
    acquisition_state: str


@dataclass(frozen=True)
class StateMessage:
    """Loose state patch with snake_case keys; unmodelled fields under ``extras``."""

    patch: Mapping[str, Any]


InboundMessage = Union[
    HeartbeatMessage,
    SpectrumMessage,
    MeasurementsMessage,
    ConfigMessage,
    AcquisitionMessage,
    StateMessage,
]


def _points_from_wire(items: Sequence[Mapping[str, Any]]) -> Tuple[SpectrumPoint, ...]:
    return tuple(SpectrumPoint(frequency=float(item["frequency"]), amplitude=float(item["amplitude"])) for item in items)


def _measurements_from_wire(items: Sequence[Mapping[str, Any]]) -> Tuple[Measurement, ...]:
    return tuple(
        Measurement(
            id=item["id"],
            label=item["label"],
            value=item["value"],
            status=item["status"],
            unit=item.get("unit"),
            delta=item.get("delta"),
            description=item.get("description"),
        )
        for item in items
    )


def config_from_wire(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {CONFIG_FIELD_NAMES[key]: value for key, value in payload.items() if key in CONFIG_FIELD_NAMES}


def config_to_wire(patch: Mapping[str, Any]) -> Dict[str, Any]:
    return {CONFIG_WIRE_NAMES.get(key, key): value for key, value in patch.items()}


def _state_patch_from_wire(payload: Mapping[str, Any]) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    extras: Dict[str, Any] = {}
    for key, value in payload.items():
        name = STATE_WIRE_NAMES.get(key)
        if name is None:
            extras[key] = value
        elif name == "last_sync":
            # Stamped locally on application.
            continue
        elif name == "config":
            patch[name] = config_from_wire(value)
        elif name == "measurements":
            patch[name] = _measurements_from_wire(value)
        elif name == "spectrum":
            patch[name] = _points_from_wire(value)
        elif name == "markers":
            patch[name] = tuple(
                Marker(label=item["label"], frequency=float(item["frequency"]), amplitude=float(item["amplitude"]))
                for item in value
            )
        else:
            patch[name] = value
    if extras:
        patch["extras"] = extras
    return patch


def decode_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """Parse and validate one inbound bridge message."""

    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MessageParseError(str(exc)) from exc
    issues = validate_inbound(message)
    if issues:
        raise MessageValidationError(issues)

    message_type = message["type"]
    payload = message.get("payload")
    if message_type == "heartbeat":
        return HeartbeatMessage(payload=payload)
    if message_type == "spectrum":
        return SpectrumMessage(points=_points_from_wire(payload))
    if message_type == "measurements":
        return MeasurementsMessage(measurements=_measurements_from_wire(payload))
    if message_type == "config":
        return ConfigMessage(patch=config_from_wire(payload))
    if message_type == "acquisition":
        return AcquisitionMessage(acquisition_state=payload)
    return StateMessage(patch=_state_patch_from_wire(payload))


def make_handshake(client: str, version: str) -> dict[str, Any]:
    return {"type": "handshake", "client": str(client), "version": str(version)}


def make_command(command: str) -> dict[str, Any]:
    if command not in COMMANDS:
        raise ValueError(f"Unsupported command: {command}")
    return {"type": "command", "command": command}


def make_config_update(patch: Mapping[str, Any]) -> dict[str, Any]:
    return {"type": "config.update", "payload": config_to_wire(patch)}


def make_preset_recall(preset: str) -> dict[str, Any]:
    return {"type": "preset.recall", "preset": str(preset)}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _event_to_wire(entry: EventLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": _iso(entry.timestamp),
        "level": entry.level,
        "source": entry.source,
        "message": entry.message,
        "detail": entry.detail,
    }


def _measurement_log_to_wire(entry: MeasurementLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": _iso(entry.timestamp),
        "measurementId": entry.measurement_id,
        "label": entry.label,
        "value": entry.value,
        "unit": entry.unit,
        "status": entry.status,
        "delta": entry.delta,
    }


def _trace_memory_to_wire(memory: TraceMemory) -> dict[str, Any]:
    return {
        "id": memory.id,
        "label": memory.label,
        "capturedAt": _iso(memory.captured_at),
        "peakFrequencyHz": memory.peak_frequency_hz,
        "peakAmplitudeDbm": memory.peak_amplitude_dbm,
        "noiseFloorDbm": memory.noise_floor_dbm,
        "referenceLevelDbm": memory.reference_level_dbm,
        "spanGHz": memory.span_ghz,
        "pathMode": memory.path_mode,
    }


def _measurement_to_wire(measurement: Measurement) -> dict[str, Any]:
    wire = {
        "id": measurement.id,
        "label": measurement.label,
        "value": measurement.value,
        "status": measurement.status,
    }
    for key in ("unit", "delta", "description"):
        value = getattr(measurement, key)
        if value is not None:
            wire[key] = value
    return wire


def analysis_to_wire(analysis: Optional[SpectrumAnalysis]) -> Optional[dict[str, Any]]:
    if analysis is None:
        return None
    bounds = analysis.bounds
    wire: dict[str, Any] = {
        "bounds": {
            "freqMin": bounds.freq_min,
            "freqMax": bounds.freq_max,
            "ampMin": bounds.amp_min,
            "ampMax": bounds.amp_max,
        },
        "noiseFloor": analysis.noise_floor,
        "generation": analysis.generation,
    }
    if analysis.coords is not None:
        wire["coords"] = analysis.coords.tolist()
        wire["width"] = analysis.width
        wire["height"] = analysis.height
    return wire


def state_to_wire(state: AnalyzerState) -> dict[str, Any]:
    """Consolidated snapshot for external renderers."""

    return {
        **dict(state.extras),
        "model": state.model,
        "serial": state.serial,
        "firmware": state.firmware,
        "connectionState": state.connection_state,
        "acquisitionState": state.acquisition_state,
        "lastSync": _iso(state.last_sync),
        "config": config_to_wire(
            {name: getattr(state.config, name) for name in CONFIG_WIRE_NAMES}
        ),
        "measurements": [_measurement_to_wire(item) for item in state.measurements],
        "spectrum": [{"frequency": p.frequency, "amplitude": p.amplitude} for p in state.spectrum],
        "markers": [
            {"label": m.label, "frequency": m.frequency, "amplitude": m.amplitude} for m in state.markers
        ],
        "markerAutoPeakSearch": state.marker_auto_peak_search,
        "traceMemories": [_trace_memory_to_wire(item) for item in state.trace_memories],
        "eventLog": [_event_to_wire(item) for item in state.event_log],
        "measurementLog": [_measurement_log_to_wire(item) for item in state.measurement_log],
        "analysis": analysis_to_wire(state.analysis),
    }
