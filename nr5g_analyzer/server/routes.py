"""REST command surface for the analyzer engine."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request

from nr5g_analyzer.config import PRESETS
from nr5g_analyzer.engine import Engine
from nr5g_analyzer.protocol import CONFIG_FIELD_NAMES, analysis_to_wire, config_to_wire, state_to_wire
from nr5g_analyzer.state import AnalyzerState


router = APIRouter()


def _engine(request: Request) -> Engine:
    return request.app.state.engine


def _serialize_state(engine: Engine) -> dict[str, Any]:
    return state_to_wire(engine.state)


def _serialize_config(engine: Engine) -> dict[str, Any]:
    return {"config": config_to_wire(asdict(engine.state.config))}


def _serialize_markers(state: AnalyzerState) -> dict[str, Any]:
    return {
        "markers": [asdict(marker) for marker in state.markers],
        "markerAutoPeakSearch": state.marker_auto_peak_search,
    }


def _frequency(payload: dict[str, Any]) -> float:
    value = payload.get("frequency") if isinstance(payload, dict) else None
    if value is None:
        raise HTTPException(status_code=400, detail="frequency is required")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="frequency must be a number")


@router.get("/api/state")
def get_state(request: Request) -> dict[str, Any]:
    return _serialize_state(_engine(request))


@router.get("/api/analysis")
def get_analysis(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    return {
        "analysis": analysis_to_wire(engine.state.analysis),
        "path": engine.dispatcher.active_path,
        "generation": engine.dispatcher.generation,
    }


@router.post("/api/connect")
def connect(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    if engine.state.connection_state != "disconnected":
        return {"ok": True, "state": _serialize_state(engine)}
    engine.connect()
    return {"ok": True, "state": _serialize_state(engine)}


@router.post("/api/disconnect")
def disconnect(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    engine.disconnect()
    return {"ok": True, "state": _serialize_state(engine)}


@router.post("/api/acquisition/toggle")
def toggle_acquisition(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    if not engine.state.connected:
        raise HTTPException(status_code=409, detail="Analyzer is not connected")
    engine.toggle_acquisition()
    return {"ok": True, "state": _serialize_state(engine)}


@router.get("/api/config")
def get_config(request: Request) -> dict[str, Any]:
    return _serialize_config(_engine(request))


@router.post("/api/config")
def update_config(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Config payload must be a JSON object")
    engine = _engine(request)
    try:
        # Accepts wire (camelCase) or field (snake_case) names.
        engine.update_config(**{CONFIG_FIELD_NAMES.get(key, key): value for key, value in payload.items()})
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _serialize_config(engine)


@router.get("/api/presets")
def list_presets() -> dict[str, Any]:
    return {"presets": {name: config_to_wire(values) for name, values in PRESETS.items()}}


@router.post("/api/presets/recall")
def recall_preset(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    preset_name = payload.get("name") if isinstance(payload, dict) else None
    if not preset_name:
        raise HTTPException(status_code=400, detail="Preset name is required")
    engine = _engine(request)
    try:
        engine.recall_preset(str(preset_name))
    except ValueError:
        raise HTTPException(status_code=404, detail="Unknown preset")
    return {"ok": True, **_serialize_config(engine)}


@router.post("/api/markers")
def add_marker(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    engine = _engine(request)
    state = engine.add_marker_at_frequency(_frequency(payload))
    return _serialize_markers(state)


@router.delete("/api/markers")
def clear_markers(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    state = engine.clear_markers()
    return _serialize_markers(state)


@router.delete("/api/markers/{label}")
def delete_marker(request: Request, label: str) -> dict[str, Any]:
    engine = _engine(request)
    if not any(marker.label == label for marker in engine.state.markers):
        raise HTTPException(status_code=404, detail="Unknown marker")
    state = engine.delete_marker(label)
    return _serialize_markers(state)


@router.post("/api/markers/{label}/move")
def move_marker(request: Request, label: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    engine = _engine(request)
    if not any(marker.label == label for marker in engine.state.markers):
        raise HTTPException(status_code=404, detail="Unknown marker")
    state = engine.move_marker_to_frequency(label, _frequency(payload))
    return _serialize_markers(state)


@router.post("/api/markers/auto")
def set_marker_auto(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    enabled = payload.get("enabled") if isinstance(payload, dict) else None
    if not isinstance(enabled, bool):
        raise HTTPException(status_code=400, detail="enabled must be a boolean")
    state = _engine(request).set_marker_auto_peak_search(enabled)
    return _serialize_markers(state)


@router.post("/api/viewport")
def set_viewport(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    try:
        width = float(payload["width"])
        height = float(payload["height"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=400, detail="width and height are required numbers")
    compute_coords = bool(payload.get("computeCoords", True))
    engine = _engine(request)
    engine.set_viewport(width, height, compute_coords)
    return get_analysis(request)


@router.post("/api/reset")
def reset(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    engine.reset()
    return {"ok": True, "state": _serialize_state(engine)}
