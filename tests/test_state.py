from datetime import datetime, timedelta, timezone

import pytest

from nr5g_analyzer.config import AnalyzerConfig
from nr5g_analyzer.dsp.spectrum import generate_spectrum_trace
from nr5g_analyzer.state import AnalyzerState, apply_patch, create_initial_state

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_initial_state() -> None:
    state = create_initial_state(now=NOW)
    assert state.model == "T&M SPAX3044"
    assert state.connection_state == "disconnected"
    assert state.acquisition_state == "idle"
    assert state.last_sync is None
    assert state.config == AnalyzerConfig()
    assert len(state.spectrum) == 256
    assert state.spectrum == generate_spectrum_trace(28.0, 6.0, 256, seed=0x9E3779B9)
    assert state.markers == ()
    assert state.marker_auto_peak_search
    assert len(state.measurements) == 5
    assert state.event_log == ()
    assert state.measurement_log == ()


def test_initial_trace_memories_are_oldest_first() -> None:
    memories = create_initial_state(now=NOW).trace_memories
    assert len(memories) == 3
    assert [m.captured_at for m in memories] == [
        NOW - timedelta(minutes=12),
        NOW - timedelta(minutes=9),
        NOW - timedelta(minutes=7),
    ]
    assert [m.path_mode for m in memories] == ["1RF", "2RF", "correlation"]


def test_apply_patch_returns_new_state() -> None:
    state = AnalyzerState()
    patched = apply_patch(state, {"connection_state": "connecting"})
    assert patched.connection_state == "connecting"
    assert state.connection_state == "disconnected"


def test_apply_patch_merges_config_partial() -> None:
    state = AnalyzerState()
    patched = apply_patch(state, {"config": {"span_ghz": 1.5}})
    assert patched.config.span_ghz == 1.5
    assert patched.config.center_frequency_ghz == state.config.center_frequency_ghz


def test_apply_patch_merges_extras() -> None:
    state = apply_patch(AnalyzerState(), {"extras": {"a": 1}})
    state = apply_patch(state, {"extras": {"b": 2}})
    assert dict(state.extras) == {"a": 1, "b": 2}


def test_apply_patch_coerces_sequences_to_tuples() -> None:
    state = apply_patch(AnalyzerState(), {"markers": []})
    assert state.markers == ()


def test_apply_patch_rejects_unknown_and_invalid_fields() -> None:
    with pytest.raises(KeyError):
        apply_patch(AnalyzerState(), {"colour": "red"})
    with pytest.raises(ValueError):
        apply_patch(AnalyzerState(), {"connection_state": "online"})
    with pytest.raises(ValueError):
        apply_patch(AnalyzerState(), {"acquisition_state": "paused"})


def test_capturing_requires_connection() -> None:
    state = apply_patch(AnalyzerState(), {"acquisition_state": "capturing"})
    assert not state.capturing
    state = apply_patch(state, {"connection_state": "connected"})
    assert state.capturing
