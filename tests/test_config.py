import pytest

from nr5g_analyzer import __version__
from nr5g_analyzer.config import (
    PRESETS,
    AnalyzerConfig,
    EngineSettings,
    coerce_config_patch,
    format_config_fragment,
    preset_config,
    summarize_config_changes,
)


def test_defaults() -> None:
    config = AnalyzerConfig()
    assert config.center_frequency_ghz == 28.0
    assert config.span_ghz == 6.0
    assert config.trigger_mode == "free run"
    assert config.path_mode == "correlation"
    assert config.averaging_count == 100


def test_merged_returns_new_config() -> None:
    config = AnalyzerConfig()
    merged = config.merged({"span_ghz": 2.0})
    assert merged.span_ghz == 2.0
    assert config.span_ghz == 6.0


def test_coerce_casts_and_drops_unknown_keys() -> None:
    patch = coerce_config_patch({"span_ghz": "2.5", "averaging_count": 12.0, "bogus": 1})
    assert patch == {"span_ghz": 2.5, "averaging_count": 12}
    assert isinstance(patch["averaging_count"], int)


def test_coerce_rejects_invalid_enum() -> None:
    with pytest.raises(ValueError):
        coerce_config_patch({"path_mode": "3RF"})
    with pytest.raises(ValueError):
        coerce_config_patch({"trigger_mode": "manual"})


@pytest.mark.parametrize(
    "updates",
    [
        {"averaging_count": float("inf")},
        {"averaging_count": 10**400},
        {"span_ghz": float("nan")},
        {"rbw_khz": "-inf"},
    ],
)
def test_coerce_rejects_non_finite_numbers(updates) -> None:
    with pytest.raises(ValueError):
        coerce_config_patch(updates)
    with pytest.raises(ValueError):
        AnalyzerConfig().merged(updates)


def test_preset_values() -> None:
    fr2 = preset_config("5g-fr2")
    assert fr2["trigger_mode"] == "video"
    assert fr2["path_mode"] == "correlation"
    assert preset_config("satcom")["analysis_bandwidth_ghz"] == 1.2
    assert preset_config("radar")["center_frequency_ghz"] == 77.0
    assert set(PRESETS) == {"5g-fr2", "satcom", "radar"}


def test_preset_config_returns_copy() -> None:
    preset_config("radar")["span_ghz"] = 99.0
    assert PRESETS["radar"]["span_ghz"] == 6.0


def test_unknown_preset_raises() -> None:
    with pytest.raises(ValueError):
        preset_config("lte")


def test_config_summaries() -> None:
    assert format_config_fragment("center_frequency_ghz", 28) == "center 28.00 GHz"
    assert format_config_fragment("reference_level_dbm", -5) == "ref -5.0 dBm"
    assert format_config_fragment("averaging_count", 64) == "avg ×64"
    assert format_config_fragment("path_mode", "2RF") == "path 2RF"
    summary = summarize_config_changes({"span_ghz": 2.0, "rbw_khz": 100.0, "trigger_mode": "video"})
    assert summary == "span 2.00 GHz • RBW 100 kHz • trigger video"


def test_engine_settings_defaults() -> None:
    settings = EngineSettings()
    assert not settings.bridge_mode
    assert settings.client_name == "nr5g-webui"
    assert settings.client_version == __version__
    assert settings.offload_threshold == 1000
    assert settings.initial_seed == 0x9E3779B9


def test_engine_settings_from_env() -> None:
    settings = EngineSettings.from_env(
        {
            "NR5G_BRIDGE_URL": "ws://localhost:9000",
            "NR5G_CAPTURE_INTERVAL_S": "0.5",
            "NR5G_TRACE_POINTS": "2048",
            "NR5G_INITIAL_SEED": "0x10",
        }
    )
    assert settings.bridge_mode
    assert settings.bridge_url == "ws://localhost:9000"
    assert settings.capture_interval_s == 0.5
    assert settings.trace_points == 2048
    assert settings.initial_seed == 16
    assert settings.heartbeat_interval_s == 3.0


def test_engine_settings_from_env_blank_bridge_is_simulator() -> None:
    assert not EngineSettings.from_env({"NR5G_BRIDGE_URL": ""}).bridge_mode
