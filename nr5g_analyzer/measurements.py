"""Tracked measurements and their simulated drift.

Each measurement wanders around a nominal baseline within +/- its variance.
Changes larger than 35% of the variance are worth a measurement-log entry.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from nr5g_analyzer.history import MeasurementLogEntry, create_id

MEASUREMENT_STATUSES = ("good", "warning", "critical")

# Fraction of variance a step must reach to be logged.
LOG_CHANGE_FRACTION = 0.35


@dataclass(frozen=True)
class Measurement:
    id: str
    label: str
    value: str
    status: str
    unit: Optional[str] = None
    delta: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class MeasurementSpec:
    id: str
    label: str
    unit: str
    base: float
    variance: float
    decimals: int
    status: str
    description: Optional[str] = None


MEASUREMENT_SPECS: Tuple[MeasurementSpec, ...] = (
    MeasurementSpec(
        id="evm",
        label="Residual EVM",
        unit="%",
        base=0.58,
        variance=0.08,
        decimals=2,
        status="good",
        description="Analyzer residual EVM for FR2 wideband waveforms.",
    ),
    MeasurementSpec(
        id="danl",
        label="Displayed Avg Noise Level",
        unit="dBm/Hz",
        base=-174.0,
        variance=1.2,
        decimals=1,
        status="good",
        description="Noise floor after cross-correlation averaging.",
    ),
    MeasurementSpec(
        id="toi",
        label="Third Order Intercept",
        unit="dBm",
        base=28.0,
        variance=1.5,
        decimals=1,
        status="good",
        description="Linearity reference measured with two-tone stimulus.",
    ),
    MeasurementSpec(
        id="aclr",
        label="ACLR",
        unit="dB",
        base=69.0,
        variance=1.8,
        decimals=1,
        status="good",
        description="Adjacent channel leakage ratio for wideband 5G NR signal.",
    ),
    MeasurementSpec(
        id="noiseFigure",
        label="Noise Figure",
        unit="dB",
        base=0.45,
        variance=0.05,
        decimals=2,
        status="good",
        description="Two-path cross-correlation noise figure measurement.",
    ),
)

MEASUREMENT_SPEC_INDEX: Dict[str, MeasurementSpec] = {spec.id: spec for spec in MEASUREMENT_SPECS}


def create_measurement_snapshot(spec: MeasurementSpec) -> Measurement:
    return Measurement(
        id=spec.id,
        label=spec.label,
        value=f"{spec.base:.{spec.decimals}f}",
        unit=spec.unit,
        delta=f"+0.00 {spec.unit}",
        status=spec.status,
        description=spec.description,
    )


def _format_delta(delta: float, decimals: int, unit: Optional[str]) -> str:
    sign = "+" if delta >= 0 else ""
    suffix = f" {unit}" if unit else ""
    return f"{sign}{delta:.{decimals}f}{suffix}"


def perturb_measurements(
    measurements: Sequence[Measurement],
    rng: random.Random,
    timestamp: datetime,
) -> Tuple[Tuple[Measurement, ...], List[MeasurementLogEntry]]:
    """
    Random-walk every measurement that has a known spec.

    Returns the new measurement tuple and the log entries for steps of at
    least 35% of the spec variance. Measurements without a spec (e.g. those
    delivered by a bridge) are left untouched.
    """

    log_entries: List[MeasurementLogEntry] = []
    next_measurements = []
    for measurement in measurements:
        spec = MEASUREMENT_SPEC_INDEX.get(measurement.id)
        if spec is None:
            next_measurements.append(measurement)
            continue
        try:
            prev_value = float(measurement.value)
        except ValueError:
            prev_value = spec.base
        next_value = round(spec.base + (rng.random() - 0.5) * spec.variance * 2, spec.decimals)
        delta_value = next_value - prev_value
        value = f"{next_value:.{spec.decimals}f}"
        delta = _format_delta(delta_value, spec.decimals, spec.unit)

        if abs(delta_value) >= spec.variance * LOG_CHANGE_FRACTION:
            log_entries.append(
                MeasurementLogEntry(
                    id=create_id("measure"),
                    timestamp=timestamp,
                    measurement_id=measurement.id,
                    label=measurement.label,
                    value=value,
                    unit=spec.unit,
                    status=measurement.status,
                    delta=delta,
                )
            )
        next_measurements.append(replace(measurement, value=value, delta=delta))
    return tuple(next_measurements), log_entries
