"""Numeric primitives for spectrum traces.

Provides bounds, noise-floor estimation, screen projection, peak and
nearest-point search, and the deterministic synthetic trace generator.
This module must not import engine or server classes; it is purely numerical
and holds no shared state.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class SpectrumPoint:
    """One trace sample: frequency in Hz, amplitude in dBm."""

    frequency: float
    amplitude: float


@dataclass(frozen=True)
class Bounds:
    freq_min: float
    freq_max: float
    amp_min: float
    amp_max: float


DEFAULT_BOUNDS = Bounds(freq_min=0.0, freq_max=1.0, amp_min=-200.0, amp_max=0.0)

# Noise floor uses the lowest 20% of samples, never fewer than five.
NOISE_FLOOR_FRACTION = 0.2
NOISE_FLOOR_MIN_SAMPLES = 5

# LCG constants (Numerical Recipes), modulus 2**32.
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2**32

TRACE_BASELINE_DBM = -120.0
# Main signal: (amplitude dB, centre fraction of the index range, width divisor of n).
TRACE_SIGNAL = (-20.0, 0.5, 10.0)
TRACE_SIGNAL_OFFSET_DB = 5.0
# Spurious tones, same layout.
TRACE_SPURS = (
    (-45.0, 0.3, 25.0),
    (-52.0, 0.7, 28.0),
)


def _amplitudes(points: Sequence[SpectrumPoint]) -> np.ndarray:
    return np.fromiter((p.amplitude for p in points), dtype=np.float64, count=len(points))


def _frequencies(points: Sequence[SpectrumPoint]) -> np.ndarray:
    return np.fromiter((p.frequency for p in points), dtype=np.float64, count=len(points))


def compute_bounds(points: Sequence[SpectrumPoint]) -> Bounds:
    """Min/max over frequency and amplitude, ignoring non-finite samples."""

    if not points:
        return DEFAULT_BOUNDS
    freqs = _frequencies(points)
    amps = _amplitudes(points)
    freqs = freqs[np.isfinite(freqs)]
    amps = amps[np.isfinite(amps)]

    freq_min, freq_max = DEFAULT_BOUNDS.freq_min, DEFAULT_BOUNDS.freq_max
    if freqs.size:
        freq_min, freq_max = float(freqs.min()), float(freqs.max())
    amp_min, amp_max = DEFAULT_BOUNDS.amp_min, DEFAULT_BOUNDS.amp_max
    if amps.size:
        amp_min, amp_max = float(amps.min()), float(amps.max())
    return Bounds(freq_min=freq_min, freq_max=freq_max, amp_min=amp_min, amp_max=amp_max)


def compute_noise_floor(points: Sequence[SpectrumPoint]) -> Optional[float]:
    """
    Displayed average noise level estimate.

    Averages the lowest max(5, floor(0.2 * n)) amplitudes and rounds to one
    decimal place. Returns None for an empty trace.
    """

    if not points:
        return None
    amps = np.sort(_amplitudes(points), kind="stable")
    sample_size = max(NOISE_FLOOR_MIN_SAMPLES, int(math.floor(amps.size * NOISE_FLOOR_FRACTION)))
    floor_slice = amps[:sample_size]
    noise = float(np.sum(floor_slice)) / floor_slice.size
    return round(noise, 1)


def build_coords(
    points: Sequence[SpectrumPoint],
    width: float,
    height: float,
    bounds: Bounds,
) -> np.ndarray:
    """Project a trace into interleaved x,y screen coordinates (float32)."""

    freq_span = (bounds.freq_max - bounds.freq_min) or 1.0
    amp_span = (bounds.amp_max - bounds.amp_min) or 1.0
    out = np.empty(len(points) * 2, dtype=np.float32)
    if not points:
        return out
    x = (_frequencies(points) - bounds.freq_min) / freq_span * float(width)
    # Screen origin is top-left; amplitude grows upward.
    y = float(height) - (_amplitudes(points) - bounds.amp_min) / amp_span * float(height)
    out[0::2] = x
    out[1::2] = y
    return out


def find_peaks(points: Sequence[SpectrumPoint], max_n: int) -> Tuple[SpectrumPoint, ...]:
    """Highest-amplitude samples first; ties keep trace order."""

    if not points or max_n <= 0:
        return ()
    order = np.argsort(-_amplitudes(points), kind="stable")
    return tuple(points[int(idx)] for idx in order[:max_n])


def nearest_point(points: Sequence[SpectrumPoint], frequency_hz: float) -> Optional[SpectrumPoint]:
    if not points:
        return None
    nearest = points[0]
    best = abs(nearest.frequency - frequency_hz)
    for point in points[1:]:
        distance = abs(point.frequency - frequency_hz)
        if distance < best:
            best = distance
            nearest = point
    return nearest


def _gaussian(idx: int, num_points: int, peak_db: float, centre_fraction: float, width_divisor: float) -> float:
    offset = (idx - num_points * centre_fraction) / (num_points / width_divisor)
    return peak_db * math.exp(-(offset**2))


class SeededRandom:
    """32-bit linear congruential generator producing floats in [0, 1)."""

    def __init__(self, seed: int):
        self.state = int(seed) % LCG_MODULUS

    def next(self) -> float:
        self.state = (self.state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self.state / LCG_MODULUS


def generate_spectrum_trace(
    center_freq_ghz: float,
    span_ghz: float,
    num_points: int = 256,
    seed: Optional[int] = None,
) -> Tuple[SpectrumPoint, ...]:
    """
    Synthetic trace: baseline noise plus a main signal and two spurs.

    A fixed seed reproduces the trace exactly. Without a seed a fresh one is
    drawn from the process RNG.
    """

    num_points = int(num_points)
    if num_points <= 0:
        return ()
    rng = SeededRandom(random.getrandbits(32) if seed is None else seed)
    start_ghz = center_freq_ghz - span_ghz / 2.0
    step_ghz = span_ghz / (num_points - 1) if num_points > 1 else 0.0

    trace = []
    for idx in range(num_points):
        frequency = (start_ghz + step_ghz * idx) * 1e9
        noise = TRACE_BASELINE_DBM + rng.next() * 4.0 - 2.0
        amplitude = noise + (_gaussian(idx, num_points, *TRACE_SIGNAL) + TRACE_SIGNAL_OFFSET_DB)
        for spur in TRACE_SPURS:
            amplitude += _gaussian(idx, num_points, *spur)
        trace.append(SpectrumPoint(frequency=frequency, amplitude=amplitude))
    return tuple(trace)


@dataclass(frozen=True, eq=False)
class SpectrumAnalysis:
    """Derived statistics for one trace, as consumed by renderers."""

    bounds: Bounds
    noise_floor: Optional[float]
    coords: Optional[np.ndarray] = None
    width: Optional[float] = None
    height: Optional[float] = None
    point_count: int = 0
    # Dispatcher generation the result belongs to; 0 when computed directly.
    generation: int = 0


def process_spectrum(
    points: Sequence[SpectrumPoint],
    width: Optional[float] = None,
    height: Optional[float] = None,
    compute_coords: bool = False,
) -> SpectrumAnalysis:
    bounds = compute_bounds(points)
    noise_floor = compute_noise_floor(points)
    if compute_coords and width is not None and height is not None:
        coords = build_coords(points, width, height, bounds)
        return SpectrumAnalysis(
            bounds=bounds,
            noise_floor=noise_floor,
            coords=coords,
            width=width,
            height=height,
            point_count=len(points),
        )
    return SpectrumAnalysis(bounds=bounds, noise_floor=noise_floor, point_count=len(points))
