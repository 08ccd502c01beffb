"""Marker placement on top of the peak and nearest-point primitives.

Functions return new marker tuples; they never mutate their inputs. Labels
are allocated as M<max existing suffix + 1> so they stay unique per session.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from nr5g_analyzer.dsp.spectrum import SpectrumPoint, find_peaks, nearest_point

AUTO_MARKER_COUNT = 3

_LABEL_RE = re.compile(r"^M(\d+)$")


@dataclass(frozen=True)
class Marker:
    label: str
    frequency: float
    amplitude: float


def find_markers(points: Sequence[SpectrumPoint], count: int = AUTO_MARKER_COUNT) -> Tuple[Marker, ...]:
    """Peak-search markers M1..Mn in descending amplitude order."""

    return tuple(
        Marker(label=f"M{index + 1}", frequency=point.frequency, amplitude=point.amplitude)
        for index, point in enumerate(find_peaks(points, count))
    )


def next_marker_label(markers: Sequence[Marker]) -> str:
    highest = 0
    for marker in markers:
        match = _LABEL_RE.match(marker.label)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"M{highest + 1}"


def add_marker(
    markers: Sequence[Marker],
    points: Sequence[SpectrumPoint],
    frequency_hz: float,
) -> Optional[Tuple[Marker, ...]]:
    """Append a marker snapped to the nearest sample; None without a trace."""

    nearest = nearest_point(points, frequency_hz)
    if nearest is None:
        return None
    marker = Marker(
        label=next_marker_label(markers),
        frequency=nearest.frequency,
        amplitude=nearest.amplitude,
    )
    return (*markers, marker)


def move_marker(
    markers: Sequence[Marker],
    points: Sequence[SpectrumPoint],
    label: str,
    frequency_hz: float,
) -> Optional[Tuple[Marker, ...]]:
    """Re-snap one marker; None when nothing would change."""

    nearest = nearest_point(points, frequency_hz)
    if nearest is None:
        return None
    changed = False
    moved = []
    for marker in markers:
        if marker.label == label and (
            marker.frequency != nearest.frequency or marker.amplitude != nearest.amplitude
        ):
            marker = Marker(label=label, frequency=nearest.frequency, amplitude=nearest.amplitude)
            changed = True
        moved.append(marker)
    return tuple(moved) if changed else None


def delete_marker(markers: Sequence[Marker], label: str) -> Tuple[Marker, ...]:
    return tuple(marker for marker in markers if marker.label != label)
