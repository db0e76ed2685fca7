"""Class-wide engagement heatmap.

Each student's observations become a sparse list of state changes. The matrix
puts every student on one shared axis running from the earliest to the latest
observation in fixed steps, holding each student's last known state between
changes.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from engagement_timeline.core.classifier import EngagementClassifier, RuleBasedClassifier
from engagement_timeline.core.features import FeatureRecord
from engagement_timeline.core.modes import Mode, ModeTimeline
from engagement_timeline.core.timekeys import normalize_time_key

logger = logging.getLogger(__name__)

ChangePoint = Tuple[int, bool]


class HeatmapCell(NamedTuple):
    time: int
    student: str
    state: int


class HeatmapMatrix:
    """Dense (time, student, state) cells over a uniform axis."""

    def __init__(
        self,
        cells: List[HeatmapCell],
        labels: List[str],
        start_ms: int,
        end_ms: int,
        resolution_ms: int,
    ):
        self.cells = cells
        self.labels = labels
        self.start_ms = start_ms
        self.end_ms = end_ms
        self.resolution_ms = resolution_ms
        self.tick_count = len(cells) // len(labels) if labels else 0
        self._row_offsets = {label: index * self.tick_count for index, label in enumerate(labels)}

    @property
    def ticks(self) -> List[int]:
        return [self.start_ms + index * self.resolution_ms for index in range(self.tick_count)]

    def _tick_index(self, time_ms: int) -> int:
        index = (int(time_ms) - self.start_ms) // self.resolution_ms
        return max(0, min(index, self.tick_count - 1))

    def state_at(self, student: str, time_ms: int) -> int:
        if student not in self._row_offsets:
            raise KeyError(student)
        return self.cells[self._row_offsets[student] + self._tick_index(time_ms)].state

    def seconds_since_start(self, student: str, time_ms: int) -> int:
        """Offset of the tick under ``time_ms`` from the matrix start, in seconds."""
        if student not in self._row_offsets:
            raise KeyError(student)
        tick = self.start_ms + self._tick_index(time_ms) * self.resolution_ms
        return (tick - self.start_ms) // 1000

    def rows(self) -> Dict[str, List[int]]:
        return {
            label: [cell.state for cell in self.cells[offset:offset + self.tick_count]]
            for label, offset in self._row_offsets.items()
        }

    def to_payload(self) -> Dict[str, Any]:
        return {
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "resolution_ms": self.resolution_ms,
            "tick_count": self.tick_count,
            "students": list(self.labels),
            "cells": [
                {"time": cell.time, "student": cell.student, "state": cell.state}
                for cell in self.cells
            ],
        }


def build_change_points(
    records: Optional[Mapping[Any, Any]],
    timeline: ModeTimeline,
    classifier: EngagementClassifier,
    mode_override: Optional[Mode] = None,
    tz: Optional[str] = None,
) -> List[ChangePoint]:
    points: List[ChangePoint] = []
    for key, payload in (records or {}).items():
        time_ms = normalize_time_key(key, tz)
        if time_ms is None:
            logger.debug("Dropping observation with invalid time key %r", key)
            continue
        mode = mode_override if mode_override is not None else timeline.mode_at(time_ms)
        points.append((time_ms, classifier.classify(FeatureRecord.from_payload(payload), mode)))
    points.sort(key=lambda point: point[0])
    return points


def forward_hold(points: Sequence[ChangePoint], axis: Iterable[int]) -> List[bool]:
    """Sample the last state at or before each tick; the pointer only moves forward."""
    states: List[bool] = []
    last_state = points[0][1] if points else False
    pointer = 0
    for tick in axis:
        while pointer < len(points) and points[pointer][0] <= tick:
            last_state = points[pointer][1]
            pointer += 1
        states.append(last_state)
    return states


def uniform_axis(start_ms: int, end_ms: int, resolution_ms: int) -> range:
    if resolution_ms <= 0:
        raise ValueError("Heatmap resolution must be a positive number of milliseconds")
    return range(start_ms, end_ms + 1, resolution_ms)


def build_heatmap_matrix(
    rows: Mapping[str, Optional[Mapping[Any, Any]]],
    timeline: ModeTimeline,
    classifier: Optional[EngagementClassifier] = None,
    resolution_ms: int = 1000,
    mode_override: Optional[Mode] = None,
    tz: Optional[str] = None,
    max_ticks: Optional[int] = None,
) -> Optional[HeatmapMatrix]:
    """Resample every student's engagement onto one axis.

    ``rows`` maps a display label to that student's ``time_key -> record``
    mapping, in display order. Returns ``None`` when no student has a single
    valid observation. Students without observations get an all-zero row.
    """
    classifier = classifier or RuleBasedClassifier()
    change_points = {
        label: build_change_points(records, timeline, classifier, mode_override, tz)
        for label, records in rows.items()
    }

    populated = [points for points in change_points.values() if points]
    if not populated:
        return None

    start_ms = min(points[0][0] for points in populated)
    end_ms = max(points[-1][0] for points in populated)
    axis = uniform_axis(start_ms, end_ms, resolution_ms)
    if max_ticks is not None and len(axis) > max_ticks:
        raise ValueError(
            f"Heatmap span of {end_ms - start_ms} ms at {resolution_ms} ms resolution exceeds {max_ticks} ticks"
        )

    cells: List[HeatmapCell] = []
    for label, points in change_points.items():
        states = forward_hold(points, axis)
        cells.extend(HeatmapCell(tick, label, int(state)) for tick, state in zip(axis, states))

    return HeatmapMatrix(cells, list(change_points.keys()), start_ms, end_ms, resolution_ms)
