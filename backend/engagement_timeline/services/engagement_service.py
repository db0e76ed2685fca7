"""Engagement service: student summaries and class heatmaps built from session feeds."""

import logging
from typing import Any, Dict, List, Optional

from engagement_timeline.config import settings
from engagement_timeline.core.aggregator import aggregate_student
from engagement_timeline.core.classifier import EngagementClassifier, get_classifier
from engagement_timeline.core.heatmap import HeatmapMatrix, build_heatmap_matrix
from engagement_timeline.core.modes import Mode, ModeTimeline, build_mode_timeline, coerce_mode, mode_label
from engagement_timeline.services.feed_service import FeedSource
from engagement_timeline.services.recommendation_service import build_student_suggestions

logger = logging.getLogger(__name__)


class NoHeatmapData(LookupError):
    """Raised when a session has no valid observations to place on a heatmap."""


def default_mode() -> Mode:
    return coerce_mode(settings.DEFAULT_SESSION_MODE, "teaching")


def default_classifier() -> EngagementClassifier:
    return get_classifier(settings.CLASSIFIER_STRATEGY, threshold=settings.WEIGHTED_SCORE_THRESHOLD)


def build_timeline(mode_changes: Optional[Dict[str, Any]]) -> ModeTimeline:
    return build_mode_timeline(mode_changes, default_mode=default_mode(), tz=settings.TIMEKEY_TIMEZONE)


def row_labels(attendance: List[Dict[str, Any]]) -> Dict[str, str]:
    """Map student ids to unique display labels, preserving attendance order."""
    labels: Dict[str, str] = {}
    taken = set()
    for entry in attendance:
        student_id = str(entry["student_id"])
        if student_id in labels:
            continue
        label = (entry.get("display_name") or "").strip() or student_id
        if label in taken:
            base = f"{label} ({student_id})"
            label, suffix = base, 2
            # A generated label can collide with another student's display name
            while label in taken:
                label = f"{base} {suffix}"
                suffix += 1
        taken.add(label)
        labels[student_id] = label
    return labels


async def get_mode_timeline(feed: FeedSource, session_code: str) -> ModeTimeline:
    return build_timeline(await feed.get_mode_changes(session_code))


async def compute_student_summary(
    feed: FeedSource,
    session_code: str,
    student_id: str,
    *,
    classifier: Optional[EngagementClassifier] = None,
) -> Dict[str, Any]:
    attendance = await feed.get_attendance(session_code)
    labels = row_labels(attendance)
    label = labels.get(student_id, student_id)

    records = await feed.get_observations(session_code, student_id)
    timeline = await get_mode_timeline(feed, session_code)
    aggregate = aggregate_student(
        records,
        timeline,
        classifier or default_classifier(),
        tz=settings.TIMEKEY_TIMEZONE,
    )
    logger.info(
        "Summary for %s/%s: %d valid, %d skipped",
        session_code, student_id, aggregate.valid_records, aggregate.skipped_records,
    )
    return {
        "session_code": session_code,
        "student_id": student_id,
        "student_label": label,
        "summary": aggregate.to_payload(),
        "suggestions": build_student_suggestions(aggregate, label),
    }


async def fetch_session_inputs(feed: FeedSource, session_code: str) -> Dict[str, Any]:
    """Everything one heatmap pass needs, fetched up front."""
    attendance = await feed.get_attendance(session_code)
    observations: Dict[str, Dict[str, Any]] = {}
    for entry in attendance:
        student_id = str(entry["student_id"])
        observations[student_id] = await feed.get_observations(session_code, student_id)
    mode_changes = await feed.get_mode_changes(session_code)
    return {
        "attendance": attendance,
        "observations": observations,
        "mode_changes": mode_changes,
    }


def build_heatmap(
    inputs: Dict[str, Any],
    *,
    mode_override: Optional[Mode] = None,
    classifier: Optional[EngagementClassifier] = None,
) -> Optional[HeatmapMatrix]:
    labels = row_labels(inputs["attendance"])
    rows = {label: inputs["observations"].get(student_id) for student_id, label in labels.items()}
    return build_heatmap_matrix(
        rows,
        build_timeline(inputs["mode_changes"]),
        classifier or default_classifier(),
        resolution_ms=settings.HEATMAP_RESOLUTION_MS,
        mode_override=mode_override,
        tz=settings.TIMEKEY_TIMEZONE,
        max_ticks=settings.HEATMAP_MAX_TICKS,
    )


def heatmap_payload(
    session_code: str,
    matrix: Optional[HeatmapMatrix],
    mode_override: Optional[Mode] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "session_code": session_code,
        "has_data": matrix is not None,
        "mode_override": mode_label(mode_override) if mode_override is not None else None,
    }
    if matrix is None:
        payload.update(
            {
                "start_ms": None,
                "end_ms": None,
                "resolution_ms": settings.HEATMAP_RESOLUTION_MS,
                "tick_count": 0,
                "students": [],
                "cells": [],
            }
        )
    else:
        payload.update(matrix.to_payload())
    return payload


async def compute_class_heatmap(
    feed: FeedSource,
    session_code: str,
    *,
    mode_override: Optional[Mode] = None,
) -> Dict[str, Any]:
    inputs = await fetch_session_inputs(feed, session_code)
    matrix = build_heatmap(inputs, mode_override=mode_override)
    if matrix is None:
        logger.info("No engagement data yet for session %s", session_code)
    return heatmap_payload(session_code, matrix, mode_override)


async def seek_offset(
    feed: FeedSource,
    session_code: str,
    student_label: str,
    time_ms: int,
    *,
    mode_override: Optional[Mode] = None,
) -> Dict[str, Any]:
    """Translate a clicked heatmap cell into seconds since the session's first observation."""
    inputs = await fetch_session_inputs(feed, session_code)
    matrix = build_heatmap(inputs, mode_override=mode_override)
    if matrix is None:
        raise NoHeatmapData("No engagement data for this session")
    offset = matrix.seconds_since_start(student_label, time_ms)
    return {
        "student": student_label,
        "time_ms": time_ms,
        "seconds_since_start": offset,
        "state": matrix.state_at(student_label, time_ms),
    }
