"""Rule-based suggestions for a single student's engagement summary."""

from typing import Any, Dict, List

from engagement_timeline.core.aggregator import StudentAggregate


def _share(count: int, total: int) -> float:
    return (count / total) * 100.0 if total > 0 else 0.0


def build_student_suggestions(aggregate: StudentAggregate, student_label: str) -> List[Dict[str, str]]:
    suggestions: List[Dict[str, str]] = []
    payload: Dict[str, Any] = aggregate.to_payload()
    total = aggregate.valid_records

    if total == 0:
        return [
            {
                "title": "No observations yet",
                "reason": f"No usable feature records for {student_label} in this session.",
                "recommendation": "Check that the student's camera feed is connected before drawing conclusions.",
                "priority": "LOW",
            }
        ]

    engaged_percent = payload["engaged_percent"]
    if engaged_percent < 50:
        suggestions.append(
            {
                "title": "Check in directly",
                "reason": f"{student_label} was engaged in only {engaged_percent}% of observations.",
                "recommendation": "Ask a direct, low-stakes question to bring the student back into the session.",
                "priority": "HIGH",
            }
        )

    scored_modes = [
        (mode, stats) for mode, stats in payload["modes"].items()
        if stats["engaged"] + stats["disengaged"] > 0 and mode != "break"
    ]
    if len(scored_modes) >= 2:
        weakest_mode, weakest = min(scored_modes, key=lambda item: item[1]["engaged_percent"])
        strongest_mode, strongest = max(scored_modes, key=lambda item: item[1]["engaged_percent"])
        if (strongest["engaged_percent"] - weakest["engaged_percent"]) >= 20:
            suggestions.append(
                {
                    "title": "Mode-specific attention gap",
                    "reason": (
                        f"Engagement drops to {weakest['engaged_percent']}% during {weakest_mode} "
                        f"versus {strongest['engaged_percent']}% during {strongest_mode}."
                    ),
                    "recommendation": f"Give the student an active role during {weakest_mode} segments.",
                    "priority": "MEDIUM",
                }
            )

    gaze = payload["gaze_counts"]
    off_center = gaze.get("Left", 0) + gaze.get("Right", 0) + gaze.get("NotDetected", 0)
    if _share(off_center, total) >= 40:
        suggestions.append(
            {
                "title": "Frequent gaze away from screen",
                "reason": f"Gaze was off-center in {round(_share(off_center, total), 1)}% of observations.",
                "recommendation": "Point to on-screen material explicitly and check the student's camera placement.",
                "priority": "MEDIUM",
            }
        )

    drowsy_share = _share(payload["drowsy_counts"].get("Drowsy", 0), total)
    yawn_share = _share(payload["yawn_counts"].get("Yawning", 0), total)
    if max(drowsy_share, yawn_share) >= 15:
        suggestions.append(
            {
                "title": "Signs of fatigue",
                "reason": (
                    f"Drowsiness detected in {round(drowsy_share, 1)}% and yawning in "
                    f"{round(yawn_share, 1)}% of observations."
                ),
                "recommendation": "Consider a short break or a change of activity to reset energy.",
                "priority": "MEDIUM",
            }
        )

    emotions = payload["emotion_counts"]
    negative = emotions.get("angry", 0) + emotions.get("sad", 0) + emotions.get("fear", 0)
    if _share(negative, total) >= 25:
        suggestions.append(
            {
                "title": "Negative affect observed",
                "reason": f"Negative emotions appeared in {round(_share(negative, total), 1)}% of observations.",
                "recommendation": "Follow up privately after the session to see whether the student needs support.",
                "priority": "HIGH",
            }
        )

    if not suggestions:
        suggestions.append(
            {
                "title": "Maintain current approach",
                "reason": f"{student_label} is engaged in {engaged_percent}% of observations.",
                "recommendation": "No intervention needed; keep monitoring in the next interval.",
                "priority": "LOW",
            }
        )

    return suggestions
