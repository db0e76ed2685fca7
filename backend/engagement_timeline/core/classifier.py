"""Engagement classification strategies.

Both strategies answer the same question, ``classify(record, mode) -> bool``,
and are pure: the answer depends only on the record and the mode.

``RuleBasedClassifier`` is the predicate table used for aggregation and the
heatmap. ``WeightedScoreClassifier`` is the additive point-scoring alternative;
it is selected through ``CLASSIFIER_STRATEGY`` and never mixed with the rules.
"""

from typing import Dict, Optional

from engagement_timeline.core.features import FeatureRecord
from engagement_timeline.core.modes import Mode, SessionMode, parse_mode


class EngagementClassifier:
    name = "base"

    def classify(self, record: FeatureRecord, mode: Mode) -> bool:
        raise NotImplementedError

    def __call__(self, record: FeatureRecord, mode: Mode) -> bool:
        return self.classify(record, mode)


def _known_mode(mode: Mode) -> Optional[SessionMode]:
    parsed = parse_mode(mode)
    return parsed if isinstance(parsed, SessionMode) else None


def _is_alert(record: FeatureRecord) -> bool:
    return record.drowsy_state == "Awake" and record.yawn_state == "NotYawning"


def _teaching_engaged(record: FeatureRecord) -> bool:
    return (
        _is_alert(record)
        and record.gaze_state == "Center"
        and record.pose_state in {"Forward", "Up"}
        and record.emotion_state not in {"angry", "sad", "fear"}
    )


def _discussion_engaged(record: FeatureRecord) -> bool:
    # Looking at peers is fine during discussion, so gaze is not checked.
    return (
        _is_alert(record)
        and record.pose_state != "NotDetected"
        and record.emotion_state != "angry"
    )


def _exam_engaged(record: FeatureRecord) -> bool:
    return (
        _is_alert(record)
        and record.gaze_state == "Center"
        and record.pose_state in {"Forward", "Down"}
        and record.hand_state == "NotRaised"
        and record.emotion_state in {"neutral", "focused"}
    )


_MODE_RULES = {
    SessionMode.TEACHING: _teaching_engaged,
    SessionMode.DISCUSSION: _discussion_engaged,
    SessionMode.EXAM: _exam_engaged,
}


class RuleBasedClassifier(EngagementClassifier):
    name = "rules"

    def classify(self, record: FeatureRecord, mode: Mode) -> bool:
        known = _known_mode(mode)
        if known is SessionMode.BREAK:
            return True
        rule = _MODE_RULES.get(known)
        if rule is None:
            return False
        return rule(record)


# Points per feature value; values missing from a table score 0.
WeightTable = Dict[str, Dict[str, float]]

DEFAULT_WEIGHTS: Dict[SessionMode, WeightTable] = {
    SessionMode.TEACHING: {
        "drowsy_state": {"Awake": 3, "Drowsy": -3},
        "yawn_state": {"NotYawning": 1, "Yawning": -2},
        "gaze_state": {"Center": 3, "Left": -1, "Right": -1, "NotDetected": -2},
        "pose_state": {"Forward": 2, "Up": 1, "Down": -1, "Left": -1, "Right": -1, "NotDetected": -2},
        "hand_state": {"Raised": 1, "NotRaised": 0},
        "emotion_state": {"happy": 1, "neutral": 1, "surprise": 1, "angry": -2, "sad": -1, "fear": -1},
    },
    SessionMode.DISCUSSION: {
        "drowsy_state": {"Awake": 3, "Drowsy": -3},
        "yawn_state": {"NotYawning": 1, "Yawning": -2},
        "gaze_state": {"Center": 1, "Left": 1, "Right": 1, "NotDetected": -1},
        "pose_state": {"Forward": 2, "Up": 1, "Down": 0, "Left": 1, "Right": 1, "NotDetected": -2},
        "hand_state": {"Raised": 2, "NotRaised": 0},
        "emotion_state": {"happy": 2, "neutral": 1, "surprise": 1, "angry": -2, "sad": -1, "fear": -1},
    },
    SessionMode.EXAM: {
        "drowsy_state": {"Awake": 3, "Drowsy": -3},
        "yawn_state": {"NotYawning": 1, "Yawning": -2},
        "gaze_state": {"Center": 3, "Left": -3, "Right": -3, "NotDetected": -2},
        "pose_state": {"Forward": 2, "Down": 2, "Up": -1, "Left": -2, "Right": -2, "NotDetected": -2},
        "hand_state": {"Raised": -2, "NotRaised": 1},
        "emotion_state": {"neutral": 2, "focused": 2, "happy": 0, "surprise": 0, "angry": -2, "sad": -1, "fear": -1},
    },
}


def _score_bounds(table: WeightTable) -> tuple[float, float]:
    low = 0.0
    high = 0.0
    for weights in table.values():
        values = list(weights.values()) + [0.0]
        low += min(values)
        high += max(values)
    return low, high


class WeightedScoreClassifier(EngagementClassifier):
    name = "weighted"

    def __init__(self, threshold: float = 60.0, weights: Optional[Dict[SessionMode, WeightTable]] = None):
        if not 0.0 <= threshold <= 100.0:
            raise ValueError("Weighted score threshold must be between 0 and 100")
        self.threshold = float(threshold)
        self.weights = weights if weights is not None else DEFAULT_WEIGHTS
        self._bounds = {mode: _score_bounds(table) for mode, table in self.weights.items()}

    def score(self, record: FeatureRecord, mode: Mode) -> Optional[float]:
        """Return the 0..100 score for ``record`` under ``mode``, or ``None`` if the mode has no table."""
        known = _known_mode(mode)
        table = self.weights.get(known) if known is not None else None
        if table is None:
            return None

        raw = 0.0
        for field, weights in table.items():
            raw += float(weights.get(getattr(record, field) or "", 0.0))

        low, high = self._bounds[known]
        if high <= low:
            return 0.0
        return round((raw - low) / (high - low) * 100.0, 2)

    def classify(self, record: FeatureRecord, mode: Mode) -> bool:
        if _known_mode(mode) is SessionMode.BREAK:
            return True
        score = self.score(record, mode)
        if score is None:
            return False
        return score >= self.threshold


def get_classifier(name: str, *, threshold: float = 60.0) -> EngagementClassifier:
    normalized = (name or "").strip().lower()
    if normalized in {"rules", "rule", "predicate"}:
        return RuleBasedClassifier()
    if normalized in {"weighted", "weights", "score"}:
        return WeightedScoreClassifier(threshold=threshold)
    raise ValueError(f"Unknown classifier strategy: {name!r}")
