"""Behavioral feature records observed for one student at one instant."""

import enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class DrowsyState(str, enum.Enum):
    AWAKE = "Awake"
    DROWSY = "Drowsy"


class YawnState(str, enum.Enum):
    NOT_YAWNING = "NotYawning"
    YAWNING = "Yawning"


class GazeState(str, enum.Enum):
    CENTER = "Center"
    LEFT = "Left"
    RIGHT = "Right"
    NOT_DETECTED = "NotDetected"


class PoseState(str, enum.Enum):
    FORWARD = "Forward"
    LEFT = "Left"
    RIGHT = "Right"
    UP = "Up"
    DOWN = "Down"
    NOT_DETECTED = "NotDetected"


class HandState(str, enum.Enum):
    RAISED = "Raised"
    NOT_RAISED = "NotRaised"


class EmotionState(str, enum.Enum):
    HAPPY = "happy"
    NEUTRAL = "neutral"
    SURPRISE = "surprise"
    ANGRY = "angry"
    SAD = "sad"
    FEAR = "fear"
    UNKNOWN = "unknown"


UNKNOWN_BUCKET = "unknown"

FEATURE_FIELDS = (
    "drowsy_state",
    "yawn_state",
    "gaze_state",
    "pose_state",
    "hand_state",
    "emotion_state",
)

# Capture clients send camelCase keys.
_PAYLOAD_ALIASES = {
    "drowsyState": "drowsy_state",
    "yawnState": "yawn_state",
    "gazeState": "gaze_state",
    "poseState": "pose_state",
    "handState": "hand_state",
    "emotionState": "emotion_state",
    "emotion": "emotion_state",
}


class FeatureRecord(BaseModel):
    """One snapshot of detected states.

    Values are kept as plain strings so that anything the detectors emit
    beyond the known enumerations survives into classification (where it
    fails closed) and into the frequency tables (where it lands in the
    ``unknown`` bucket).
    """

    drowsy_state: Optional[str] = None
    yawn_state: Optional[str] = None
    gaze_state: Optional[str] = None
    pose_state: Optional[str] = None
    hand_state: Optional[str] = None
    emotion_state: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator(*FEATURE_FIELDS, mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            value = value.value
        text = str(value).strip()
        return text or None

    @classmethod
    def from_payload(cls, payload: Any) -> "FeatureRecord":
        if isinstance(payload, FeatureRecord):
            return payload
        if not isinstance(payload, Mapping):
            return cls()
        data: Dict[str, Any] = {}
        for key, value in payload.items():
            field = _PAYLOAD_ALIASES.get(key, key)
            if field in FEATURE_FIELDS and (field not in data or key == field):
                data[field] = value
        return cls(**data)


FEATURE_VALUES = {
    "drowsy_state": [member.value for member in DrowsyState],
    "pose_state": [member.value for member in PoseState],
    "gaze_state": [member.value for member in GazeState],
    "emotion_state": [member.value for member in EmotionState],
    "yawn_state": [member.value for member in YawnState],
}
