"""Pydantic schemas for feeds, student summaries and the class heatmap."""

from typing import Optional, List, Dict

from pydantic import AliasChoices, BaseModel, Field, ConfigDict, field_validator, model_validator

from engagement_timeline.core.features import FEATURE_FIELDS
from engagement_timeline.core.modes import SessionMode


class AttendanceCreate(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=120)
    display_name: Optional[str] = Field(None, max_length=200)
    profile_image: Optional[str] = Field(None, max_length=500)


class AttendanceResponse(BaseModel):
    student_id: str
    display_name: Optional[str] = None
    profile_image: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ObservationCreate(BaseModel):
    time_key: Optional[str] = Field(
        None,
        max_length=40,
        validation_alias=AliasChoices("time_key", "timeKey"),
        description="YYYY-MM-DD_HH-MM-SS or epoch ms; defaults to now",
    )
    # Capture clients send camelCase keys
    drowsy_state: Optional[str] = Field(None, validation_alias=AliasChoices("drowsy_state", "drowsyState"))
    yawn_state: Optional[str] = Field(None, validation_alias=AliasChoices("yawn_state", "yawnState"))
    gaze_state: Optional[str] = Field(None, validation_alias=AliasChoices("gaze_state", "gazeState"))
    pose_state: Optional[str] = Field(None, validation_alias=AliasChoices("pose_state", "poseState"))
    hand_state: Optional[str] = Field(None, validation_alias=AliasChoices("hand_state", "handState"))
    emotion_state: Optional[str] = Field(
        None, validation_alias=AliasChoices("emotion_state", "emotionState", "emotion")
    )

    @model_validator(mode="after")
    def _has_features(self) -> "ObservationCreate":
        if all(getattr(self, field) is None for field in FEATURE_FIELDS):
            raise ValueError(f"Observation carries none of: {', '.join(FEATURE_FIELDS)}")
        return self


class ObservationResponse(BaseModel):
    session_code: str
    student_id: str
    time_key: str
    time_ms: Optional[int] = None


class ModeChangeCreate(BaseModel):
    mode: SessionMode
    time_key: Optional[str] = Field(None, max_length=40)


class ModeEventItem(BaseModel):
    time: int
    mode: str


class ModeTimelineResponse(BaseModel):
    session_code: str
    default_mode: str
    events: List[ModeEventItem]


class ModeTally(BaseModel):
    engaged: int
    disengaged: int
    engaged_percent: float
    disengaged_percent: float


class StudentSummary(BaseModel):
    engaged: int
    disengaged: int
    valid_records: int
    skipped_records: int
    engaged_percent: float
    disengaged_percent: float
    modes: Dict[str, ModeTally]
    pose_counts: Dict[str, int]
    gaze_counts: Dict[str, int]
    emotion_counts: Dict[str, int]
    yawn_counts: Dict[str, int]
    drowsy_counts: Dict[str, int]


class StudentSuggestion(BaseModel):
    title: str
    reason: str
    recommendation: str
    priority: str


class StudentSummaryResponse(BaseModel):
    session_code: str
    student_id: str
    student_label: str
    summary: StudentSummary
    suggestions: List[StudentSuggestion]


class HeatmapCellItem(BaseModel):
    time: int
    student: str
    state: int


class HeatmapResponse(BaseModel):
    session_code: str
    has_data: bool
    mode_override: Optional[str] = None
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None
    resolution_ms: int
    tick_count: int
    students: List[str]
    cells: List[HeatmapCellItem]


class HeatmapSeekResponse(BaseModel):
    student: str
    time_ms: int
    seconds_since_start: int
    state: int


class ModeOverrideRequest(BaseModel):
    mode: Optional[str] = Field(None, description="Pinned mode, or null to follow the timeline")

    @field_validator("mode")
    @classmethod
    def _known_mode(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        try:
            return SessionMode(value.strip().lower()).value
        except ValueError as exc:
            raise ValueError(f"Unknown session mode: {value}") from exc


class LiveStatusResponse(BaseModel):
    session_code: str
    running: bool
    mode_override: Optional[str] = None
    last_sequence: int
    latest: Optional[HeatmapResponse] = None
