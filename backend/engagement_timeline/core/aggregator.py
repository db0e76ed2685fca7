"""Per-student engagement aggregation."""

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from engagement_timeline.core.classifier import EngagementClassifier, RuleBasedClassifier
from engagement_timeline.core.features import FEATURE_VALUES, UNKNOWN_BUCKET, FeatureRecord
from engagement_timeline.core.modes import ModeTimeline, mode_label
from engagement_timeline.core.timekeys import normalize_time_key

logger = logging.getLogger(__name__)


def engagement_percentages(engaged: int, disengaged: int) -> tuple[float, float]:
    total = engaged + disengaged
    if total <= 0:
        return 0.0, 0.0
    return round(engaged / total * 100.0, 1), round(disengaged / total * 100.0, 1)


class EngagementTally(BaseModel):
    engaged: int = 0
    disengaged: int = 0

    @property
    def total(self) -> int:
        return self.engaged + self.disengaged

    def add(self, engaged: bool) -> None:
        if engaged:
            self.engaged += 1
        else:
            self.disengaged += 1

    def percentages(self) -> Dict[str, float]:
        engaged_pct, disengaged_pct = engagement_percentages(self.engaged, self.disengaged)
        return {"engaged_percent": engaged_pct, "disengaged_percent": disengaged_pct}


def _empty_frequency_tables() -> Dict[str, Dict[str, int]]:
    tables: Dict[str, Dict[str, int]] = {}
    for field, values in FEATURE_VALUES.items():
        table = {value: 0 for value in values}
        table.setdefault(UNKNOWN_BUCKET, 0)
        tables[field] = table
    return tables


class StudentAggregate(BaseModel):
    overall: EngagementTally = Field(default_factory=EngagementTally)
    by_mode: Dict[str, EngagementTally] = Field(default_factory=dict)
    frequencies: Dict[str, Dict[str, int]] = Field(default_factory=_empty_frequency_tables)
    skipped_records: int = 0

    @property
    def valid_records(self) -> int:
        return self.overall.total

    def count_features(self, record: FeatureRecord) -> None:
        for field, table in self.frequencies.items():
            value = getattr(record, field)
            if value is None or value not in table:
                value = UNKNOWN_BUCKET
            table[value] = table.get(value, 0) + 1

    def add(self, mode_key: str, engaged: bool) -> None:
        self.overall.add(engaged)
        self.by_mode.setdefault(mode_key, EngagementTally()).add(engaged)

    def percentages(self) -> Dict[str, float]:
        return self.overall.percentages()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "engaged": self.overall.engaged,
            "disengaged": self.overall.disengaged,
            "valid_records": self.valid_records,
            "skipped_records": self.skipped_records,
            **self.percentages(),
            "modes": {
                mode: {"engaged": tally.engaged, "disengaged": tally.disengaged, **tally.percentages()}
                for mode, tally in sorted(self.by_mode.items())
            },
            "pose_counts": dict(self.frequencies["pose_state"]),
            "gaze_counts": dict(self.frequencies["gaze_state"]),
            "emotion_counts": dict(self.frequencies["emotion_state"]),
            "yawn_counts": dict(self.frequencies["yawn_state"]),
            "drowsy_counts": dict(self.frequencies["drowsy_state"]),
        }


def aggregate_student(
    records: Optional[Mapping[Any, Any]],
    timeline: ModeTimeline,
    classifier: Optional[EngagementClassifier] = None,
    tz: Optional[str] = None,
) -> StudentAggregate:
    """Tally one student's observations.

    The reduction is order independent; records whose key does not normalize
    are counted in ``skipped_records`` and otherwise ignored.
    """
    classifier = classifier or RuleBasedClassifier()
    aggregate = StudentAggregate()

    for key, payload in (records or {}).items():
        time_ms = normalize_time_key(key, tz)
        if time_ms is None:
            logger.debug("Skipping observation with invalid time key %r", key)
            aggregate.skipped_records += 1
            continue

        record = FeatureRecord.from_payload(payload)
        mode = timeline.mode_at(time_ms)
        aggregate.count_features(record)
        aggregate.add(mode_label(mode), classifier.classify(record, mode))

    return aggregate
