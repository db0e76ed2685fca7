from engagement_timeline.core.timekeys import normalize_time_key, is_valid_time, format_time_key
from engagement_timeline.core.modes import (
    SessionMode,
    ModeEvent,
    ModeTimeline,
    build_mode_timeline,
    resolve_mode,
    parse_mode,
    mode_label,
)
from engagement_timeline.core.features import FeatureRecord
from engagement_timeline.core.classifier import (
    EngagementClassifier,
    RuleBasedClassifier,
    WeightedScoreClassifier,
    get_classifier,
)
from engagement_timeline.core.aggregator import StudentAggregate, aggregate_student, engagement_percentages
from engagement_timeline.core.heatmap import HeatmapCell, HeatmapMatrix, build_heatmap_matrix, forward_hold
from engagement_timeline.core.fingerprint import MemoGuard, default_fingerprint
