"""Session modes and the mode timeline.

Instructors switch the session between modes at arbitrary moments. The mode
in effect at a given instant is the last change at or before it (step
function); an instant before the first change takes the first mode, and an
empty timeline falls back to the configured default.
"""

import enum
import logging
from bisect import bisect_right
from typing import Any, Iterable, List, Mapping, NamedTuple, Optional, Union

from engagement_timeline.core.timekeys import normalize_time_key

logger = logging.getLogger(__name__)


class SessionMode(str, enum.Enum):
    TEACHING = "teaching"
    DISCUSSION = "discussion"
    GROUP_WORK = "group_work"
    BREAK = "break"
    EXAM = "exam"


# Known modes are SessionMode members; unrecognized mode text is kept verbatim
# so the classifier can fail closed on it.
Mode = Union[SessionMode, str]


def parse_mode(value: Any) -> Optional[Mode]:
    """Return the mode for a raw value, or ``None`` when the value is empty."""
    if value is None:
        return None
    if isinstance(value, SessionMode):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return SessionMode(text.lower())
    except ValueError:
        return text


def coerce_mode(value: Any, default: Mode) -> Mode:
    mode = parse_mode(value)
    return default if mode is None else mode


def mode_label(mode: Mode) -> str:
    return mode.value if isinstance(mode, SessionMode) else str(mode)


class ModeEvent(NamedTuple):
    time: int
    mode: Mode


class ModeTimeline:
    """Ascending, stable-sorted sequence of mode changes."""

    def __init__(self, events: Iterable[ModeEvent], default_mode: Mode = SessionMode.TEACHING):
        # sorted() is stable, so events at the same millisecond keep input order.
        self.events: List[ModeEvent] = sorted(events, key=lambda event: event.time)
        self.default_mode = default_mode
        self._times = [event.time for event in self.events]

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):
        return iter(self.events)

    def __bool__(self) -> bool:
        return bool(self.events)

    def mode_at(self, t: int) -> Mode:
        if not self.events:
            return self.default_mode
        # Index of the first event strictly after t; ties land on the last of them.
        index = bisect_right(self._times, t)
        if index == 0:
            return self.events[0].mode
        return self.events[index - 1].mode

    def to_list(self) -> List[dict]:
        return [{"time": event.time, "mode": mode_label(event.mode)} for event in self.events]


def _payload_mode(payload: Any) -> Any:
    if isinstance(payload, Mapping):
        return payload.get("mode")
    return payload


def build_mode_timeline(
    events: Optional[Mapping[Any, Any]],
    default_mode: Mode = SessionMode.TEACHING,
    tz: Optional[str] = None,
) -> ModeTimeline:
    """Build a timeline from a ``time_key -> {"mode": ...}`` mapping."""
    parsed: List[ModeEvent] = []
    for key, payload in (events or {}).items():
        time_ms = normalize_time_key(key, tz)
        if time_ms is None:
            logger.debug("Dropping mode change with invalid time key %r", key)
            continue
        parsed.append(ModeEvent(time_ms, coerce_mode(_payload_mode(payload), default_mode)))
    return ModeTimeline(parsed, default_mode=default_mode)


def resolve_mode(t: int, timeline: ModeTimeline, default: Optional[Mode] = None) -> Mode:
    if not timeline and default is not None:
        return default
    return timeline.mode_at(t)
