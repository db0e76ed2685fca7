"""Time-key normalization.

Observation and mode-change records are keyed either by a structured local
date-time string (``"2024-03-05_14-07-33"``) or by a raw epoch value in
milliseconds (``1709647653000`` or ``"1709647653000"``). Everything downstream
works on integer epoch milliseconds; keys that cannot be parsed normalize to
``None`` so callers can drop the record instead of failing.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

STRUCTURED_KEY_SEPARATOR = "_"
STRUCTURED_KEY_FORMAT = "%Y-%m-%d %H:%M:%S"
STRUCTURED_KEY_OUTPUT_FORMAT = "%Y-%m-%d_%H-%M-%S"


def _resolve_zone(tz: Optional[str]):
    if not tz:
        return None
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _parse_structured(key: str, tz: Optional[str]) -> Optional[int]:
    date_part, _, time_part = key.partition(STRUCTURED_KEY_SEPARATOR)
    text = f"{date_part.strip()} {time_part.strip().replace('-', ':')}"
    try:
        parsed = datetime.strptime(text, STRUCTURED_KEY_FORMAT)
    except ValueError:
        return None

    zone = _resolve_zone(tz)
    if zone is not None:
        parsed = parsed.replace(tzinfo=zone)
    try:
        # Naive datetimes are interpreted in the process local zone.
        return int(parsed.timestamp() * 1000)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_epoch(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None

    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return int(number) if math.isfinite(number) else None


def normalize_time_key(key: Any, tz: Optional[str] = None) -> Optional[int]:
    """Return the epoch-millisecond value of a record key, or ``None`` if invalid."""
    if key is None:
        return None
    if isinstance(key, str) and STRUCTURED_KEY_SEPARATOR in key:
        return _parse_structured(key, tz)
    return _parse_epoch(key)


def is_valid_time(value: Optional[int]) -> bool:
    return value is not None


def format_time_key(moment: Optional[datetime] = None, tz: Optional[str] = None) -> str:
    """Build a structured key for ``moment`` (default: now) in the configured zone."""
    zone = _resolve_zone(tz)
    if moment is None:
        moment = datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(zone) if zone is not None else moment.astimezone()
    return local.strftime(STRUCTURED_KEY_OUTPUT_FORMAT)
