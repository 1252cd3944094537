"""
Timestamp helpers for the sync engine.

Tree ordering compares the raw timestamp strings; everything that needs
arithmetic (earliest/latest, change detection) goes through parse_timestamp.
"""

import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

_EPOCH_DIGITS = re.compile(r"^-?\d+(\.\d+)?$")


def parse_timestamp(value: Any, default_tz: Optional[str] = None) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or epoch milliseconds into an aware datetime.

    Args:
        value: str, int, float or datetime; anything else yields None
        default_tz: Zone name applied to naive values (UTC when not given)

    Returns:
        Aware datetime, or None when the value is empty or unparseable
    """
    if value is None or isinstance(value, bool):
        return None

    tzinfo = ZoneInfo(default_tz) if default_tz else timezone.utc

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = _from_epoch_ms(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if _EPOCH_DIGITS.match(text):
            parsed = _from_epoch_ms(float(text))
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    else:
        return None

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tzinfo)
    return parsed


def _from_epoch_ms(value: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def timestamp_range(values: Iterable[Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Earliest and latest parseable instants among the values."""
    parsed = [ts for ts in (parse_timestamp(v) for v in values) if ts is not None]
    if not parsed:
        return None, None
    return min(parsed), max(parsed)


def format_local_datetime(value: datetime, tz_name: str) -> str:
    """Wall-clock time in the zone, without offset, to the second."""
    local = value.astimezone(ZoneInfo(tz_name))
    return local.replace(tzinfo=None).isoformat(timespec="seconds")


def same_instant(left: Optional[datetime], right: Optional[datetime]) -> bool:
    """Compare two instants at second precision; two missing values are equal."""
    if left is None or right is None:
        return left is None and right is None
    return int(left.timestamp()) == int(right.timestamp())
