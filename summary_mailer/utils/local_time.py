"""
Local wall-clock <-> instant conversion by fixed minute offset.

Instants are epoch milliseconds. Local wall-clock values are naive
datetimes. The offset follows the browser convention used by the schedule
settings: ``local = instant - offset`` and ``instant = local + offset``.
Both directions are exact for integer-minute offsets, so
``to_instant(to_local(ms, off), off) == ms`` for every ms.
"""

from datetime import UTC, datetime, timedelta

_EPOCH = datetime(1970, 1, 1)


def now_ms() -> int:
    """Current instant in epoch milliseconds."""
    return round(datetime.now(UTC).timestamp() * 1000)


def to_local(instant_ms: int, offset_minutes: int) -> datetime:
    """Instant -> naive local wall-clock datetime."""
    return _EPOCH + timedelta(milliseconds=instant_ms - offset_minutes * 60_000)


def to_instant(local: datetime, offset_minutes: int) -> int:
    """Naive local wall-clock datetime -> instant."""
    delta = local - _EPOCH
    # integer arithmetic on the timedelta parts avoids float rounding
    local_ms = (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000
    return local_ms + offset_minutes * 60_000


def parse_instant(value: str | int | float | None) -> int | None:
    """
    Parse an ISO-8601 string or epoch milliseconds into an instant.

    Naive ISO strings are read as UTC. Returns None when unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value)

    text = value.strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return int(text)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return round(parsed.timestamp() * 1000)
