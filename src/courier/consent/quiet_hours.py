"""Quiet-hours (do-not-disturb) window arithmetic.

Windows are time-of-day ranges in the recipient's timezone. A window whose
start is later than its end wraps past midnight ("22:00"–"08:00"). The end
is exclusive: at exactly the end time the window is already over.
"""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from protean.exceptions import ValidationError


def parse_time_of_day(value, label="time"):
    """Parse an ``HH:MM`` string, raising ValidationError on bad input."""
    parts = (value or "").split(":")
    if len(parts) != 2:
        raise ValidationError({label: [f"Invalid time format: {value}. Use HH:MM"]})
    try:
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError
    except ValueError:
        raise ValidationError({label: [f"Invalid time format: {value}. Use HH:MM"]}) from None
    return time(hour, minute)


def resolve_timezone(name):
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError({"timezone": [f"Unknown timezone: {name}"]}) from None


def quiet_window_end(start, end, timezone_name, now):
    """Return the UTC instant the quiet window ends if ``now`` is inside it, else None."""
    start_t = parse_time_of_day(start, "quiet_hours_start")
    end_t = parse_time_of_day(end, "quiet_hours_end")
    if start_t == end_t:
        return None

    tz = resolve_timezone(timezone_name)
    local = now.astimezone(tz)
    current = local.time().replace(tzinfo=None)

    if start_t < end_t:
        inside = start_t <= current < end_t
        end_date = local.date()
    else:
        inside = current >= start_t or current < end_t
        end_date = local.date() + timedelta(days=1) if current >= start_t else local.date()

    if not inside:
        return None

    return datetime.combine(end_date, end_t, tzinfo=tz).astimezone(UTC)
