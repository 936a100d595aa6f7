"""Next-run computation for standard 5-field cron expressions."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from jobengine.core.exceptions import InvalidCronExpression, ValidationError


def resolve_timezone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {name}", {"timezone": name}) from None


def validate_expression(expression: str) -> str:
    """Return the normalised expression or raise InvalidCronExpression."""
    normalised = " ".join((expression or "").split())
    fields = normalised.split(" ") if normalised else []
    if len(fields) != 5:
        raise InvalidCronExpression(expression, f"expected 5 fields, got {len(fields)}")
    if not croniter.is_valid(normalised):
        raise InvalidCronExpression(expression, "unparseable field")
    return normalised


def next_run_at(expression: str, timezone: str | None, now: datetime) -> datetime:
    """
    First fire time strictly after ``now``, evaluated in ``timezone``.

    Pure function of its arguments; the result is returned in UTC.
    """
    normalised = validate_expression(expression)
    tz = resolve_timezone(timezone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    local_now = now.astimezone(tz)
    upcoming = croniter(normalised, local_now).get_next(datetime)
    if upcoming.tzinfo is None:
        upcoming = upcoming.replace(tzinfo=tz)
    return upcoming.astimezone(UTC)
