"""
Wall-clock <-> UTC conversion for IANA time zones.

The scheduler stores absolute UTC instants; the time zone a user picked is
kept only as display/edit context. Converting a local date/time to UTC uses
an iterative correction instead of a fixed offset so that the offset in
force on the requested day (DST or not) is the one applied:

1. take the requested fields as if they were UTC (first guess),
2. render the guess in the target zone,
3. shift the guess by the difference between requested and rendered fields,
4. repeat once more.

Two passes converge whenever the requested local time exists. Local times
that fall in a spring-forward gap or a fall-back overlap are not detected;
the result is some valid instant near the requested one.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.exceptions import ValidationError

CORRECTION_PASSES = 2


@dataclass(frozen=True)
class ZonedFields:
    """Calendar fields of an instant as displayed in some zone."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int = 0

    def as_naive_utc(self) -> datetime:
        return datetime(self.year, self.month, self.day, self.hour, self.minute, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name or raise ValidationError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValidationError(f"Unknown timezone: {name}")


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def tz_parts(instant: datetime, tz: str) -> ZonedFields:
    """Render an instant in ``tz`` and return its calendar fields."""
    local = ensure_utc(instant).astimezone(get_zone(tz))
    return ZonedFields(local.year, local.month, local.day, local.hour, local.minute, local.second)


def zoned_to_utc(fields: ZonedFields, tz: str) -> datetime:
    """
    Return the UTC instant that displays as ``fields`` in ``tz``.

    Exact to the minute; seconds are zeroed.

    Raises:
        ValueError: if the fields do not form a calendar date.
        ValidationError: if ``tz`` is not a known zone.
    """
    desired = fields.as_naive_utc()
    guess = desired

    for _ in range(CORRECTION_PASSES):
        rendered = tz_parts(guess, tz)
        actual = ZonedFields(
            rendered.year, rendered.month, rendered.day, rendered.hour, rendered.minute
        ).as_naive_utc()
        guess = guess + (desired - actual)

    return guess


def to_iso(instant: datetime | None) -> str | None:
    """Serialize an instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if instant is None:
        return None
    return ensure_utc(instant).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_instant(value, label: str) -> datetime:
    """
    Parse an ISO-8601 string (``Z`` or offset suffix) or a datetime into an
    aware UTC datetime.

    Raises:
        ValidationError: if the value is missing or malformed.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        raise ValidationError(f"Invalid {label}")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid {label}")
    return ensure_utc(parsed)


def iso_to_zoned_fields(iso: str, tz: str) -> dict | None:
    """
    Convert an ISO instant into the 12-hour form fields used by the
    scheduling form: ``{"date": "YYYY-MM-DD", "hour": "1".."12",
    "minute": "00".."59", "ampm": "AM"|"PM"}``.
    """
    try:
        instant = parse_instant(iso, "instant")
    except ValidationError:
        return None

    p = tz_parts(instant, tz)
    hour12 = p.hour % 12 or 12
    return {
        "date": f"{p.year:04d}-{p.month:02d}-{p.day:02d}",
        "hour": str(hour12),
        "minute": f"{p.minute:02d}",
        "ampm": "AM" if p.hour < 12 else "PM",
    }


def fields_to_iso(fields: dict, tz: str) -> str | None:
    """Inverse of :func:`iso_to_zoned_fields`; None when the fields are malformed."""
    try:
        year, month, day = (int(part) for part in str(fields["date"]).split("-"))
        hour = int(fields["hour"])
        minute = int(fields["minute"])
    except (KeyError, TypeError, ValueError):
        return None

    if not 1 <= hour <= 12 or not 0 <= minute <= 59:
        return None

    ampm = str(fields.get("ampm", "AM")).upper()
    if ampm == "AM":
        hour = 0 if hour == 12 else hour
    elif ampm == "PM":
        hour = hour if hour == 12 else hour + 12
    else:
        return None

    try:
        instant = zoned_to_utc(ZonedFields(year, month, day, hour, minute), tz)
    except ValueError:
        return None
    return to_iso(instant)


def now_defaults(tz: str, now: datetime | None = None) -> dict:
    """Current local time in ``tz`` rounded up to the next five minutes, as form fields."""
    local = ensure_utc(now or utc_now()).astimezone(get_zone(tz)).replace(second=0, microsecond=0)
    remainder = local.minute % 5
    if remainder:
        local = local + timedelta(minutes=5 - remainder)
    return iso_to_zoned_fields(to_iso(local), tz)
