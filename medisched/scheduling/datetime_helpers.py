import datetime as dt
from zoneinfo import ZoneInfo

from loguru import logger


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def _pin_offset(local: dt.datetime) -> dt.datetime:
    """Swap a zone for the fixed offset in force at that instant.

    Datetimes sharing one tzinfo object compare and subtract as wall-clock
    times, which is wrong across a DST change. With fixed offsets, instants on
    different sides of a change carry different offsets and compare in UTC.
    """
    offset = local.utcoffset()
    if offset is None:
        return local
    return local.replace(tzinfo=dt.timezone(offset), fold=0)


def to_clinic_time(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    """Interpret naive datetimes as clinic wall-clock time; convert aware ones.

    The result carries the clinic's UTC offset at that instant. Wall times
    skipped by a spring-forward change move to the matching later local time.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return _pin_offset(value.astimezone(dt.timezone.utc).astimezone(tz))


def at_wall_time(date: dt.date, time: dt.time, tz: dt.tzinfo) -> dt.datetime:
    """Combine a civil date and wall-clock time in the clinic timezone."""
    return to_clinic_time(dt.datetime.combine(date, time), tz)


def week_bounds(
    instant: dt.datetime, tz: dt.tzinfo | None = None
) -> tuple[dt.datetime, dt.datetime]:
    """Return ``[monday 00:00, next monday 00:00)`` of the ISO week holding ``instant``.

    Midnights are taken in ``tz`` when given, else in ``instant``'s timezone, so
    ``week_bounds(datetime(2026, 3, 18, 10))`` (a Wednesday) gives Monday the
    16th and Monday the 23rd at midnight.
    """
    zone = tz or instant.tzinfo
    if tz is not None:
        instant = to_clinic_time(instant, tz)
    monday = instant.date() - dt.timedelta(days=instant.weekday())
    if zone is None:
        start = dt.datetime.combine(monday, dt.time.min)
        return start, start + dt.timedelta(days=7)
    return (
        at_wall_time(monday, dt.time.min, zone),
        at_wall_time(monday + dt.timedelta(days=7), dt.time.min, zone),
    )


class SystemClock:
    """Wall clock pinned to the clinic timezone."""

    def __init__(self, tz: dt.tzinfo) -> None:
        self._tz = tz

    @property
    def tz(self) -> dt.tzinfo:
        return self._tz

    def now(self) -> dt.datetime:
        return dt.datetime.now(self._tz)
