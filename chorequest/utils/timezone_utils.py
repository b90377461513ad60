"""
Calendar arithmetic in a family's IANA timezone.

Every function reasons in wall-clock dates, never in fixed 24-hour blocks, so a
23-hour spring-forward day and a 25-hour fall-back day each count as one day.

Conventions:
    - Naive datetimes are UTC (the database stores naive UTC).
    - Boundary functions return timezone-aware UTC instants.
    - Week start day: 0=Sunday, 1=Monday, ... 6=Saturday.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chorequest.exceptions import InvalidTimezoneError

TimezoneLike = Union[str, ZoneInfo]

_ONE_MICROSECOND = timedelta(microseconds=1)


def get_zone(tz: TimezoneLike) -> ZoneInfo:
    """
    Resolve an IANA identifier to a ZoneInfo.

    Raises:
        InvalidTimezoneError: If the identifier is empty, malformed or unknown

    Example:
        >>> get_zone("America/Chicago")
        zoneinfo.ZoneInfo(key='America/Chicago')
    """
    if isinstance(tz, ZoneInfo):
        return tz
    if not isinstance(tz, str) or not tz.strip():
        raise InvalidTimezoneError(tz)
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise InvalidTimezoneError(tz) from e


def is_valid_timezone(tz: TimezoneLike) -> bool:
    try:
        get_zone(tz)
    except InvalidTimezoneError:
        return False
    return True


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    """Current instant as naive UTC, the storage convention for model timestamps."""
    return utc_now().replace(tzinfo=None)


def to_utc(instant: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive input is taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def as_naive_utc(instant: datetime) -> datetime:
    """Normalize to naive UTC for persistence."""
    return to_utc(instant).replace(tzinfo=None)


def local_datetime(instant: datetime, tz: TimezoneLike) -> datetime:
    return to_utc(instant).astimezone(get_zone(tz))


def local_date(instant: datetime, tz: TimezoneLike) -> date:
    """
    Wall-clock calendar date of an instant in the given zone.

    Example:
        >>> local_date(datetime(2025, 1, 15, 3, 0), "America/New_York")
        datetime.date(2025, 1, 14)
    """
    return local_datetime(instant, tz).date()


def _midnight(day: date, zone: ZoneInfo) -> datetime:
    # fold=0 maps a midnight that falls in a DST gap to the transition instant,
    # which is the first instant of that local day.
    return datetime(day.year, day.month, day.day, tzinfo=zone).astimezone(timezone.utc)


def start_of_day(instant: datetime, tz: TimezoneLike) -> datetime:
    """
    First instant of the instant's local calendar day, as aware UTC.

    Example:
        >>> start_of_day(datetime(2025, 3, 9, 12, 0), "America/Chicago")
        datetime.datetime(2025, 3, 9, 6, 0, tzinfo=datetime.timezone.utc)
    """
    zone = get_zone(tz)
    return _midnight(local_date(instant, zone), zone)


def end_of_day(instant: datetime, tz: TimezoneLike) -> datetime:
    """Last representable instant of the local calendar day, as aware UTC."""
    zone = get_zone(tz)
    next_day = local_date(instant, zone) + timedelta(days=1)
    return _midnight(next_day, zone) - _ONE_MICROSECOND


def _week_start_date(day: date, week_start_day: int) -> date:
    sunday_based = (day.weekday() + 1) % 7
    offset = (sunday_based - week_start_day % 7) % 7
    return day - timedelta(days=offset)


def start_of_week(instant: datetime, tz: TimezoneLike, week_start_day: int = 0) -> datetime:
    """
    First instant of the local week containing the instant, as aware UTC.

    Args:
        instant: Point in time
        tz: IANA identifier
        week_start_day: 0=Sunday ... 6=Saturday (taken modulo 7)

    Example:
        >>> start_of_week(datetime(2025, 1, 15, 18, 0), "America/Chicago")
        datetime.datetime(2025, 1, 12, 6, 0, tzinfo=datetime.timezone.utc)
    """
    zone = get_zone(tz)
    return _midnight(_week_start_date(local_date(instant, zone), week_start_day), zone)


def end_of_week(instant: datetime, tz: TimezoneLike, week_start_day: int = 0) -> datetime:
    zone = get_zone(tz)
    first = _week_start_date(local_date(instant, zone), week_start_day)
    return _midnight(first + timedelta(days=7), zone) - _ONE_MICROSECOND


def days_between(first: datetime, second: datetime, tz: TimezoneLike) -> int:
    """
    Whole calendar days between two instants, evaluated in the given zone.

    Order does not matter. Two instants on the same local date are 0 days apart
    regardless of how many hours separate them.

    Example:
        >>> days_between(datetime(2025, 3, 8, 18), datetime(2025, 3, 9, 18), "America/Chicago")
        1
    """
    zone = get_zone(tz)
    return abs((local_date(second, zone) - local_date(first, zone)).days)


def is_same_day(first: datetime, second: datetime, tz: TimezoneLike) -> bool:
    return days_between(first, second, tz) == 0


def is_same_week(
    first: datetime,
    second: datetime,
    tz: TimezoneLike,
    week_start_day: int = 0
) -> bool:
    zone = get_zone(tz)
    return (
        _week_start_date(local_date(first, zone), week_start_day)
        == _week_start_date(local_date(second, zone), week_start_day)
    )
