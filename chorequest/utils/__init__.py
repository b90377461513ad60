from .timezone_utils import (
    days_between,
    end_of_day,
    end_of_week,
    get_zone,
    is_same_day,
    is_same_week,
    is_valid_timezone,
    local_date,
    start_of_day,
    start_of_week,
    to_utc,
    utc_now,
)

__all__ = [
    "days_between",
    "end_of_day",
    "end_of_week",
    "get_zone",
    "is_same_day",
    "is_same_week",
    "is_valid_timezone",
    "local_date",
    "start_of_day",
    "start_of_week",
    "to_utc",
    "utc_now",
]
