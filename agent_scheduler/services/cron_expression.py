"""Cron expression facility - validation and timezone-aware fire computation"""

import re
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from agent_scheduler.core.exceptions import ScheduleValidationError
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.models.base import utcnow

logger = get_logger(__name__)

CRON_FIELD_COUNT = 5

_FREQUENCY_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$", re.IGNORECASE)
_FREQUENCY_UNITS = {
    "": 1,
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def validate_cron_expression(expression: str) -> bool:
    """
    Validate a 5-field cron expression.

    Supports standard cron format:
    - Minute (0-59)
    - Hour (0-23)
    - Day of month (1-31)
    - Month (1-12)
    - Day of week (0-6, Sunday=0)

    Examples:
    - "0 0 * * *" - Daily at midnight
    - "*/5 * * * *" - Every 5 minutes
    - "0 9 * * 1-5" - Weekdays at 9 AM

    Expressions that parse but can never fire (e.g. "0 0 31 2 *") are
    rejected as well.

    Args:
        expression: Cron expression to validate

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(expression, str):
        return False

    if len(expression.split()) != CRON_FIELD_COUNT:
        logger.debug(
            "invalid_cron_expression",
            expression=expression,
            error=f"expected {CRON_FIELD_COUNT} fields"
        )
        return False

    try:
        croniter(expression, datetime(2000, 1, 1)).get_next(datetime)
        return True
    except (ValueError, KeyError) as e:
        logger.debug(
            "invalid_cron_expression",
            expression=expression,
            error=str(e)
        )
        return False


def validate_timezone(name: str) -> bool:
    """Check that a name exists in the IANA timezone database"""
    if not isinstance(name, str) or not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def get_zone(name: str) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ScheduleValidationError: If the name is unknown
    """
    if not validate_timezone(name):
        raise ScheduleValidationError(
            f"Invalid timezone: {name}. Must be an IANA timezone name (e.g. 'UTC', 'Europe/Berlin').",
            field="timezone",
            invalid_value=name
        )
    return ZoneInfo(name)


def ensure_valid_cron_expression(expression: str) -> str:
    """
    Return the expression unchanged or raise.

    Raises:
        ScheduleValidationError: If the expression is not a valid 5-field cron expression
    """
    if not validate_cron_expression(expression):
        raise ScheduleValidationError(
            f"Invalid cron expression: {expression}. "
            "Must be a valid 5-field cron expression (e.g., '0 0 * * *' for daily at midnight).",
            field="cron_expression",
            invalid_value=expression
        )
    return expression


def _localize(base_time: Optional[datetime], zone: ZoneInfo) -> datetime:
    # Naive datetimes are treated as UTC, matching the stored columns
    if base_time is None:
        base_time = utcnow()
    if base_time.tzinfo is None:
        base_time = base_time.replace(tzinfo=dt_timezone.utc)
    return base_time.astimezone(zone)


def _to_naive_utc(value: datetime) -> datetime:
    return value.astimezone(dt_timezone.utc).replace(tzinfo=None)


def upcoming_runs(
    expression: str,
    timezone: str = "UTC",
    count: int = 5,
    base_time: Optional[datetime] = None
) -> List[datetime]:
    """
    Calculate the next `count` fire times strictly after base_time.

    The expression is evaluated against wall-clock time in `timezone`;
    results are returned as naive UTC.

    Raises:
        ScheduleValidationError: If the expression or timezone is invalid
    """
    ensure_valid_cron_expression(expression)
    zone = get_zone(timezone)
    iterator = croniter(expression, _localize(base_time, zone))
    return [_to_naive_utc(iterator.get_next(datetime)) for _ in range(count)]


def calculate_next_run(
    expression: str,
    timezone: str = "UTC",
    base_time: Optional[datetime] = None
) -> datetime:
    """
    Calculate the next execution time based on cron expression.

    Args:
        expression: Cron expression
        timezone: IANA timezone the expression is evaluated in
        base_time: Base time to calculate from (defaults to now, naive = UTC)

    Returns:
        Next execution datetime as naive UTC

    Raises:
        ScheduleValidationError: If expression or timezone is invalid
    """
    return upcoming_runs(expression, timezone, count=1, base_time=base_time)[0]


def min_fire_interval(
    expression: str,
    timezone: str = "UTC",
    samples: int = 24,
    base_time: Optional[datetime] = None
) -> timedelta:
    """
    Smallest gap between consecutive fires over the next `samples` fires.

    Used to enforce an agent's minimum interval; "0,1 * * * *" yields one
    minute even though it fires only twice an hour.
    """
    runs = upcoming_runs(expression, timezone, count=samples + 1, base_time=base_time)
    return min(later - earlier for earlier, later in zip(runs, runs[1:]))


def parse_frequency(value: Union[str, int, float, None]) -> Optional[timedelta]:
    """
    Parse a frequency such as "30s", "1m", "2h", "1d" or a number of seconds.

    Returns:
        The frequency as a timedelta, or None when value is empty

    Raises:
        ValueError: If the value cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid frequency: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=float(value))

    match = _FREQUENCY_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid frequency: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=float(amount) * _FREQUENCY_UNITS[unit.lower()])
