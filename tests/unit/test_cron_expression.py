"""Unit tests for the cron expression facility"""

from datetime import datetime, timedelta, timezone

import pytest

from agent_scheduler.core.exceptions import ScheduleValidationError
from agent_scheduler.services.cron_expression import (
    calculate_next_run,
    ensure_valid_cron_expression,
    get_zone,
    min_fire_interval,
    parse_frequency,
    upcoming_runs,
    validate_cron_expression,
    validate_timezone,
)


class TestValidateCronExpression:
    """Test suite for cron validation"""

    @pytest.mark.parametrize("expression", [
        "0 0 * * *",
        "*/5 * * * *",
        "0 9 * * 1-5",
        "*/1 * * * *",
        "15,45 8-18 * * MON-FRI",
        "0 0 1 1 *",
    ])
    def test_valid_expressions(self, expression):
        assert validate_cron_expression(expression) is True

    @pytest.mark.parametrize("expression", [
        "* * *",
        "99 * * * *",
        "* 24 * * *",
        "0 0 * * * *",
        "not a cron",
        "",
        "0 0 31 2 *",
    ])
    def test_invalid_expressions(self, expression):
        assert validate_cron_expression(expression) is False

    def test_non_string_is_invalid(self):
        assert validate_cron_expression(None) is False
        assert validate_cron_expression(5) is False

    def test_ensure_valid_raises_with_field(self):
        with pytest.raises(ScheduleValidationError) as exc_info:
            ensure_valid_cron_expression("99 * * * *")

        assert exc_info.value.field == "cron_expression"
        assert exc_info.value.invalid_value == "99 * * * *"

    def test_ensure_valid_returns_expression(self):
        assert ensure_valid_cron_expression("0 9 * * *") == "0 9 * * *"


class TestTimezones:
    """Test suite for timezone validation"""

    def test_known_zones(self):
        assert validate_timezone("UTC") is True
        assert validate_timezone("Europe/Berlin") is True
        assert validate_timezone("America/New_York") is True

    def test_unknown_zones(self):
        assert validate_timezone("Mars/Olympus_Mons") is False
        assert validate_timezone("") is False
        assert validate_timezone(None) is False

    def test_get_zone_raises_for_unknown(self):
        with pytest.raises(ScheduleValidationError) as exc_info:
            get_zone("Not/AZone")

        assert exc_info.value.field == "timezone"


class TestCalculateNextRun:
    """Test suite for next-fire computation"""

    def test_next_run_is_strictly_after_base(self):
        base = datetime(2024, 1, 1, 0, 0)
        assert calculate_next_run("0 0 * * *", "UTC", base) == datetime(2024, 1, 2, 0, 0)

    def test_next_run_in_winter_timezone(self):
        # 12:00 UTC is 07:00 EST; 09:00 EST is 14:00 UTC
        base = datetime(2024, 1, 15, 12, 0)
        assert calculate_next_run("0 9 * * *", "America/New_York", base) == datetime(2024, 1, 15, 14, 0)

    def test_next_run_in_summer_timezone(self):
        # 12:00 UTC is 08:00 EDT; 09:00 EDT is 13:00 UTC
        base = datetime(2024, 7, 15, 12, 0)
        assert calculate_next_run("0 9 * * *", "America/New_York", base) == datetime(2024, 7, 15, 13, 0)

    def test_aware_base_time_matches_naive_utc(self):
        naive = datetime(2024, 1, 15, 12, 0)
        aware = naive.replace(tzinfo=timezone.utc)

        assert calculate_next_run("30 * * * *", "UTC", naive) == calculate_next_run("30 * * * *", "UTC", aware)

    def test_result_is_naive(self):
        result = calculate_next_run("*/5 * * * *", "Europe/Berlin")
        assert result.tzinfo is None

    def test_invalid_timezone_raises(self):
        with pytest.raises(ScheduleValidationError):
            calculate_next_run("0 9 * * *", "Nowhere/City")

    def test_upcoming_runs(self):
        base = datetime(2024, 1, 1, 0, 0)
        runs = upcoming_runs("*/15 * * * *", "UTC", count=5, base_time=base)

        assert runs == [
            datetime(2024, 1, 1, 0, 15),
            datetime(2024, 1, 1, 0, 30),
            datetime(2024, 1, 1, 0, 45),
            datetime(2024, 1, 1, 1, 0),
            datetime(2024, 1, 1, 1, 15),
        ]


class TestMinFireInterval:
    """Test suite for fire-interval measurement"""

    def test_uneven_expression_uses_smallest_gap(self):
        base = datetime(2024, 1, 1, 0, 0)
        assert min_fire_interval("0,1 * * * *", "UTC", base_time=base) == timedelta(minutes=1)

    def test_every_two_hours(self):
        base = datetime(2024, 1, 1, 0, 0)
        assert min_fire_interval("0 */2 * * *", "UTC", base_time=base) == timedelta(hours=2)


class TestParseFrequency:
    """Test suite for frequency strings"""

    @pytest.mark.parametrize("value,expected", [
        ("30s", timedelta(seconds=30)),
        ("1m", timedelta(minutes=1)),
        ("5m", timedelta(minutes=5)),
        ("2h", timedelta(hours=2)),
        ("1d", timedelta(days=1)),
        ("1H", timedelta(hours=1)),
        ("90", timedelta(seconds=90)),
        (120, timedelta(seconds=120)),
    ])
    def test_parses(self, value, expected):
        assert parse_frequency(value) == expected

    def test_empty_is_none(self):
        assert parse_frequency(None) is None
        assert parse_frequency("") is None

    @pytest.mark.parametrize("value", ["often", "5 minutes", "-1m", True])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            parse_frequency(value)
