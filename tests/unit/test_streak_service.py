"""
Unit tests for StreakService pure logic.

Tests the streak bonus schedule and consecutive-completion validation.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from chorequest.database.models import RecurrencePattern
from chorequest.exceptions import InvalidTimezoneError
from chorequest.game_rules import EngineConfig, StreakSettings
from chorequest.services.streak_service import StreakService, calculate_streak_bonus

LAST = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestStreakBonus:
    """Test the bonus schedule."""

    @pytest.mark.parametrize("streak, expected", [
        (0, "0"),
        (4, "0"),
        (5, "0.01"),
        (9, "0.01"),
        (10, "0.02"),
        (24, "0.04"),
        (25, "0.05"),
        (100, "0.05"),
    ])
    def test_default_schedule(self, streak, expected):
        """+0.01 per 5 consecutive completions, capped at 0.05."""
        assert calculate_streak_bonus(streak) == Decimal(expected)

    def test_bonus_is_decimal(self):
        """Bonus is an exact Decimal, not a float."""
        assert isinstance(calculate_streak_bonus(10), Decimal)

    def test_negative_streak_gives_zero(self):
        """A corrupt negative count earns nothing."""
        assert calculate_streak_bonus(-3) == Decimal("0")

    def test_custom_settings(self):
        """Threshold, increment and cap come from settings."""
        settings = StreakSettings(increment=Decimal("0.05"), threshold=3, max_bonus=Decimal("0.10"))
        assert calculate_streak_bonus(3, settings) == Decimal("0.05")
        assert calculate_streak_bonus(30, settings) == Decimal("0.10")

    def test_service_uses_injected_config(self):
        """StreakService reads the streak table from its EngineConfig."""
        config = EngineConfig.from_dict({"streak": {"increment": 0.02, "threshold": 2, "max_bonus": 0.5}})
        assert StreakService(config).streak_bonus(4) == Decimal("0.04")


class TestValidateConsecutive:
    """Test whether a completion continues a streak."""

    def test_first_completion_is_consecutive(self):
        """No previous completion always continues."""
        assert StreakService.validate_consecutive(None, RecurrencePattern.DAILY, LAST, "UTC") is True

    def test_daily_same_day(self):
        """A repeat on the same day continues a daily streak."""
        assert StreakService.validate_consecutive(LAST, "DAILY", LAST + timedelta(hours=5), "UTC") is True

    def test_daily_within_tolerance(self):
        """36 hours later (two calendar days) still continues."""
        assert StreakService.validate_consecutive(LAST, "DAILY", LAST + timedelta(hours=36), "UTC") is True

    def test_daily_three_days_breaks(self):
        """Three calendar days later breaks a daily streak."""
        assert StreakService.validate_consecutive(LAST, "DAILY", LAST + timedelta(days=3), "UTC") is False

    def test_weekly_seven_days(self):
        """Seven days later continues a weekly streak."""
        assert StreakService.validate_consecutive(LAST, "WEEKLY", LAST + timedelta(days=7), "UTC") is True

    @pytest.mark.parametrize("days", [8, 9])
    def test_weekly_eight_or_more_breaks(self, days):
        """Eight or more days later breaks a weekly streak."""
        assert StreakService.validate_consecutive(
            LAST, RecurrencePattern.WEEKLY, LAST + timedelta(days=days), "UTC"
        ) is False

    @pytest.mark.parametrize("pattern", ["CUSTOM", "NONE"])
    def test_unverifiable_patterns_pass(self, pattern):
        """CUSTOM and NONE cannot be checked and always continue."""
        assert StreakService.validate_consecutive(LAST, pattern, LAST + timedelta(days=30), "UTC") is True

    def test_uses_local_calendar_days(self):
        """Gap is counted in the family's zone across spring-forward."""
        last = datetime(2025, 3, 8, 18, 0, tzinfo=timezone.utc)
        now = datetime(2025, 3, 10, 17, 0, tzinfo=timezone.utc)
        assert StreakService.validate_consecutive(last, "DAILY", now, "America/Chicago") is True

    def test_naive_last_completion_is_utc(self):
        """Stored naive timestamps are read as UTC."""
        last = datetime(2025, 1, 15, 12, 0)
        assert StreakService.validate_consecutive(last, "DAILY", LAST + timedelta(days=3), "UTC") is False

    @pytest.mark.parametrize("zone", ["Bad/Zone", "America"])
    def test_invalid_timezone_raises(self, zone):
        """An unknown zone is an error, not a silent pass."""
        with pytest.raises(InvalidTimezoneError):
            StreakService.validate_consecutive(LAST, "DAILY", LAST + timedelta(days=1), zone)

    def test_invalid_timezone_raises_on_first_completion(self):
        """The zone is checked even when there is nothing to compare."""
        with pytest.raises(InvalidTimezoneError):
            StreakService.validate_consecutive(None, "DAILY", LAST, "Europe")
