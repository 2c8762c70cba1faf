"""Tests for payday prediction."""

import pytest
from datetime import date
from uuid import uuid4

from obligations.models.salary import PaydayRule, SalaryProfile
from obligations.scheduling.payday import (
    PaydayPredictor,
    last_working_day,
    nth_weekday,
    predict_payday,
)
from obligations.services.clock import FixedClock

MONDAY, WEDNESDAY, FRIDAY = 0, 2, 4


def profile(**overrides) -> SalaryProfile:
    return SalaryProfile(account_id=uuid4(), **overrides)


class TestPaydayRules:
    """Tests for the three payday rules."""

    def test_last_working_day_on_weekday(self):
        """Test a month ending on a Monday."""
        assert last_working_day(2025, 3) == date(2025, 3, 31)

    def test_last_working_day_rolls_back_over_weekend(self):
        """Test months ending on Saturday and Sunday."""
        assert last_working_day(2025, 5) == date(2025, 5, 30)
        assert last_working_day(2025, 11) == date(2025, 11, 28)

    def test_fixed_day_clamped(self):
        """Test a fixed payday of 31 in February."""
        p = profile(payday_rule=PaydayRule.FIXED_DAY, fixed_day=31)
        assert predict_payday(p, 2, 2025) == date(2025, 2, 28)

    def test_fixed_day_kept_on_weekend_by_default(self):
        """Test that weekend paydays are not moved unless configured."""
        p = profile(payday_rule=PaydayRule.FIXED_DAY, fixed_day=15)
        assert predict_payday(p, 3, 2025) == date(2025, 3, 15)

    def test_fixed_day_rolled_back_from_weekend(self):
        """Test that 15 March 2025 (Saturday) moves to Friday."""
        p = profile(payday_rule=PaydayRule.FIXED_DAY, fixed_day=15, roll_back_from_weekend=True)
        assert predict_payday(p, 3, 2025) == date(2025, 3, 14)

    def test_fixed_day_without_day_raises(self):
        """Test that the fixed-day rule needs its day."""
        with pytest.raises(ValueError):
            predict_payday(profile(payday_rule=PaydayRule.FIXED_DAY), 3, 2025)

    def test_nth_weekday_defaults_to_first(self):
        """Test the first Monday of March 2025."""
        p = profile(payday_rule=PaydayRule.NTH_WEEKDAY, weekday_preference=MONDAY)
        assert predict_payday(p, 3, 2025) == date(2025, 3, 3)

    def test_nth_weekday_second(self):
        """Test the second Wednesday."""
        assert nth_weekday(2025, 3, WEDNESDAY, 2) == date(2025, 3, 12)

    def test_nth_weekday_last(self):
        """Test that ordinal 5 means the last matching weekday."""
        p = profile(
            payday_rule=PaydayRule.NTH_WEEKDAY,
            weekday_preference=FRIDAY,
            weekday_ordinal=5,
        )
        assert predict_payday(p, 3, 2025) == date(2025, 3, 28)

    def test_nth_weekday_without_weekday_raises(self):
        """Test that the nth-weekday rule needs a weekday."""
        with pytest.raises(ValueError):
            predict_payday(profile(payday_rule=PaydayRule.NTH_WEEKDAY), 3, 2025)


class TestPaydayPredictor:
    """Tests for paydays relative to the injected clock."""

    @pytest.fixture
    def predictor(self):
        return PaydayPredictor(FixedClock(date(2025, 3, 1)))

    def test_next_paydays_include_current_month(self, predictor):
        """Test that the upcoming list starts with this month."""
        assert predictor.next_paydays(profile(), count=3) == [
            date(2025, 3, 31),
            date(2025, 4, 30),
            date(2025, 5, 30),
        ]

    def test_next_paydays_default_count(self, predictor):
        """Test the configured default count."""
        assert len(predictor.next_paydays(profile())) == 6

    def test_past_paydays_most_recent_first(self, predictor):
        """Test paydays of previous months."""
        assert predictor.past_paydays(profile(), count=2) == [
            date(2025, 2, 28),
            date(2025, 1, 31),
        ]

    def test_next_paydays_cross_year(self):
        """Test that the sequence rolls into the next year."""
        predictor = PaydayPredictor(FixedClock(date(2025, 12, 10)))
        paydays = predictor.next_paydays(profile(), count=2)
        assert paydays == [date(2025, 12, 31), date(2026, 1, 30)]

    def test_cycle_window_before_payday(self, predictor):
        """Test the cycle that started with last month's payday."""
        window = predictor.cycle_window(profile(), today=date(2025, 3, 10))
        assert window == (date(2025, 2, 28), date(2025, 3, 30))

    def test_cycle_window_on_payday(self, predictor):
        """Test that a new cycle starts on payday."""
        window = predictor.cycle_window(profile(), today=date(2025, 3, 31))
        assert window == (date(2025, 3, 31), date(2025, 4, 29))

    def test_cycle_window_uses_actual_pay_date(self, predictor):
        """Test that an early actual credit starts the cycle."""
        window = predictor.cycle_window(
            profile(),
            today=date(2025, 3, 29),
            last_actual_pay_date=date(2025, 3, 28),
        )
        assert window == (date(2025, 3, 28), date(2025, 4, 29))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
