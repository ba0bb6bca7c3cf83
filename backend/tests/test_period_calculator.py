"""Tests for recurrence and installment date arithmetic."""

import pytest
from datetime import date

from tally.exceptions import ValidationError
from tally.models.recurrence import Frequency
from tally.services.period_calculator import iter_occurrences, next_date, occurrence_date


class TestNextDate:
    """Test one-period steps."""

    @pytest.mark.parametrize("frequency,interval,start,expected", [
        (Frequency.DAILY, 1, date(2024, 1, 15), date(2024, 1, 16)),
        (Frequency.DAILY, 3, date(2024, 12, 30), date(2025, 1, 2)),
        (Frequency.WEEKLY, 1, date(2024, 1, 15), date(2024, 1, 22)),
        (Frequency.WEEKLY, 2, date(2024, 1, 15), date(2024, 1, 29)),
        (Frequency.BIWEEKLY, 1, date(2024, 1, 15), date(2024, 1, 29)),
        (Frequency.BIWEEKLY, 2, date(2024, 1, 15), date(2024, 2, 12)),
        (Frequency.MONTHLY, 1, date(2024, 1, 15), date(2024, 2, 15)),
        (Frequency.MONTHLY, 1, date(2024, 12, 15), date(2025, 1, 15)),
        (Frequency.BIMONTHLY, 1, date(2024, 1, 15), date(2024, 3, 15)),
        (Frequency.QUARTERLY, 1, date(2024, 11, 15), date(2025, 2, 15)),
        (Frequency.SEMIANNUALLY, 1, date(2024, 8, 31), date(2025, 2, 28)),
        (Frequency.YEARLY, 1, date(2024, 1, 15), date(2025, 1, 15)),
    ])
    def test_steps(self, frequency, interval, start, expected):
        assert next_date(frequency, interval, start) == expected

    def test_monthly_end_of_month_clamps(self):
        """Jan 31 should land on the last day of February."""
        assert next_date(Frequency.MONTHLY, 1, date(2024, 1, 31)) == date(2024, 2, 29)
        assert next_date(Frequency.MONTHLY, 1, date(2023, 1, 31)) == date(2023, 2, 28)

    def test_yearly_leap_day(self):
        """Feb 29 should fall back to Feb 28 in a non-leap year."""
        assert next_date(Frequency.YEARLY, 1, date(2024, 2, 29)) == date(2025, 2, 28)

    def test_strictly_increasing(self):
        current = date(2024, 1, 31)
        for frequency in Frequency:
            assert next_date(frequency, 1, current) > current

    @pytest.mark.parametrize("interval", [0, -1, None])
    def test_rejects_non_positive_interval(self, interval):
        with pytest.raises(ValidationError):
            next_date(Frequency.MONTHLY, interval, date(2024, 1, 1))


class TestOccurrenceDate:
    """Test dates derived from the anchor."""

    def test_index_zero_is_anchor(self):
        assert occurrence_date(Frequency.WEEKLY, 1, date(2024, 3, 5), 0) == date(2024, 3, 5)

    def test_anchor_day_survives_short_month(self):
        """Anchored on the 31st: Feb is clamped, March returns to the 31st."""
        anchor = date(2024, 1, 31)
        dates = [occurrence_date(Frequency.MONTHLY, 1, anchor, i) for i in range(4)]
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    def test_negative_index(self):
        with pytest.raises(ValidationError):
            occurrence_date(Frequency.MONTHLY, 1, date(2024, 1, 1), -1)


class TestIterOccurrences:
    """Test the occurrence iterator."""

    def test_stops_at_until_inclusive(self):
        result = list(iter_occurrences(Frequency.MONTHLY, 1, date(2024, 1, 1), until=date(2024, 3, 1)))
        assert result == [(0, date(2024, 1, 1)), (1, date(2024, 2, 1)), (2, date(2024, 3, 1))]

    def test_start_index(self):
        result = list(iter_occurrences(Frequency.WEEKLY, 1, date(2024, 1, 1), until=date(2024, 1, 22), start_index=2))
        assert result == [(2, date(2024, 1, 15)), (3, date(2024, 1, 22))]

    def test_until_before_anchor(self):
        assert list(iter_occurrences(Frequency.DAILY, 1, date(2024, 1, 5), until=date(2024, 1, 1))) == []
