"""Tests for monthly revenue recognition."""

from datetime import UTC, datetime
from decimal import Decimal

from billing_ledger.models import Period
from billing_ledger.recognition import month_start, next_month_start, split_months

from factories import berlin

YEAR_PERIOD = Period(
    start=datetime(2021, 5, 1, tzinfo=UTC), end=datetime(2022, 4, 30, tzinfo=UTC)
)


def amounts(buckets, column=0):
    return [bucket.amounts[column] for bucket in buckets]


class TestMonthBoundaries:
    """Tests for month walking helpers."""

    def test_month_start(self):
        assert month_start(berlin(2021, 5, 17, 13, 45)) == berlin(2021, 5, 1)

    def test_next_month_start_wraps_year(self):
        """Test that December rolls over into January."""
        assert next_month_start(berlin(2021, 12, 31, 23)) == berlin(2022, 1, 1)


class TestSplitMonths:
    """Tests for proportional month splitting."""

    def test_twelve_month_split(self):
        """Test the allocation of 100.00 over May 2021 to April 2022."""
        buckets = split_months(YEAR_PERIOD, [Decimal("100.00")])

        assert amounts(buckets) == [
            Decimal(x)
            for x in (
                "8.52", "8.24", "8.52", "8.52", "8.24", "8.52",
                "8.24", "8.52", "8.52", "7.69", "8.52", "7.95",
            )
        ]
        assert [bucket.month_key for bucket in buckets][:2] == ["2021-05", "2021-06"]
        assert buckets[-1].month_key == "2022-04"

    def test_bucket_bounds(self):
        """Test that buckets span whole calendar months."""
        buckets = split_months(YEAR_PERIOD, [Decimal("100.00")])

        assert buckets[0].start == datetime(2021, 5, 1, tzinfo=UTC)
        assert buckets[0].end == datetime(2021, 5, 31, 23, 59, 59, tzinfo=UTC)
        assert buckets[1].start == datetime(2021, 6, 1, tzinfo=UTC)
        assert buckets[-1].end == datetime(2022, 4, 30, 23, 59, 59, tzinfo=UTC)

    def test_every_column_sums_exactly(self):
        """Test that rounding never loses or invents a cent."""
        columns = [Decimal("99.99"), Decimal("19.00"), Decimal("0.07")]
        buckets = split_months(YEAR_PERIOD, columns)

        for column, amount in enumerate(columns):
            assert sum(amounts(buckets, column), Decimal("0")) == amount

    def test_negative_amounts_sum_exactly(self):
        buckets = split_months(YEAR_PERIOD, [Decimal("-50.01")])

        assert sum(amounts(buckets), Decimal("0")) == Decimal("-50.01")

    def test_instant_period_single_bucket(self):
        """Test that an instant is recognized entirely at once."""
        at = berlin(2021, 5, 10, 12)
        buckets = split_months(Period.instant(at), [Decimal("42.00")])

        assert len(buckets) == 1
        assert buckets[0].start == at
        assert buckets[0].amounts == (Decimal("42.00"),)

    def test_partial_first_month(self):
        """Test a period starting mid-month."""
        period = Period(start=berlin(2021, 5, 16), end=berlin(2021, 6, 30, 23, 59, 59))
        buckets = split_months(period, [Decimal("46.00")])

        assert amounts(buckets) == [Decimal("16.00"), Decimal("30.00")]

    def test_trailing_zero_bucket_dropped(self):
        """Test that a final month receiving nothing is removed."""
        period = Period(start=berlin(2021, 5, 1), end=berlin(2021, 6, 1))
        buckets = split_months(period, [Decimal("0.01")])

        assert len(buckets) == 1
        assert buckets[0].month_key == "2021-05"
        assert buckets[0].amounts == (Decimal("0.01"),)

    def test_zero_amount(self):
        """Test that a zero amount yields no trailing bucket."""
        period = Period(start=berlin(2021, 5, 1), end=berlin(2021, 5, 31, 23, 59, 59))

        assert split_months(period, [Decimal("0.00")]) == []

    def test_daylight_saving_months_weighted_by_elapsed_time(self):
        """Test that October gains and March loses the DST hour in Berlin."""
        period = Period(start=berlin(2021, 5, 1), end=berlin(2022, 4, 30))
        buckets = split_months(period, [Decimal("100.00")])

        assert amounts(buckets) == [
            Decimal(x)
            for x in (
                "8.52", "8.24", "8.52", "8.52", "8.24", "8.53",
                "8.24", "8.52", "8.52", "7.69", "8.51", "7.95",
            )
        ]
        assert buckets[5].start == berlin(2021, 10, 1)
