"""Revenue recognition: apportion amounts across calendar months."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from billing_ledger.models import MonthBucket, Period
from billing_ledger.money import CENT, ZERO, money_sum

ONE_SECOND = timedelta(seconds=1)
ONE_MICROSECOND = timedelta(microseconds=1)


def _elapsed_micros(start: datetime, end: datetime) -> int:
    """Exact elapsed time in microseconds, measured on the UTC timeline."""
    if start.tzinfo is not None:
        start = start.astimezone(timezone.utc)
        end = end.astimezone(timezone.utc)
    return (end - start) // ONE_MICROSECOND


def month_start(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_month_start(dt: datetime) -> datetime:
    first = month_start(dt)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def split_months(period: Period, amounts: Sequence[Decimal]) -> list[MonthBucket]:
    """Split each amount over the calendar months of ``period``.

    Each month receives ``amount * overlap / duration`` rounded half up to
    cents; the rounding remainder is added to the last month, and a last month
    left at zero in every column is dropped. The buckets of every column sum
    to the original amount exactly.

    Months are walked in the period's timezone; durations are measured as
    elapsed time, each month's overlap including its final second.
    """
    amounts = tuple(Decimal(amount) for amount in amounts)

    if period.is_instant:
        return [MonthBucket(start=period.start, end=period.end, amounts=amounts)]

    total = Decimal(_elapsed_micros(period.start, period.end))
    one_second = ONE_SECOND // ONE_MICROSECOND

    buckets: list[MonthBucket] = []
    remaining = list(amounts)
    current = month_start(period.start)

    while current <= period.end:
        following = next_month_start(current)
        current_end = following - ONE_SECOND

        overlap = (
            _elapsed_micros(max(period.start, current), min(period.end, current_end))
            + one_second
        )
        weight = Decimal(overlap) / total

        month_amounts = tuple(
            (amount * weight).quantize(CENT, rounding=ROUND_HALF_UP) for amount in amounts
        )
        remaining = [rest - part for rest, part in zip(remaining, month_amounts)]

        buckets.append(MonthBucket(start=current, end=current_end, amounts=month_amounts))
        current = following

    last = buckets[-1]
    adjusted = tuple(part + rest for part, rest in zip(last.amounts, remaining))
    buckets[-1] = MonthBucket(start=last.start, end=last.end, amounts=adjusted)

    if all(part == ZERO for part in adjusted):
        buckets.pop()

    for column, amount in enumerate(amounts):
        allocated = money_sum(bucket.amounts[column] for bucket in buckets)
        if allocated != amount:
            raise AssertionError(
                f"Month split lost money: {allocated} != {amount} for {period}"
            )

    return buckets
