"""Service period extraction from free-text line item descriptions.

Descriptions such as ``"Analytics, valid Jan 1st 2022 - Mar 31st 2022"`` or
``"Fleet reports, per day, May 20th-23rd"`` carry the period a charge pays
for. The extractor picks out three token classes and resolves them into an
inclusive ``Period``:

- years: four digits within ``[min_year, max_year]``
- months: English month names and abbreviations, case-sensitive
- days: one or two digits followed by ``st``, ``nd``, ``rd`` or ``th``

A token is a maximal run of word characters (letters, digits and ``_``), so
every token is bounded by a non-word character or the edge of the text.
``"2021/22"`` yields the tokens ``2021`` and ``22``; ``"FY2021"`` is a single
token and is not a year.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, time, tzinfo

from billing_ledger.models import Period

MONTH_NAMES: tuple[tuple[str, ...], ...] = (
    ("Jan", "January"),
    ("Feb", "February"),
    ("Mar", "March"),
    ("Apr", "April"),
    ("May",),
    ("Jun", "June"),
    ("Jul", "July"),
    ("Aug", "August"),
    ("Sep", "Sept", "September"),
    ("Oct", "October"),
    ("Nov", "November"),
    ("Dec", "December"),
)

MONTH_BY_NAME: dict[str, int] = {
    name: index + 1 for index, names in enumerate(MONTH_NAMES) for name in names
}

DAY_SUFFIXES = ("st", "nd", "rd", "th")

START_OF_DAY = time(0, 0, 0)
END_OF_DAY = time(23, 59, 59)


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def iter_word_tokens(text: str) -> Iterator[str]:
    """Yield maximal runs of word characters in order of appearance."""
    start: int | None = None
    for idx, ch in enumerate(text):
        if _is_word_char(ch):
            if start is None:
                start = idx
        elif start is not None:
            yield text[start:idx]
            start = None
    if start is not None:
        yield text[start:]


def _parse_day(token: str) -> int | None:
    suffix = token[-2:]
    digits = token[:-2]
    if suffix not in DAY_SUFFIXES:
        return None
    if not (1 <= len(digits) <= 2) or not digits.isascii() or not digits.isdigit():
        return None
    return int(digits)


@dataclass
class DateTokens:
    """Year, month and day tokens found in a text, in order of appearance."""

    years: list[int] = field(default_factory=list)
    months: list[int] = field(default_factory=list)
    days: list[int] = field(default_factory=list)


class PeriodExtractor:
    """Finds an implied service period in free text."""

    def __init__(self, min_year: int = 2020, max_year: int | None = None):
        self.min_year = min_year
        self.max_year = max_year if max_year is not None else date.today().year
        if self.max_year < self.min_year:
            raise ValueError(f"Invalid year range {self.min_year}..{self.max_year}")

    def _parse_year(self, token: str) -> int | None:
        if len(token) != 4 or not token.isascii() or not token.isdigit():
            return None
        year = int(token)
        if self.min_year <= year <= self.max_year:
            return year
        return None

    def tokenize(self, text: str) -> DateTokens:
        """Classify the word tokens of ``text``."""
        tokens = DateTokens()
        for token in iter_word_tokens(text):
            year = self._parse_year(token)
            if year is not None:
                tokens.years.append(year)
                continue
            month = MONTH_BY_NAME.get(token)
            if month is not None:
                tokens.months.append(month)
                continue
            day = _parse_day(token)
            if day is not None:
                tokens.days.append(day)
        return tokens

    def find_period(
        self,
        text: str,
        reference: datetime | None = None,
        tz: tzinfo | None = None,
    ) -> Period | None:
        """Resolve the period described by ``text``.

        Args:
            text: Free text, typically a line item description.
            reference: Instant supplying the year when the text has none.
            tz: Timezone the period's wall-clock times are expressed in.
                Defaults to the reference's timezone.

        Returns:
            The inclusive period, or None when the text does not determine one.

        Raises:
            ValueError: The tokens name an impossible date, e.g. ``Feb 30th``.
        """
        tokens = self.tokenize(text or "")
        zone = tz if tz is not None else (reference.tzinfo if reference else None)

        year_found = True
        if len(tokens.years) >= 2:
            year1, year2 = tokens.years[:2]
        elif len(tokens.years) == 1:
            year1 = year2 = tokens.years[0]
        else:
            if reference is None:
                return None
            year_found = False
            ref = reference.astimezone(zone) if zone is not None else reference
            year1 = year2 = ref.year

        if len(tokens.months) >= 2:
            month1, month2 = tokens.months[:2]
        elif len(tokens.months) == 1:
            month1 = month2 = tokens.months[0]
        else:
            # A bare day range ("25th - 30th 2021") does not say which month.
            if not year_found or tokens.days:
                return None
            month1, month2 = 1, 12

        if len(tokens.days) >= 2:
            day1, day2 = tokens.days[:2]
        elif len(tokens.days) == 1:
            day1 = day2 = tokens.days[0]
        else:
            day1 = 1
            day2 = calendar.monthrange(year2, month2)[1]

        start = datetime.combine(date(year1, month1, day1), START_OF_DAY, tzinfo=zone)
        end = datetime.combine(date(year2, month2, day2), END_OF_DAY, tzinfo=zone)
        if end < start:
            raise ValueError(f"Period in {text!r} ends before it starts")
        return Period(start=start, end=end)


def find_period(
    text: str,
    reference: datetime | None = None,
    tz: tzinfo | None = None,
    min_year: int = 2020,
    max_year: int | None = None,
) -> Period | None:
    """Convenience wrapper around ``PeriodExtractor.find_period``."""
    return PeriodExtractor(min_year=min_year, max_year=max_year).find_period(
        text, reference=reference, tz=tz
    )
