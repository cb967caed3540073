"""Domain types shared by the recognition, tax and ledger modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

MEMO_MAX_LENGTH = 60


@dataclass(frozen=True)
class Period:
    """Inclusive service period; ``start == end`` is a point in time."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Period ends before it starts: {self.start} > {self.end}")

    @classmethod
    def instant(cls, at: datetime) -> Period:
        return cls(start=at, end=at)

    @property
    def is_instant(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True)
class MonthBucket:
    """Calendar-month slice of a period with one allocation per amount column."""

    start: datetime
    end: datetime
    amounts: tuple[Decimal, ...]

    @property
    def month_key(self) -> str:
        return self.start.strftime("%Y-%m")


class VatRegion(str, Enum):
    DE = "DE"
    EU = "EU"
    WORLD = "World"


@dataclass(frozen=True)
class TaxProfile:
    """Tax treatment and accounts for one customer."""

    vat_region: VatRegion
    tax_exempt_status: str | None
    customer_account: str
    revenue_account: str
    tax_key: str = ""
    vat_id: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class LineItem:
    """One recognizable line of a revenue item."""

    index: int
    period: Period
    amount_net: Decimal
    amount_gross: Decimal
    text: str


# Lifecycle variants. A revenue item is in exactly one of these states.


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Voided:
    at: datetime


@dataclass(frozen=True)
class Uncollectible:
    at: datetime


@dataclass(frozen=True)
class Credited:
    at: datetime
    amount: Decimal


Lifecycle = Active | Voided | Uncollectible | Credited


def reversal_instant(lifecycle: Lifecycle) -> datetime | None:
    """Return when the item was reversed, or None for active items."""
    if isinstance(lifecycle, (Voided, Uncollectible, Credited)):
        return lifecycle.at
    return None


@dataclass(frozen=True)
class RevenueItem:
    """Normalized invoice or direct charge, ready for posting."""

    id: str
    number: str | None
    customer_id: str
    created: datetime
    amount_gross: Decimal
    amount_net: Decimal
    tax_percentage: Decimal | None
    line_items: tuple[LineItem, ...]
    tax_profile: TaxProfile
    text: str
    lifecycle: Lifecycle = field(default_factory=Active)
    is_subscription: bool = False


class DebitCredit(str, Enum):
    """DATEV Soll/Haben marker."""

    DEBIT = "S"
    CREDIT = "H"


@dataclass(frozen=True)
class AccountingRecord:
    """One ledger posting in the export's logical shape."""

    date: datetime
    amount: Decimal
    debit_credit: DebitCredit
    account: str
    counter_account: str
    memo: str
    currency: str = "EUR"
    tax_key: str = ""
    document_ref: str | None = None
    eu_vat_id: str | None = None

    def __post_init__(self) -> None:
        if len(self.memo) > MEMO_MAX_LENGTH:
            object.__setattr__(self, "memo", self.memo[:MEMO_MAX_LENGTH])

    @property
    def month_key(self) -> str:
        return self.date.strftime("%Y-%m")

    @property
    def signed_amount(self) -> Decimal:
        """Amount as seen from ``account``: debits positive, credits negative."""
        if self.debit_credit == DebitCredit.DEBIT:
            return self.amount
        return -self.amount


@dataclass(frozen=True)
class RecordGroup:
    """Records produced for one source object; the checkpoint unit."""

    source_id: str
    records: tuple[AccountingRecord, ...]

    def __len__(self) -> int:
        return len(self.records)
