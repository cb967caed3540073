"""CSV reports for review: invoice overview, monthly recognition, open items."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any

import structlog

from billing_ledger.cache import LookupCache
from billing_ledger.models import Credited, RevenueItem, Voided, reversal_instant
from billing_ledger.money import CENT
from billing_ledger.recognition import split_months
from billing_ledger.sources import Customer, Invoice

logger = structlog.get_logger(__name__)

OVERVIEW_COLUMNS = [
    "invoice_id",
    "invoice_number",
    "date",
    "total_before_tax",
    "tax",
    "tax_percent",
    "total",
    "customer_id",
    "customer_name",
    "country",
    "vat_region",
    "vat_id",
    "tax_exempt",
    "customer_account",
    "revenue_account",
    "datev_tax_key",
]

RECOGNITION_COLUMNS = [
    "invoice_id",
    "invoice_number",
    "invoice_date",
    "recognition_start",
    "recognition_end",
    "recognition_month",
    "line_item_idx",
    "line_item_desc",
    "line_item_net",
    "customer_id",
    "customer_name",
    "country",
    "accounting_date",
    "revenue_type",
    "is_recurring",
]


def _customer_name(cache: LookupCache, customer_id: str) -> str:
    customer = cache.customers.find(customer_id)
    return customer.display_name if customer else customer_id


def _amount(value: Decimal | None) -> str:
    if value is None:
        return ""
    return f"{value.quantize(CENT, rounding=ROUND_HALF_UP):.2f}".replace(".", ",")


def invoice_overview_rows(items: Iterable[RevenueItem], cache: LookupCache) -> list[list[Any]]:
    """One row per revenue item that was not voided, with its tax treatment."""
    rows: list[list[Any]] = [list(OVERVIEW_COLUMNS)]
    for item in items:
        if isinstance(item.lifecycle, Voided):
            continue
        profile = item.tax_profile
        tax = item.amount_gross - item.amount_net
        rows.append(
            [
                item.id,
                item.number or "",
                f"{item.created:%Y-%m-%d}",
                _amount(item.amount_net),
                _amount(tax) if tax else "",
                f"{item.tax_percentage:.0f}" if item.tax_percentage is not None else "",
                _amount(item.amount_gross),
                item.customer_id,
                _customer_name(cache, item.customer_id),
                profile.country or "",
                profile.vat_region.value,
                profile.vat_id or "",
                profile.tax_exempt_status or "",
                profile.customer_account,
                profile.revenue_account,
                profile.tax_key,
            ]
        )
    return rows


def revenue_type(item: RevenueItem) -> str:
    """``Prepaid`` when recognition extends more than a day past creation."""
    last_end = max((line.period.end for line in item.line_items), default=None)
    if last_end is not None and item.created + timedelta(days=1) < last_end:
        return "Prepaid"
    return "PayPerUse"


def monthly_recognition_rows(
    items: Iterable[RevenueItem], cache: LookupCache
) -> list[list[Any]]:
    """Net revenue per line item and calendar month.

    Reversed items get a second, negated row per month; credit notes reverse
    the share of the credited amount.
    """
    rows: list[list[Any]] = [list(RECOGNITION_COLUMNS)]
    for item in items:
        kind = revenue_type(item)
        reversed_at = reversal_instant(item.lifecycle)
        credit_ratio = None
        if isinstance(item.lifecycle, Credited) and item.amount_gross:
            credit_ratio = item.lifecycle.amount / item.amount_gross

        for line in item.line_items:
            end = reversed_at or line.period.end
            for bucket in split_months(line.period, [line.amount_net]):
                accounting_date = max(item.created, end if end < bucket.start else bucket.start)
                row = [
                    item.id,
                    item.number or "",
                    f"{item.created:%Y-%m-%d}",
                    f"{line.period.start:%Y-%m-%d}",
                    f"{line.period.end:%Y-%m-%d}",
                    f"{bucket.month_key}-01",
                    line.index + 1,
                    line.text,
                    _amount(bucket.amounts[0]),
                    item.customer_id,
                    _customer_name(cache, item.customer_id),
                    item.tax_profile.country or "",
                    f"{accounting_date:%Y-%m-%d}",
                    kind,
                    "true" if item.is_subscription else "false",
                ]
                rows.append(row)

                if reversed_at is None:
                    continue
                reversed_amount = -bucket.amounts[0]
                if credit_ratio is not None:
                    reversed_amount = reversed_amount * credit_ratio
                reverse = list(row)
                reverse[8] = _amount(reversed_amount)
                reverse[12] = (
                    f"{max(item.created, end if end < bucket.end else bucket.start):%Y-%m-%d}"
                )
                rows.append(reverse)
    return rows


def escape_field(value: Any, sep: str = ";") -> str:
    if value is None:
        return ""
    text = str(value)
    for newline in ("\r\n", "\r", "\n"):
        text = text.replace(newline, " ")
    return text.replace(sep, ":")


def write_csv(path: str | Path, rows: Sequence[Sequence[Any]], sep: str = ";") -> int:
    """Write rows as a spreadsheet-friendly CSV; returns the number of data rows."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [f"sep={sep}"]
    lines += [sep.join(escape_field(value, sep) for value in row) for row in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    count = max(len(rows) - 1, 0)
    logger.info("report_written", path=str(path), rows=count)
    return count


@dataclass(frozen=True)
class OpenInvoice:
    number: str
    total: Decimal
    email: str
    due: datetime
    days_overdue: int

    def format(self) -> str:
        overdue = f"({self.days_overdue} overdue)" if self.days_overdue > 0 else ""
        return (
            f"{self.number:<13} {self.total:>10.2f} EUR {self.email:<35} "
            f"due {self.due:%Y-%m-%d} {overdue}"
        ).rstrip()


def _settled_by(moment: datetime | None, reference: datetime) -> bool:
    return moment is not None and moment <= reference


def open_invoices(
    invoices: Iterable[Invoice], reference: datetime, customers: LookupCache | None = None
) -> list[OpenInvoice]:
    """Invoices finalized and still unpaid as of ``reference``."""
    result: list[OpenInvoice] = []
    for invoice in invoices:
        if invoice.finalized_at is None or invoice.finalized_at > reference:
            continue
        if (
            _settled_by(invoice.marked_uncollectible_at, reference)
            or _settled_by(invoice.voided_at, reference)
            or _settled_by(invoice.paid_at, reference)
        ):
            continue

        customer: Customer | None = invoice.customer
        if customer is None and customers is not None:
            customer = customers.customers.find(invoice.customer_id)
        due = (invoice.due_date or invoice.created).astimezone(reference.tzinfo)
        result.append(
            OpenInvoice(
                number=invoice.number or invoice.id,
                total=invoice.total,
                email=(customer.email if customer else None) or "",
                due=due,
                days_overdue=(reference - due).days if due < reference else 0,
            )
        )
    return result
