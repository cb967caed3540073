"""Fetch one accounting window from Stripe into a closed batch.

All network access happens here. The batch handed to the pipeline is
complete: every customer, tax rate and checkout session the builders look up
is already in the run's ``LookupCache``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import structlog

from billing_ledger.cache import LookupCache
from billing_ledger.clients.stripe_api import StripeAPIClient
from billing_ledger.config.ledger_loader import LedgerConfig
from billing_ledger.diagnostics import DiagnosticCode, DiagnosticLog
from billing_ledger.money import money_sum
from billing_ledger.recognition import next_month_start
from billing_ledger.sources import (
    BalanceTransaction,
    Charge,
    CheckoutSession,
    CreditNote,
    Customer,
    Invoice,
    Payout,
    TaxRate,
    Transfer,
)

logger = structlog.get_logger(__name__)

# How far back to look for earlier invoices reversed inside the window
LATE_REVERSAL_LOOKBACK_DAYS = 183


def month_window(year: int, month: int | None, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` for a calendar month, or the whole year."""
    if month:
        start = datetime(year, month, 1, tzinfo=tz)
        return start, next_month_start(start)
    return datetime(year, 1, 1, tzinfo=tz), datetime(year + 1, 1, 1, tzinfo=tz)


def previous_month_start(dt: datetime) -> datetime:
    first = dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return (first - timedelta(days=1)).replace(day=1)


@dataclass
class SourceBatch:
    """Everything retrieved for one accounting window."""

    start: datetime
    end: datetime
    invoices: list[Invoice] = field(default_factory=list)
    charges: list[Charge] = field(default_factory=list)
    payouts: list[Payout] = field(default_factory=list)
    transfers: list[Transfer] = field(default_factory=list)
    contributions: list[BalanceTransaction] = field(default_factory=list)

    @property
    def month_key(self) -> str:
        """Month the batch was downloaded for, used in export file names."""
        return self.start.strftime("%Y-%m")


class BatchFetcher:
    """Retrieves a window of Stripe objects and warms the lookup cache."""

    def __init__(
        self,
        client: StripeAPIClient,
        config: LedgerConfig,
        cache: LookupCache,
        diagnostics: DiagnosticLog,
    ):
        self.client = client
        self.config = config
        self.cache = cache
        self.diagnostics = diagnostics

    async def fetch(self, start: datetime, end: datetime) -> SourceBatch:
        logger.info("retrieving_window", start=start.date().isoformat(), end=end.date().isoformat())

        batch = SourceBatch(start=start, end=end)
        batch.invoices = await self.fetch_invoices(start, end)
        batch.charges = await self.fetch_charges(start, end)
        batch.payouts = await self.fetch_payouts(start, end)
        batch.transfers = await self.fetch_transfers(start, end)
        batch.contributions = await self.fetch_contributions(start, end)

        await self.check_late_reversals(start)
        await self.check_earlier_credit_notes(start, end)
        return batch

    # === Lookups ===

    async def ensure_customer(self, customer_id: str | None) -> None:
        if customer_id is None or customer_id in self.cache.customers:
            return
        data = await self.client.retrieve_customer(customer_id)
        self.cache.add_customer(Customer.from_dict(data))

    async def ensure_tax_rate(self, tax_rate_id: str | None) -> None:
        if tax_rate_id is None or tax_rate_id in self.cache.tax_rates:
            return
        data = await self.client.retrieve_tax_rate(tax_rate_id)
        self.cache.tax_rates.put(tax_rate_id, TaxRate.from_dict(data))

    async def ensure_checkout_session(self, payment_intent_id: str | None) -> None:
        if payment_intent_id is None or payment_intent_id in self.cache.checkout_sessions:
            return
        data = await self.client.find_checkout_session(payment_intent_id)
        session = CheckoutSession.from_dict(data) if data else None
        self.cache.checkout_sessions.put(payment_intent_id, session)

    # === Invoices ===

    async def _complete_lines(self, data: dict[str, Any]) -> dict[str, Any]:
        lines = data.get("lines")
        if isinstance(lines, dict) and lines.get("has_more"):
            all_lines = await self.client.list_invoice_lines(data["id"])
            data = {**data, "lines": {"data": all_lines, "has_more": False}}
        return data

    async def fetch_invoices(self, start: datetime, end: datetime) -> list[Invoice]:
        """Invoices finalized inside the window.

        Invoices are listed by creation time, so the listing reaches one month
        back to catch drafts finalized later.
        """
        raw = await self.client.list_invoices(previous_month_start(start), end)

        invoices: list[Invoice] = []
        for data in raw:
            if data.get("status") == "draft":
                continue
            invoice = Invoice.from_dict(await self._complete_lines(data))
            if invoice.finalized_at is None or not (start <= invoice.finalized_at < end):
                continue

            if invoice.post_payment_credit_notes_amount > 0:
                notes = await self.client.list_invoice_credit_notes(invoice.id)
                invoice = dataclasses.replace(
                    invoice,
                    credit_notes=tuple(CreditNote.from_dict(note) for note in notes),
                )

            for tax_amount in invoice.total_tax_amounts:
                await self.ensure_tax_rate(tax_amount.tax_rate_id)
            if invoice.customer is None:
                await self.ensure_customer(invoice.customer_id)

            self.cache.add_invoice(invoice)
            invoices.append(invoice)

        logger.info(
            "invoices_retrieved",
            count=len(invoices),
            total=str(money_sum(inv.total for inv in invoices)),
        )
        return invoices

    async def check_late_reversals(self, start: datetime) -> None:
        """Report earlier invoices that were voided or written off inside the window."""
        raw = await self.client.list_invoices(
            start - timedelta(days=LATE_REVERSAL_LOOKBACK_DAYS), start
        )
        for data in raw:
            if data.get("status") == "draft":
                continue
            invoice = Invoice.from_dict(data)
            reversed_at = invoice.voided_at or invoice.marked_uncollectible_at
            if reversed_at is None or reversed_at < start:
                continue
            finalized = invoice.finalized_at or invoice.created
            self.diagnostics.add(
                DiagnosticCode.LATE_REVERSAL,
                "Earlier invoice voided or marked uncollectible in this window, "
                f"consider downloading {finalized.astimezone(self.config.timezone):%Y-%m}",
                source_id=invoice.id,
            )

    async def check_earlier_credit_notes(self, start: datetime, end: datetime) -> None:
        """Report credit notes in the window that belong to invoices of earlier windows."""
        for data in await self.client.list_credit_notes(start, end):
            note = CreditNote.from_dict(data)
            if note.invoice is None or note.invoice.finalized_at is None:
                continue
            if note.invoice.finalized_at < start:
                finalized = note.invoice.finalized_at.astimezone(self.config.timezone)
                self.diagnostics.add(
                    DiagnosticCode.EARLIER_CREDIT_NOTE,
                    f"Credit note {note.number} for earlier invoice, "
                    f"consider downloading {finalized:%Y-%m}",
                    source_id=note.id,
                    invoice_id=note.invoice_id,
                )

    # === Payments ===

    async def fetch_charges(self, start: datetime, end: datetime) -> list[Charge]:
        """Paid and captured charges, with their customers and checkout sessions."""
        charges: list[Charge] = []
        for data in await self.client.list_charges(start, end):
            charge = Charge.from_dict(data)
            if not charge.paid or not charge.captured:
                continue
            if charge.customer is not None:
                self.cache.add_customer(charge.customer)
            else:
                await self.ensure_customer(charge.customer_id)
            if not charge.has_invoice:
                await self.ensure_checkout_session(charge.payment_intent_id)
            charges.append(charge)

        logger.info(
            "charges_retrieved",
            count=len(charges),
            total=str(money_sum(charge.amount for charge in charges)),
        )
        return charges

    async def fetch_payouts(self, start: datetime, end: datetime) -> list[Payout]:
        payouts = [
            payout
            for payout in map(Payout.from_dict, await self.client.list_payouts(start, end))
            if payout.status == "paid"
        ]
        logger.info(
            "payouts_retrieved",
            count=len(payouts),
            total=str(money_sum(payout.amount for payout in payouts)),
        )
        return payouts

    async def fetch_transfers(self, start: datetime, end: datetime) -> list[Transfer]:
        transfers = [
            transfer
            for transfer in map(Transfer.from_dict, await self.client.list_transfers(start, end))
            if not transfer.reversed
        ]
        logger.info(
            "transfers_retrieved",
            count=len(transfers),
            total=str(money_sum(transfer.amount for transfer in transfers)),
        )
        return transfers

    async def fetch_contributions(self, start: datetime, end: datetime) -> list[BalanceTransaction]:
        raw = await self.client.list_balance_transactions(
            start, end, transaction_type="contribution"
        )
        contributions = [BalanceTransaction.from_dict(data) for data in raw]
        logger.info(
            "contributions_retrieved",
            count=len(contributions),
            total=str(-money_sum(bt.amount for bt in contributions)),
        )
        return contributions
