"""Normalize invoices and direct charges into revenue items."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog

from billing_ledger.cache import LookupCache
from billing_ledger.config.ledger_loader import LedgerConfig
from billing_ledger.diagnostics import DiagnosticCode, DiagnosticLog, Severity
from billing_ledger.errors import LedgerError, UnexpectedCurrency, UnsupportedRefundPattern
from billing_ledger.models import (
    Active,
    Credited,
    Lifecycle,
    LineItem,
    Period,
    RevenueItem,
    TaxProfile,
    Uncollectible,
    Voided,
)
from billing_ledger.money import CENT, ZERO
from billing_ledger.periods import PeriodExtractor
from billing_ledger.sources import Charge, CheckoutSession, Customer, Invoice, InvoiceLine
from billing_ledger.tax import TaxSignals, classify_tax

logger = structlog.get_logger(__name__)

INVOICE_ID_MARKER = "in_"


class RevenueItemBuilder:
    """Builds revenue items from a closed batch of Stripe objects.

    All lookups go through the run's ``LookupCache``; advisories are added to
    the run's ``DiagnosticLog``. Fatal conditions raise ``LedgerError``
    subclasses naming the offending source object.
    """

    def __init__(
        self,
        config: LedgerConfig,
        cache: LookupCache,
        diagnostics: DiagnosticLog,
        extractor: PeriodExtractor | None = None,
    ):
        self.config = config
        self.cache = cache
        self.diagnostics = diagnostics
        self.extractor = extractor or PeriodExtractor()
        self._logger = logger.bind(component="revenue_builder")

    # === Shared ===

    def _local(self, dt: datetime) -> datetime:
        return dt.astimezone(self.config.timezone)

    def _check_currency(self, currency: str, source_id: str) -> None:
        if currency.lower() != self.config.currency.lower():
            raise UnexpectedCurrency(
                f"Unexpected currency {currency!r}, expected {self.config.currency}",
                source_id=source_id,
            )

    def _customer(
        self, customer_id: str | None, embedded: Customer | None, source_id: str
    ) -> Customer:
        if embedded is not None:
            return self.cache.add_customer(embedded)
        if customer_id is None:
            raise LedgerError("Revenue without customer", source_id=source_id)
        return self.cache.customer(customer_id)

    def classify(
        self,
        customer: Customer,
        invoice: Invoice | None = None,
        checkout_session: CheckoutSession | None = None,
        source_id: str | None = None,
    ) -> TaxProfile:
        """Tax profile for a customer, memoized for the run."""
        signals = TaxSignals.for_customer(
            customer, invoice=invoice, checkout_session=checkout_session
        )
        classification = self.cache.classification(
            signals, lambda: classify_tax(signals, self.config.accounts)
        )
        for advisory in classification.advisories:
            if source_id is not None:
                advisory = advisory.with_context(source_id=source_id)
            self.diagnostics.append(advisory)
        return classification.profile

    def recognition_period(
        self,
        text: str | None,
        reference: datetime,
        source_id: str,
        structured: Period | None = None,
    ) -> Period:
        """Service period from structured data, else from ``text``.

        Falls back to the reference instant, with an advisory, when neither
        yields a period.
        """
        if structured is not None and not structured.is_instant:
            return Period(start=self._local(structured.start), end=self._local(structured.end))

        period = None
        try:
            period = self.extractor.find_period(
                text or "", reference=reference, tz=self.config.timezone
            )
        except ValueError as exc:
            self.diagnostics.add(
                DiagnosticCode.EXTRACTION_AMBIGUOUS,
                f"Could not read period: {exc}",
                source_id=source_id,
                text=text,
            )

        if period is None:
            self.diagnostics.add(
                DiagnosticCode.MISSING_PERIOD,
                "Unknown period, recognizing at creation",
                source_id=source_id,
                text=text,
            )
            period = Period.instant(self._local(reference))
        return period

    # === Invoices ===

    def _invoice_lifecycle(self, invoice: Invoice) -> Lifecycle:
        if invoice.status == "void":
            if invoice.voided_at is None:
                raise LedgerError("Void invoice without voided_at", source_id=invoice.id)
            return Voided(at=self._local(invoice.voided_at))
        if invoice.status == "uncollectible":
            if invoice.marked_uncollectible_at is None:
                raise LedgerError(
                    "Uncollectible invoice without marked_uncollectible_at",
                    source_id=invoice.id,
                )
            return Uncollectible(at=self._local(invoice.marked_uncollectible_at))
        if invoice.post_payment_credit_notes_amount > 0:
            if len(invoice.credit_notes) != 1:
                raise UnsupportedRefundPattern(
                    f"Expected exactly one credit note, found {len(invoice.credit_notes)}",
                    source_id=invoice.id,
                )
            credit_note = invoice.credit_notes[0]
            return Credited(
                at=self._local(credit_note.created),
                amount=invoice.post_payment_credit_notes_amount,
            )
        return Active()

    def _line_item(self, invoice: Invoice, index: int, line: InvoiceLine) -> LineItem:
        text = f"Invoice {invoice.number} / {line.description or ''}"

        structured = None
        if line.period_start is not None and line.period_end is not None:
            structured = Period(start=line.period_start, end=line.period_end)
        period = self.recognition_period(
            line.description, invoice.created, source_id=invoice.id, structured=structured
        )

        amount_net = line.amount
        for discount in line.discount_amounts:
            amount_net -= discount

        amount_gross = amount_net
        for tax_amount in line.tax_amounts:
            if tax_amount.inclusive:
                amount_net -= tax_amount.amount
            else:
                amount_gross += tax_amount.amount

        return LineItem(
            index=index,
            period=period,
            amount_net=amount_net,
            amount_gross=amount_gross,
            text=text,
        )

    def from_invoice(self, invoice: Invoice) -> RevenueItem | None:
        """Revenue item for a finalized invoice, or None when it is skipped."""
        if invoice.is_ignored:
            self.diagnostics.add(
                DiagnosticCode.IGNORED_BY_METADATA,
                "Skipping invoice (ignore)",
                severity=Severity.INFO,
                source_id=invoice.id,
            )
            return None

        self._check_currency(invoice.currency, invoice.id)
        if invoice.lines_has_more:
            raise LedgerError("Invoice line items incomplete", source_id=invoice.id)

        lifecycle = self._invoice_lifecycle(invoice)
        customer = self._customer(invoice.customer_id, invoice.customer, invoice.id)
        profile = self.classify(customer, invoice=invoice, source_id=invoice.id)

        amount_gross = invoice.total
        amount_net = amount_gross
        if invoice.tax is not None:
            amount_net -= invoice.tax

        tax_percentage = None
        if invoice.total_tax_amounts and invoice.total_tax_amounts[0].tax_rate_id:
            tax_percentage = self.cache.tax_rate(
                invoice.total_tax_amounts[0].tax_rate_id
            ).percentage

        created = self._local(invoice.finalized_at or invoice.created)

        return RevenueItem(
            id=invoice.id,
            number=invoice.number,
            customer_id=customer.id,
            created=created,
            amount_gross=amount_gross,
            amount_net=amount_net,
            tax_percentage=tax_percentage,
            line_items=tuple(
                self._line_item(invoice, idx, line) for idx, line in enumerate(invoice.lines)
            ),
            tax_profile=profile,
            text=f"Invoice {invoice.number}",
            lifecycle=lifecycle,
            is_subscription=invoice.is_subscription,
        )

    def from_invoices(self, invoices: Iterable[Invoice]) -> list[RevenueItem]:
        items = [item for item in (self.from_invoice(inv) for inv in invoices) if item]
        self._logger.info("invoice_revenue_items_built", count=len(items))
        return items

    # === Direct charges ===

    def charge_description(self, charge: Charge) -> str | None:
        """Charge description, else the line items of its checkout session."""
        if not charge.description:
            session = self.cache.checkout_session(charge.payment_intent_id)
            if session is not None and session.line_item_descriptions:
                return ", ".join(session.line_item_descriptions)
        return charge.description

    def _check_refunds(self, charge: Charge) -> bool:
        """Return True if the charge was fully refunded by a single refund."""
        if not charge.refunds and not charge.refunded and charge.amount_refunded == ZERO:
            return False
        if len(charge.refunds) == 1 and charge.refunds[0].amount == charge.amount:
            return True
        if len(charge.refunds) > 1:
            raise UnsupportedRefundPattern(
                f"Charge has {len(charge.refunds)} refunds", source_id=charge.id
            )
        raise UnsupportedRefundPattern(
            "Partially refunded charges are not supported", source_id=charge.id
        )

    def from_charge(self, charge: Charge) -> RevenueItem | None:
        """Revenue item for a charge without invoice, or None when it is skipped."""
        if charge.has_invoice:
            return None
        if charge.is_ignored:
            self.diagnostics.add(
                DiagnosticCode.IGNORED_BY_METADATA,
                "Skipping charge (ignore)",
                severity=Severity.INFO,
                source_id=charge.id,
            )
            return None
        if self._check_refunds(charge):
            self.diagnostics.add(
                DiagnosticCode.SKIPPED_REFUNDED_CHARGE,
                "Skipping fully refunded charge",
                severity=Severity.INFO,
                source_id=charge.id,
            )
            return None
        if charge.description and INVOICE_ID_MARKER in charge.description:
            self.diagnostics.add(
                DiagnosticCode.SKIPPED_INVOICE_CHARGE,
                "Skipping charge referencing invoice",
                severity=Severity.INFO,
                source_id=charge.id,
                description=charge.description,
            )
            return None

        self._check_currency(charge.currency, charge.id)
        customer = self._customer(charge.customer_id, charge.customer, charge.id)
        session = self.cache.checkout_session(charge.payment_intent_id)
        profile = self.classify(customer, checkout_session=session, source_id=charge.id)

        text = (
            f"Receipt {charge.receipt_number}" if charge.receipt_number else f"Charge {charge.id}"
        )
        description = self.charge_description(charge)
        if description:
            text = f"{text} / {description}"

        created = self._local(charge.created)
        period = self.recognition_period(description, charge.created, source_id=charge.id)

        amount_gross = charge.amount
        tax = session.amount_tax if session is not None else None
        amount_net = amount_gross - tax if tax is not None else amount_gross
        tax_percentage = tax_percentage_of(amount_net, tax) if tax is not None else None

        return RevenueItem(
            id=charge.id,
            number=charge.receipt_number,
            customer_id=customer.id,
            created=created,
            amount_gross=amount_gross,
            amount_net=amount_net,
            tax_percentage=tax_percentage,
            line_items=(
                LineItem(
                    index=0,
                    period=period,
                    amount_net=amount_net,
                    amount_gross=amount_gross,
                    text=text,
                ),
            ),
            tax_profile=profile,
            text=text,
        )

    def from_charges(self, charges: Iterable[Charge]) -> list[RevenueItem]:
        items = [item for item in (self.from_charge(ch) for ch in charges) if item]
        self._logger.info("charge_revenue_items_built", count=len(items))
        return items


def sort_revenue_items(items: Iterable[RevenueItem]) -> list[RevenueItem]:
    """Order revenue items by creation, ties broken by id."""
    return sorted(items, key=lambda item: (item.created, item.id))


def tax_percentage_of(amount_net: Decimal, tax: Decimal) -> Decimal | None:
    if amount_net == 0:
        return None
    return (tax / amount_net * 100).quantize(CENT, rounding=ROUND_HALF_UP)
