"""Tax treatment of customers: domestic VAT, EU reverse charge or world.

The classification combines the customer's country, the tax-exempt status
on the customer or invoice, the tax actually charged on the document and
whether a verified VAT id is on file. These signals regularly disagree;
disagreements are reported as advisories and resolved by the rules below
instead of failing the export.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from billing_ledger.config.ledger_loader import ChartOfAccounts
from billing_ledger.diagnostics import Diagnostic, DiagnosticCode
from billing_ledger.models import TaxProfile, VatRegion
from billing_ledger.sources import CheckoutSession, Customer, Invoice

EU_COUNTRY_CODES = frozenset(
    {
        "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "ES", "FI", "FR", "GR", "HR",
        "HU", "IE", "IT", "LT", "LU", "LV", "MT", "NL", "PL", "PT", "RO", "SE", "SI",
        "SK",
    }
)

DOMESTIC_COUNTRY = "DE"


class TaxExempt(str, Enum):
    """Stripe ``tax_exempt`` values."""

    NONE = "none"
    EXEMPT = "exempt"
    REVERSE = "reverse"


class DocumentKind(str, Enum):
    """Which document supplied the tax amount."""

    INVOICE = "invoice"
    CHECKOUT = "checkout"


@dataclass(frozen=True)
class TaxSignals:
    """Inputs to the classification.

    Hashable so it can key a cache; the document id is carried for reporting
    only and does not take part in equality.
    """

    customer_id: str
    country: str | None
    tax_exempt: str | None
    tax_amount: Decimal | None = None
    vat_id: str | None = None
    document: DocumentKind | None = None
    document_id: str | None = field(default=None, compare=False)

    @property
    def has_tax(self) -> bool:
        return self.tax_amount is not None and self.tax_amount != 0

    @classmethod
    def for_customer(
        cls,
        customer: Customer,
        invoice: Invoice | None = None,
        checkout_session: CheckoutSession | None = None,
    ) -> TaxSignals:
        """Collect signals for a customer, optionally in the context of a document."""
        tax_amount = None
        document = None
        document_id = None
        if invoice is not None:
            tax_amount = invoice.tax
            document = DocumentKind.INVOICE
            document_id = invoice.id
        elif checkout_session is not None:
            tax_amount = checkout_session.amount_tax
            document = DocumentKind.CHECKOUT
            document_id = checkout_session.id

        # Invoices without automatic tax carry the status they were issued with
        if (
            invoice is not None
            and invoice.customer_tax_exempt is not None
            and not invoice.automatic_tax_enabled
        ):
            tax_exempt = invoice.customer_tax_exempt
        else:
            tax_exempt = customer.tax_exempt

        return cls(
            customer_id=customer.id,
            country=customer.country,
            tax_exempt=tax_exempt,
            tax_amount=tax_amount,
            vat_id=customer.verified_vat_id,
            document=document,
            document_id=document_id,
        )


@dataclass(frozen=True)
class TaxClassification:
    """A profile and the advisories raised while deriving it."""

    profile: TaxProfile
    advisories: tuple[Diagnostic, ...] = ()


def classify_tax(signals: TaxSignals, accounts: ChartOfAccounts) -> TaxClassification:
    """Derive the tax profile for a customer.

    Rules, in order:

    1. Germany: domestic VAT account and tax key.
    2. EU countries move the region from World to EU and continue.
    3. Reverse-charge customers, and any document without tax, book to the
       EU reverse-charge account (EU with VAT id) or the world account.
    4. Taxable customers below the distance-selling threshold, and unknown
       statuses, book to the domestic VAT account without a tax key.
    """
    advisories: list[Diagnostic] = []
    context = {"customer_id": signals.customer_id}
    on_invoice = signals.document == DocumentKind.INVOICE

    def advise(code: DiagnosticCode, message: str) -> None:
        advisories.append(Diagnostic(code=code, message=message, context=dict(context)))

    vat_region = VatRegion.WORLD
    customer_account = accounts.collective_debtor
    tax_exempt = signals.tax_exempt

    if signals.country == DOMESTIC_COUNTRY:
        if on_invoice and not signals.has_tax:
            advise(DiagnosticCode.MISSING_DOMESTIC_TAX, "No tax on invoice of DE customer")
        if tax_exempt != TaxExempt.NONE.value:
            advise(
                DiagnosticCode.DOMESTIC_TAX_STATUS,
                f"DE customer tax status is {tax_exempt!r}",
            )
        return TaxClassification(
            profile=TaxProfile(
                vat_region=VatRegion.DE,
                tax_exempt_status=tax_exempt,
                customer_account=customer_account,
                revenue_account=accounts.revenue_german_vat,
                tax_key=accounts.tax_key_germany,
                vat_id=signals.vat_id,
                country=signals.country,
            ),
            advisories=tuple(advisories),
        )

    if signals.country in EU_COUNTRY_CODES:
        vat_region = VatRegion.EU

    if tax_exempt in (TaxExempt.REVERSE.value, TaxExempt.EXEMPT.value) or not signals.has_tax:
        if on_invoice:
            if tax_exempt == TaxExempt.EXEMPT.value:
                advise(
                    DiagnosticCode.EXEMPT_TREATED_AS_REVERSE,
                    "Tax exempt customer, treating like 'reverse'",
                )
                tax_exempt = TaxExempt.REVERSE.value
            if tax_exempt == TaxExempt.NONE.value:
                advise(
                    DiagnosticCode.UNTAXED_TREATED_AS_REVERSE,
                    "Taxable customer without tax on invoice, treating like 'reverse'",
                )
                tax_exempt = TaxExempt.REVERSE.value
            if signals.has_tax:
                advise(
                    DiagnosticCode.TAX_ON_REVERSE_CHARGE,
                    "Tax on invoice of reverse charge customer",
                )
            if vat_region == VatRegion.EU and signals.vat_id is None:
                advise(
                    DiagnosticCode.EU_REVERSE_CHARGE_WITHOUT_VAT_ID,
                    "EU reverse charge customer without VAT ID",
                )

        if vat_region == VatRegion.EU and signals.vat_id is not None:
            revenue_account = accounts.revenue_reverse_charge_eu
        else:
            revenue_account = accounts.revenue_reverse_charge_world

        return TaxClassification(
            profile=TaxProfile(
                vat_region=vat_region,
                tax_exempt_status=tax_exempt,
                customer_account=customer_account,
                revenue_account=revenue_account,
                tax_key=accounts.tax_key_reverse_charge,
                vat_id=signals.vat_id,
                country=signals.country,
            ),
            advisories=tuple(advisories),
        )

    if tax_exempt != TaxExempt.NONE.value:
        advise(DiagnosticCode.UNKNOWN_TAX_STATUS, f"Unknown tax status {tax_exempt!r}")

    return TaxClassification(
        profile=TaxProfile(
            vat_region=vat_region,
            tax_exempt_status=tax_exempt,
            customer_account=customer_account,
            revenue_account=accounts.revenue_german_vat,
            vat_id=signals.vat_id,
            country=signals.country,
        ),
        advisories=tuple(advisories),
    )
