"""Tests for tax classification."""

from decimal import Decimal

import pytest

from billing_ledger.diagnostics import DiagnosticCode
from billing_ledger.models import VatRegion
from billing_ledger.sources import CheckoutSession, Customer, Invoice
from billing_ledger.tax import DocumentKind, TaxSignals, classify_tax

from factories import customer_dict, invoice_dict


def signals(
    country="DE",
    tax_exempt="none",
    tax_amount=None,
    vat_id=None,
    document=DocumentKind.INVOICE,
):
    return TaxSignals(
        customer_id="cus_1",
        country=country,
        tax_exempt=tax_exempt,
        tax_amount=tax_amount,
        vat_id=vat_id,
        document=document,
    )


def codes(classification):
    return [advisory.code for advisory in classification.advisories]


class TestDomestic:
    """Tests for German customers."""

    def test_taxed_invoice(self, accounts):
        """Test a domestic invoice with VAT."""
        result = classify_tax(signals(tax_amount=Decimal("19.00")), accounts)

        assert result.profile.vat_region == VatRegion.DE
        assert result.profile.revenue_account == "4400"
        assert result.profile.tax_key == "9"
        assert result.advisories == ()

    def test_zero_tax_invoice_is_advised(self, accounts):
        """Test that a DE invoice without tax still books domestic VAT."""
        result = classify_tax(signals(tax_amount=Decimal("0.00")), accounts)

        assert codes(result) == [DiagnosticCode.MISSING_DOMESTIC_TAX]
        assert result.profile.vat_region == VatRegion.DE
        assert result.profile.revenue_account == accounts.revenue_german_vat
        assert result.profile.tax_key == accounts.tax_key_germany

    def test_reverse_status_is_advised(self, accounts):
        """Test that a DE customer marked reverse gets an advisory but stays domestic."""
        result = classify_tax(
            signals(tax_exempt="reverse", tax_amount=Decimal("19.00")), accounts
        )

        assert codes(result) == [DiagnosticCode.DOMESTIC_TAX_STATUS]
        assert result.profile.vat_region == VatRegion.DE

    def test_customer_context_has_no_tax_advisory(self, accounts):
        """Test that classification outside a document does not expect tax."""
        result = classify_tax(signals(document=None), accounts)

        assert result.advisories == ()


class TestReverseCharge:
    """Tests for reverse-charge classification."""

    def test_eu_reverse_with_vat_id(self, accounts):
        """Test an EU business customer with a verified VAT id."""
        result = classify_tax(
            signals(
                country="FR",
                tax_exempt="reverse",
                tax_amount=Decimal("0.00"),
                vat_id="FR12345678901",
            ),
            accounts,
        )

        assert result.profile.vat_region == VatRegion.EU
        assert result.profile.revenue_account == accounts.revenue_reverse_charge_eu
        assert result.profile.tax_key == accounts.tax_key_reverse_charge
        assert DiagnosticCode.EU_REVERSE_CHARGE_WITHOUT_VAT_ID not in codes(result)
        assert result.advisories == ()

    def test_eu_reverse_without_vat_id(self, accounts):
        """Test that missing VAT ids fall back to the world account."""
        result = classify_tax(signals(country="AT", tax_exempt="reverse"), accounts)

        assert codes(result) == [DiagnosticCode.EU_REVERSE_CHARGE_WITHOUT_VAT_ID]
        assert result.profile.vat_region == VatRegion.EU
        assert result.profile.revenue_account == accounts.revenue_reverse_charge_world

    def test_croatia_is_eu(self, accounts):
        result = classify_tax(
            signals(country="HR", tax_exempt="reverse", vat_id="HR12345678901"), accounts
        )

        assert result.profile.vat_region == VatRegion.EU

    def test_exempt_is_normalized(self, accounts):
        """Test that exempt customers are booked as reverse charge."""
        result = classify_tax(signals(country="US", tax_exempt="exempt"), accounts)

        assert codes(result) == [DiagnosticCode.EXEMPT_TREATED_AS_REVERSE]
        assert result.profile.tax_exempt_status == "reverse"
        assert result.profile.vat_region == VatRegion.WORLD
        assert result.profile.revenue_account == accounts.revenue_reverse_charge_world

    def test_untaxed_invoice_is_normalized(self, accounts):
        """Test that a taxable customer without tax is treated as reverse."""
        result = classify_tax(
            signals(country="US", tax_amount=Decimal("0.00")), accounts
        )

        assert codes(result) == [DiagnosticCode.UNTAXED_TREATED_AS_REVERSE]
        assert result.profile.tax_exempt_status == "reverse"

    def test_tax_on_reverse_charge(self, accounts):
        """Test the contradictory case of tax on a reverse-charge invoice."""
        result = classify_tax(
            signals(
                country="NL",
                tax_exempt="reverse",
                tax_amount=Decimal("21.00"),
                vat_id="NL123456789B01",
            ),
            accounts,
        )

        assert codes(result) == [DiagnosticCode.TAX_ON_REVERSE_CHARGE]
        assert result.profile.revenue_account == accounts.revenue_reverse_charge_eu

    def test_checkout_without_tax_has_no_advisories(self, accounts):
        """Test that advisories are limited to invoices."""
        result = classify_tax(
            signals(country="US", document=DocumentKind.CHECKOUT), accounts
        )

        assert result.advisories == ()
        assert result.profile.revenue_account == accounts.revenue_reverse_charge_world


class TestTaxable:
    """Tests for taxed customers outside Germany."""

    def test_taxed_eu_consumer(self, accounts):
        """Test that taxed EU consumers book to the domestic VAT account."""
        result = classify_tax(signals(country="FR", tax_amount=Decimal("19.00")), accounts)

        assert result.advisories == ()
        assert result.profile.vat_region == VatRegion.EU
        assert result.profile.revenue_account == accounts.revenue_german_vat
        assert result.profile.tax_key == ""

    def test_unknown_status(self, accounts):
        result = classify_tax(
            signals(country="CH", tax_exempt="partial", tax_amount=Decimal("5.00")), accounts
        )

        assert codes(result) == [DiagnosticCode.UNKNOWN_TAX_STATUS]
        assert result.profile.vat_region == VatRegion.WORLD


class TestTaxSignals:
    """Tests for collecting classification inputs."""

    def test_document_id_not_part_of_equality(self):
        """Test that signals from different documents share a cache key."""
        first = TaxSignals("cus_1", "DE", "none", Decimal("19.00"), document_id="in_1")
        second = TaxSignals("cus_1", "DE", "none", Decimal("19.00"), document_id="in_2")

        assert first == second
        assert hash(first) == hash(second)

    def test_from_invoice(self):
        """Test signals from an invoice with automatic tax."""
        invoice = Invoice.from_dict(invoice_dict(tax=1900))
        customer = invoice.customer

        result = TaxSignals.for_customer(customer, invoice=invoice)

        assert result.country == "DE"
        assert result.tax_amount == Decimal("19.00")
        assert result.document == DocumentKind.INVOICE
        assert result.document_id == "in_1"

    def test_invoice_status_without_automatic_tax(self):
        """Test that the status on the invoice wins without automatic tax."""
        invoice = Invoice.from_dict(
            invoice_dict(customer_tax_exempt="reverse", automatic_tax={"enabled": False})
        )

        result = TaxSignals.for_customer(invoice.customer, invoice=invoice)

        assert result.tax_exempt == "reverse"

    def test_verified_vat_id_only(self):
        """Test that unverified VAT ids are not used."""
        data = customer_dict(country="FR")
        data["tax_ids"]["data"].append(
            {"type": "eu_vat", "value": "FR000", "verification": {"status": "pending"}}
        )

        assert TaxSignals.for_customer(Customer.from_dict(data)).vat_id is None

    @pytest.mark.parametrize("amount_tax,has_tax", [(None, False), (0, False), (500, True)])
    def test_checkout_session_tax(self, amount_tax, has_tax):
        session = CheckoutSession.from_dict(
            {"id": "cs_1", "payment_intent": "pi_1", "total_details": {"amount_tax": amount_tax}}
        )
        customer = Customer.from_dict(customer_dict())

        result = TaxSignals.for_customer(customer, checkout_session=session)

        assert result.has_tax is has_tax
        assert result.document == DocumentKind.CHECKOUT
