"""Tests for typed Stripe records."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from billing_ledger.sources import (
    Charge,
    CheckoutSession,
    CreditNote,
    Customer,
    Invoice,
    Transfer,
)

from factories import charge_dict, customer_dict, invoice_dict, ts


class TestCustomer:
    """Tests for Customer records."""

    def test_from_dict(self):
        customer = Customer.from_dict(customer_dict(vat_id="DE123456789"))

        assert customer.id == "cus_de"
        assert customer.country == "DE"
        assert customer.verified_vat_id == "DE123456789"
        assert customer.account_number is None

    def test_shipping_address_fallback(self):
        """Test that the shipping address stands in for a missing address."""
        data = customer_dict(country=None, shipping={"address": {"country": "AT"}})

        assert Customer.from_dict(data).country == "AT"

    def test_tax_ids_not_expanded(self):
        """Test that an absent tax id list is distinct from an empty one."""
        data = customer_dict()
        del data["tax_ids"]

        customer = Customer.from_dict(data)

        assert customer.tax_ids is None
        assert customer.verified_vat_id is None

    def test_display_name(self):
        assert Customer.from_dict(customer_dict(description="Acme")).display_name == "Acme"
        assert Customer.from_dict({"id": "cus_gone", "deleted": True}).display_name == "cus_gone"


class TestInvoice:
    """Tests for Invoice records."""

    def test_amounts_and_timestamps(self):
        invoice = Invoice.from_dict(invoice_dict())

        assert invoice.total == Decimal("119.00")
        assert invoice.tax == Decimal("19.00")
        assert invoice.finalized_at == datetime.fromtimestamp(ts(2021, 5, 10, 12), tz=UTC)
        assert invoice.customer_id == "cus_de"
        assert invoice.customer is not None
        assert invoice.automatic_tax_enabled is True
        assert len(invoice.lines) == 1
        assert invoice.lines_has_more is False

    def test_missing_tax_is_none(self):
        """Test that an absent tax amount is not zero."""
        assert Invoice.from_dict(invoice_dict(tax=None)).tax is None

    def test_unexpanded_customer(self):
        invoice = Invoice.from_dict(invoice_dict(customer="cus_1"))

        assert invoice.customer_id == "cus_1"
        assert invoice.customer is None

    def test_currency_lowercased(self):
        assert Invoice.from_dict(invoice_dict(currency="EUR")).currency == "eur"

    def test_missing_created_raises(self):
        data = invoice_dict()
        del data["created"]

        with pytest.raises(ValueError):
            Invoice.from_dict(data)


class TestCharge:
    """Tests for Charge records."""

    def test_from_dict(self):
        charge = Charge.from_dict(charge_dict())

        assert charge.amount == Decimal("50.00")
        assert charge.payment_intent_id == "pi_1"
        assert charge.balance_transaction.fee_details[0].amount == Decimal("0.95")
        assert charge.has_invoice is False
        assert charge.is_ignored is False

    def test_expanded_invoice_number(self):
        charge = Charge.from_dict(charge_dict(invoice={"id": "in_1", "number": "INV-0001"}))

        assert charge.invoice_id == "in_1"
        assert charge.invoice_number == "INV-0001"
        assert charge.has_invoice is True


class TestOtherRecords:
    def test_checkout_session(self):
        session = CheckoutSession.from_dict(
            {
                "id": "cs_1",
                "payment_intent": "pi_1",
                "total_details": {"amount_tax": 950},
                "line_items": {"data": [{"description": "Workshop"}, {"description": None}]},
            }
        )

        assert session.amount_tax == Decimal("9.50")
        assert session.line_item_descriptions == ("Workshop", "")

    def test_credit_note_with_invoice(self):
        note = CreditNote.from_dict(
            {
                "id": "cn_1",
                "created": ts(2021, 6, 1),
                "amount": 1000,
                "number": "CN-1",
                "invoice": invoice_dict(),
            }
        )

        assert note.invoice_id == "in_1"
        assert note.invoice.number == "INV-0001"

    def test_transfer_net_amount(self):
        transfer = Transfer.from_dict(
            {
                "id": "tr_1",
                "amount": 10000,
                "created": ts(2021, 5, 1),
                "source_transaction": {"id": "ch_1", "application_fee_amount": 2500},
            }
        )

        assert transfer.net_amount == Decimal("75.00")
        assert transfer.source_invoice_number is None

    def test_unexpected_reference(self):
        with pytest.raises(ValueError):
            Transfer.from_dict(
                {"id": "tr_1", "amount": 1, "created": ts(2021, 5, 1), "destination": 42}
            )
