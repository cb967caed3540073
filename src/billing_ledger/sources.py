"""Typed records for the Stripe objects the exporter consumes.

Each record is built from the API's JSON with ``from_dict``. Optional fields
that are absent in the payload are ``None``; amounts are converted from minor
units to two-digit decimals and timestamps to UTC datetimes. Fields that the
API returns either as an id or as an expanded object keep the id and, when
expanded, the nested record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from billing_ledger.money import ZERO, from_cents

IGNORE_METADATA_KEY = "billing-ledger:ignore"
ACCOUNT_NUMBER_METADATA_KEY = "accountNumber"


def _ts(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _required_ts(data: dict[str, Any], key: str) -> datetime:
    value = _ts(data.get(key))
    if value is None:
        raise ValueError(f"{data.get('object', 'object')} {data.get('id')}: missing {key}")
    return value


def _amount(value: Any) -> Decimal:
    result = from_cents(None if value is None else int(value))
    return ZERO if result is None else result


def _ref(value: Any) -> tuple[str | None, dict[str, Any] | None]:
    """Split an id-or-expanded field into its id and expanded payload."""
    if value is None:
        return None, None
    if isinstance(value, str):
        return value, None
    if isinstance(value, dict):
        return value.get("id"), value
    raise ValueError(f"Unexpected reference value: {value!r}")


def _list_data(value: Any) -> list[dict[str, Any]]:
    """Return the items of a Stripe list object or a bare list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        items = value.get("data")
        if isinstance(items, list):
            return items
    return []


def _metadata(data: dict[str, Any]) -> dict[str, str]:
    return {str(k): str(v) for k, v in (data.get("metadata") or {}).items()}


@dataclass(frozen=True)
class Address:
    country: str | None = None
    line1: str | None = None
    line2: str | None = None
    postal_code: str | None = None
    city: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Address | None:
        if not data:
            return None
        return cls(
            country=data.get("country"),
            line1=data.get("line1"),
            line2=data.get("line2"),
            postal_code=data.get("postal_code"),
            city=data.get("city"),
        )


@dataclass(frozen=True)
class TaxId:
    type: str
    value: str
    verification_status: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaxId:
        verification = data.get("verification") or {}
        return cls(
            type=data["type"],
            value=data["value"],
            verification_status=verification.get("status"),
        )


@dataclass(frozen=True)
class Customer:
    id: str
    deleted: bool = False
    name: str | None = None
    description: str | None = None
    email: str | None = None
    address: Address | None = None
    shipping_address: Address | None = None
    tax_exempt: str | None = None
    tax_ids: tuple[TaxId, ...] | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Customer:
        shipping = data.get("shipping") or {}
        tax_ids_raw = data.get("tax_ids")
        return cls(
            id=data["id"],
            deleted=bool(data.get("deleted", False)),
            name=data.get("name"),
            description=data.get("description"),
            email=data.get("email"),
            address=Address.from_dict(data.get("address")),
            shipping_address=Address.from_dict(shipping.get("address")),
            tax_exempt=data.get("tax_exempt"),
            tax_ids=(
                None
                if tax_ids_raw is None
                else tuple(TaxId.from_dict(t) for t in _list_data(tax_ids_raw))
            ),
            metadata=_metadata(data),
        )

    @property
    def billing_address(self) -> Address | None:
        return self.address or self.shipping_address

    @property
    def country(self) -> str | None:
        address = self.billing_address
        return address.country if address else None

    @property
    def display_name(self) -> str:
        if self.deleted:
            return self.id
        return self.description or self.name or self.id

    @property
    def account_number(self) -> str | None:
        return self.metadata.get(ACCOUNT_NUMBER_METADATA_KEY)

    @property
    def verified_vat_id(self) -> str | None:
        for tax_id in self.tax_ids or ():
            if tax_id.type == "eu_vat" and tax_id.verification_status == "verified":
                return tax_id.value
        return None


@dataclass(frozen=True)
class TaxAmount:
    amount: Decimal
    inclusive: bool = False
    tax_rate_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaxAmount:
        rate_id, _ = _ref(data.get("tax_rate"))
        return cls(
            amount=_amount(data.get("amount")),
            inclusive=bool(data.get("inclusive", False)),
            tax_rate_id=rate_id,
        )


@dataclass(frozen=True)
class TaxRate:
    id: str
    percentage: Decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaxRate:
        return cls(id=data["id"], percentage=Decimal(str(data["percentage"])))


@dataclass(frozen=True)
class InvoiceLine:
    id: str
    amount: Decimal
    description: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    discount_amounts: tuple[Decimal, ...] = ()
    tax_amounts: tuple[TaxAmount, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InvoiceLine:
        period = data.get("period") or {}
        return cls(
            id=data["id"],
            amount=_amount(data.get("amount")),
            description=data.get("description"),
            period_start=_ts(period.get("start")),
            period_end=_ts(period.get("end")),
            discount_amounts=tuple(
                _amount(d.get("amount")) for d in data.get("discount_amounts") or []
            ),
            tax_amounts=tuple(TaxAmount.from_dict(t) for t in data.get("tax_amounts") or []),
        )


@dataclass(frozen=True)
class CreditNote:
    id: str
    created: datetime
    amount: Decimal
    number: str | None = None
    invoice_id: str | None = None
    invoice: Invoice | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CreditNote:
        invoice_id, invoice_data = _ref(data.get("invoice"))
        return cls(
            id=data["id"],
            created=_required_ts(data, "created"),
            amount=_amount(data.get("amount")),
            number=data.get("number"),
            invoice_id=invoice_id,
            invoice=Invoice.from_dict(invoice_data) if invoice_data else None,
        )


@dataclass(frozen=True)
class Invoice:
    id: str
    customer_id: str
    created: datetime
    status: str
    total: Decimal
    currency: str = "eur"
    number: str | None = None
    tax: Decimal | None = None
    customer: Customer | None = None
    customer_tax_exempt: str | None = None
    automatic_tax_enabled: bool = False
    subscription_id: str | None = None
    finalized_at: datetime | None = None
    voided_at: datetime | None = None
    marked_uncollectible_at: datetime | None = None
    paid_at: datetime | None = None
    due_date: datetime | None = None
    post_payment_credit_notes_amount: Decimal = ZERO
    total_tax_amounts: tuple[TaxAmount, ...] = ()
    lines: tuple[InvoiceLine, ...] = ()
    lines_has_more: bool = False
    credit_notes: tuple[CreditNote, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Invoice:
        customer_id, customer_data = _ref(data.get("customer"))
        transitions = data.get("status_transitions") or {}
        lines = data.get("lines") or {}
        subscription_id, _ = _ref(data.get("subscription"))
        tax = data.get("tax")
        return cls(
            id=data["id"],
            customer_id=customer_id or "",
            created=_required_ts(data, "created"),
            status=data.get("status") or "draft",
            total=_amount(data.get("total")),
            currency=(data.get("currency") or "eur").lower(),
            number=data.get("number"),
            tax=None if tax is None else _amount(tax),
            customer=Customer.from_dict(customer_data) if customer_data else None,
            customer_tax_exempt=data.get("customer_tax_exempt"),
            automatic_tax_enabled=bool((data.get("automatic_tax") or {}).get("enabled")),
            subscription_id=subscription_id,
            finalized_at=_ts(transitions.get("finalized_at")),
            voided_at=_ts(transitions.get("voided_at")),
            marked_uncollectible_at=_ts(transitions.get("marked_uncollectible_at")),
            paid_at=_ts(transitions.get("paid_at")),
            due_date=_ts(data.get("due_date")),
            post_payment_credit_notes_amount=_amount(
                data.get("post_payment_credit_notes_amount")
            ),
            total_tax_amounts=tuple(
                TaxAmount.from_dict(t) for t in data.get("total_tax_amounts") or []
            ),
            lines=tuple(InvoiceLine.from_dict(li) for li in _list_data(lines)),
            lines_has_more=bool(isinstance(lines, dict) and lines.get("has_more")),
            metadata=_metadata(data),
        )

    @property
    def is_ignored(self) -> bool:
        return self.metadata.get(IGNORE_METADATA_KEY) == "true"

    @property
    def is_subscription(self) -> bool:
        return self.subscription_id is not None


@dataclass(frozen=True)
class FeeDetail:
    amount: Decimal
    currency: str
    description: str | None = None
    type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeeDetail:
        return cls(
            amount=_amount(data.get("amount")),
            currency=(data.get("currency") or "").lower(),
            description=data.get("description"),
            type=data.get("type"),
        )


@dataclass(frozen=True)
class BalanceTransaction:
    id: str
    amount: Decimal
    created: datetime
    currency: str = "eur"
    type: str | None = None
    description: str | None = None
    fee_details: tuple[FeeDetail, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BalanceTransaction:
        return cls(
            id=data["id"],
            amount=_amount(data.get("amount")),
            created=_required_ts(data, "created"),
            currency=(data.get("currency") or "eur").lower(),
            type=data.get("type"),
            description=data.get("description"),
            fee_details=tuple(FeeDetail.from_dict(f) for f in data.get("fee_details") or []),
        )


@dataclass(frozen=True)
class Refund:
    id: str
    amount: Decimal
    created: datetime
    currency: str = "eur"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Refund:
        return cls(
            id=data["id"],
            amount=_amount(data.get("amount")),
            created=_required_ts(data, "created"),
            currency=(data.get("currency") or "eur").lower(),
        )


@dataclass(frozen=True)
class Charge:
    id: str
    amount: Decimal
    created: datetime
    currency: str = "eur"
    customer_id: str | None = None
    customer: Customer | None = None
    description: str | None = None
    invoice_id: str | None = None
    invoice_number: str | None = None
    paid: bool = True
    captured: bool = True
    refunded: bool = False
    amount_refunded: Decimal = ZERO
    refunds: tuple[Refund, ...] = ()
    receipt_number: str | None = None
    payment_intent_id: str | None = None
    balance_transaction_id: str | None = None
    balance_transaction: BalanceTransaction | None = None
    application_fee_amount: Decimal | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Charge:
        customer_id, customer_data = _ref(data.get("customer"))
        invoice_id, invoice_data = _ref(data.get("invoice"))
        intent_id, _ = _ref(data.get("payment_intent"))
        bt_id, bt_data = _ref(data.get("balance_transaction"))
        fee = data.get("application_fee_amount")
        return cls(
            id=data["id"],
            amount=_amount(data.get("amount")),
            created=_required_ts(data, "created"),
            currency=(data.get("currency") or "eur").lower(),
            customer_id=customer_id,
            customer=Customer.from_dict(customer_data) if customer_data else None,
            description=data.get("description"),
            invoice_id=invoice_id,
            invoice_number=invoice_data.get("number") if invoice_data else None,
            paid=bool(data.get("paid", True)),
            captured=bool(data.get("captured", True)),
            refunded=bool(data.get("refunded", False)),
            amount_refunded=_amount(data.get("amount_refunded")),
            refunds=tuple(Refund.from_dict(r) for r in _list_data(data.get("refunds"))),
            receipt_number=data.get("receipt_number"),
            payment_intent_id=intent_id,
            balance_transaction_id=bt_id,
            balance_transaction=BalanceTransaction.from_dict(bt_data) if bt_data else None,
            application_fee_amount=None if fee is None else _amount(fee),
            metadata=_metadata(data),
        )

    @property
    def has_invoice(self) -> bool:
        return self.invoice_id is not None

    @property
    def is_ignored(self) -> bool:
        return self.metadata.get(IGNORE_METADATA_KEY) == "true"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    payment_intent_id: str | None = None
    amount_tax: Decimal | None = None
    line_item_descriptions: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckoutSession:
        intent_id, _ = _ref(data.get("payment_intent"))
        totals = data.get("total_details") or {}
        amount_tax = totals.get("amount_tax")
        return cls(
            id=data["id"],
            payment_intent_id=intent_id,
            amount_tax=None if amount_tax is None else _amount(amount_tax),
            line_item_descriptions=tuple(
                li.get("description") or "" for li in _list_data(data.get("line_items"))
            ),
        )


@dataclass(frozen=True)
class Payout:
    id: str
    amount: Decimal
    created: datetime
    currency: str = "eur"
    status: str = "paid"
    description: str | None = None
    balance_transaction: BalanceTransaction | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Payout:
        _, bt_data = _ref(data.get("balance_transaction"))
        return cls(
            id=data["id"],
            amount=_amount(data.get("amount")),
            created=_required_ts(data, "created"),
            currency=(data.get("currency") or "eur").lower(),
            status=data.get("status") or "pending",
            description=data.get("description"),
            balance_transaction=BalanceTransaction.from_dict(bt_data) if bt_data else None,
        )


@dataclass(frozen=True)
class Transfer:
    id: str
    amount: Decimal
    created: datetime
    currency: str = "eur"
    reversed: bool = False
    destination_id: str | None = None
    destination_account_number: str | None = None
    source_charge_id: str | None = None
    source_application_fee: Decimal | None = None
    source_invoice_number: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transfer:
        destination_id, destination = _ref(data.get("destination"))
        source_id, source = _ref(data.get("source_transaction"))
        fee = source.get("application_fee_amount") if source else None
        invoice_number = None
        if source:
            _, invoice = _ref(source.get("invoice"))
            invoice_number = invoice.get("number") if invoice else None
        return cls(
            id=data["id"],
            amount=_amount(data.get("amount")),
            created=_required_ts(data, "created"),
            currency=(data.get("currency") or "eur").lower(),
            reversed=bool(data.get("reversed", False)),
            destination_id=destination_id,
            destination_account_number=(
                _metadata(destination).get(ACCOUNT_NUMBER_METADATA_KEY)
                if destination
                else None
            ),
            source_charge_id=source_id,
            source_application_fee=None if fee is None else _amount(fee),
            source_invoice_number=invoice_number,
        )

    @property
    def net_amount(self) -> Decimal:
        return self.amount - (self.source_application_fee or ZERO)
