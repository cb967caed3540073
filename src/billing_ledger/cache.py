"""Run-scoped lookup cache for customers, tax rates and derived profiles."""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from billing_ledger.sources import CheckoutSession, Customer, Invoice, TaxRate
from billing_ledger.tax import TaxClassification, TaxSignals

K = TypeVar("K")
V = TypeVar("V")


class MissingLookup(KeyError):
    """A lookup the retrieval step did not populate."""

    pass


class _Table(Generic[K, V]):
    """Populate-once mapping: the first value stored for a key wins."""

    def __init__(self, name: str):
        self.name = name
        self._values: dict[K, V] = {}

    def put(self, key: K, value: V) -> V:
        return self._values.setdefault(key, value)

    def get(self, key: K) -> V:
        try:
            return self._values[key]
        except KeyError:
            raise MissingLookup(f"{self.name} {key!r} not in cache") from None

    def find(self, key: K) -> V | None:
        return self._values.get(key)

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        if key not in self._values:
            self._values[key] = factory()
        return self._values[key]

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


class LookupCache:
    """Memoized lookups for one run.

    Values are keyed by immutable Stripe ids and never change once stored, so
    repeated population is harmless and nothing is ever evicted. Create a new
    cache for every run; values must not leak between runs.
    """

    def __init__(self) -> None:
        self.customers: _Table[str, Customer] = _Table("customer")
        self.invoices: _Table[str, Invoice] = _Table("invoice")
        self.tax_rates: _Table[str, TaxRate] = _Table("tax rate")
        # payment intent id -> session (None when the intent had no session)
        self.checkout_sessions: _Table[str, CheckoutSession | None] = _Table(
            "checkout session"
        )
        self.tax_profiles: _Table[TaxSignals, TaxClassification] = _Table("tax profile")

    def add_customer(self, customer: Customer) -> Customer:
        return self.customers.put(customer.id, customer)

    def add_invoice(self, invoice: Invoice) -> Invoice:
        if invoice.customer is not None:
            self.add_customer(invoice.customer)
        return self.invoices.put(invoice.id, invoice)

    def customer(self, customer_id: str) -> Customer:
        return self.customers.get(customer_id)

    def tax_rate(self, rate_id: str) -> TaxRate:
        return self.tax_rates.get(rate_id)

    def checkout_session(self, payment_intent_id: str | None) -> CheckoutSession | None:
        if payment_intent_id is None:
            return None
        return self.checkout_sessions.find(payment_intent_id)

    def classification(
        self, signals: TaxSignals, factory: Callable[[], TaxClassification]
    ) -> TaxClassification:
        return self.tax_profiles.get_or_create(signals, factory)
