"""Double-entry postings for revenue items and Stripe settlement events."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

import structlog

from billing_ledger.config.ledger_loader import LedgerConfig
from billing_ledger.errors import (
    LedgerError,
    UnexpectedCurrency,
    UnexpectedFeeShape,
    UnsupportedRefundPattern,
)
from billing_ledger.models import (
    AccountingRecord,
    Active,
    Credited,
    DebitCredit,
    MonthBucket,
    RecordGroup,
    RevenueItem,
    Uncollectible,
    Voided,
    reversal_instant,
)
from billing_ledger.money import ZERO, money_sum
from billing_ledger.recognition import split_months
from billing_ledger.sources import BalanceTransaction, Charge, Payout, Transfer

logger = structlog.get_logger(__name__)

VOID_PREFIX = "Storno "
CREDIT_PREFIX = "Erstattung "


def _month(dt: datetime) -> str:
    return dt.strftime("%Y-%m")


def forward_range(buckets: list[MonthBucket]) -> str:
    """``YYYY-MM`` for one bucket, ``YYYY-MM..YYYY-MM`` for several."""
    if len(buckets) > 1:
        return f"{buckets[0].month_key}..{buckets[-1].month_key}"
    return buckets[0].month_key


class LedgerRecordGenerator:
    """Turns revenue items and settlement events into accounting records.

    Revenue items follow their lifecycle: a primary posting, an optional
    reversal, and deferred revenue postings through the prepaid clearing
    account when one is configured.
    """

    def __init__(self, config: LedgerConfig):
        self.config = config
        self.accounts = config.accounts
        self.currency = config.currency

    def _record(self, **kwargs) -> AccountingRecord:
        return AccountingRecord(currency=self.currency, **kwargs)

    def _local(self, dt: datetime) -> datetime:
        return dt.astimezone(self.config.timezone)

    def _check_currency(self, currency: str, source_id: str, what: str) -> None:
        if currency.upper() != self.currency.upper():
            raise UnexpectedCurrency(
                f"Unexpected {what} currency {currency!r}", source_id=source_id
            )

    # === Revenue ===

    def records_for(self, item: RevenueItem) -> list[AccountingRecord]:
        """All postings for one revenue item, in booking order."""
        if item.amount_gross <= 0:
            return []

        profile = item.tax_profile
        common = {
            "account": profile.customer_account,
            "counter_account": profile.revenue_account,
            "tax_key": profile.tax_key,
            "document_ref": item.number,
            "eu_vat_id": profile.vat_id,
        }

        records = [
            self._record(
                date=item.created,
                amount=item.amount_gross,
                debit_credit=DebitCredit.DEBIT,
                memo=item.text,
                **common,
            )
        ]

        lifecycle = item.lifecycle
        if isinstance(lifecycle, (Voided, Uncollectible)):
            records.append(
                self._record(
                    date=lifecycle.at,
                    amount=item.amount_gross,
                    debit_credit=DebitCredit.CREDIT,
                    memo=VOID_PREFIX + item.text,
                    **common,
                )
            )
        elif isinstance(lifecycle, Credited):
            records.append(
                self._record(
                    date=lifecycle.at,
                    amount=lifecycle.amount,
                    debit_credit=DebitCredit.CREDIT,
                    memo=CREDIT_PREFIX + item.text,
                    **common,
                )
            )

        if self._reversed_in_booking_month(item):
            return records

        if self.accounts.has_prepaid_clearing:
            records.extend(self._deferral_records(item))

        return records

    def _reversed_in_booking_month(self, item: RevenueItem) -> bool:
        lifecycle = item.lifecycle
        if isinstance(lifecycle, Active):
            return False
        if _month(lifecycle.at) != _month(item.created):
            return False
        if isinstance(lifecycle, Credited):
            return lifecycle.amount == item.amount_gross
        return True

    def _deferral_records(self, item: RevenueItem) -> list[AccountingRecord]:
        profile = item.tax_profile
        clearing = self.accounts.prepaid_clearing
        released_at = reversal_instant(item.lifecycle)
        records: list[AccountingRecord] = []

        for line in item.line_items:
            buckets = split_months(line.period, [line.amount_gross])
            forward = [bucket for bucket in buckets if bucket.start > item.created]
            forward_amount = money_sum(bucket.amounts[0] for bucket in forward)

            if not forward or forward_amount == ZERO:
                continue

            common = {
                "debit_credit": DebitCredit.DEBIT,
                "document_ref": item.number,
                "eu_vat_id": profile.vat_id,
            }
            records.append(
                self._record(
                    date=item.created,
                    amount=forward_amount,
                    account=profile.revenue_account,
                    counter_account=clearing,
                    memo=f"pRAP nach {forward_range(forward)} / {line.text}",
                    **common,
                )
            )
            for bucket in forward:
                records.append(
                    self._record(
                        date=released_at or bucket.start,
                        amount=bucket.amounts[0],
                        account=clearing,
                        counter_account=profile.revenue_account,
                        memo=f"pRAP aus {_month(item.created)} / {line.text}",
                        **common,
                    )
                )

        return records

    def revenue_groups(self, items: Iterable[RevenueItem]) -> list[RecordGroup]:
        groups = [
            RecordGroup(source_id=item.id, records=tuple(self.records_for(item)))
            for item in items
        ]
        return [group for group in groups if group.records]

    # === Settlement ===

    def charge_records(
        self, charge: Charge, customer_account: str, number: str | None = None
    ) -> list[AccountingRecord]:
        """Payment, fees and refund of a captured charge."""
        self._check_currency(charge.currency, charge.id, "charge")
        if charge.balance_transaction is None:
            raise LedgerError("Charge without balance transaction", source_id=charge.id)

        created = self._local(charge.created)
        records = [
            self._record(
                date=created,
                amount=charge.amount,
                debit_credit=DebitCredit.DEBIT,
                account=self.accounts.bank,
                counter_account=customer_account,
                memo=f"Stripe Payment ({charge.id})",
                document_ref=number,
            )
        ]

        for fee in charge.balance_transaction.fee_details:
            self._check_currency(fee.currency, charge.id, "fee")
            records.append(
                self._record(
                    date=created,
                    amount=fee.amount,
                    debit_credit=DebitCredit.DEBIT,
                    account=self.accounts.fees,
                    counter_account=self.accounts.bank,
                    memo=f"{fee.description or 'Stripe Fee'} ({charge.id})",
                )
            )

        if charge.refunded or charge.refunds:
            if len(charge.refunds) != 1:
                raise UnsupportedRefundPattern(
                    f"Unexpected number of refunds: {len(charge.refunds)}",
                    source_id=charge.id,
                )
            refund = charge.refunds[0]
            records.append(
                self._record(
                    date=self._local(refund.created),
                    amount=refund.amount,
                    debit_credit=DebitCredit.CREDIT,
                    account=self.accounts.bank,
                    counter_account=customer_account,
                    memo=f"Stripe Payment Refund ({charge.id})",
                    document_ref=number,
                )
            )

        return records

    def payout_records(self, payout: Payout) -> list[AccountingRecord]:
        self._check_currency(payout.currency, payout.id, "payout")
        if payout.balance_transaction is not None and payout.balance_transaction.fee_details:
            raise UnexpectedFeeShape("Unexpected fee details on payout", source_id=payout.id)

        return [
            self._record(
                date=self._local(payout.created),
                amount=payout.amount,
                debit_credit=DebitCredit.DEBIT,
                account=self.accounts.transit,
                counter_account=self.accounts.bank,
                memo=f"Stripe Payout {payout.id} / {payout.description or ''}",
            )
        ]

    def transfer_records(self, transfer: Transfer) -> list[AccountingRecord]:
        """Share of a charge passed on to a connected account."""
        self._check_currency(transfer.currency, transfer.id, "transfer")
        destination = transfer.destination_account_number
        if not destination:
            raise LedgerError(
                "Transfer destination has no account number", source_id=transfer.id
            )

        created = self._local(transfer.created)
        amount = transfer.net_amount
        memo = f"Fremdleistung {transfer.source_invoice_number or transfer.id} anteilig"
        return [
            self._record(
                date=created,
                amount=amount,
                debit_credit=DebitCredit.DEBIT,
                account=self.accounts.external_services,
                counter_account=destination,
                memo=memo,
                document_ref=transfer.id,
            ),
            self._record(
                date=created,
                amount=amount,
                debit_credit=DebitCredit.DEBIT,
                account=destination,
                counter_account=self.accounts.bank,
                memo=memo,
                document_ref=transfer.id,
            ),
        ]

    def contribution_records(self, transaction: BalanceTransaction) -> list[AccountingRecord]:
        """Climate contributions are withdrawn from the balance as negative amounts."""
        self._check_currency(transaction.currency, transaction.id, "contribution")
        amount: Decimal = -transaction.amount
        return [
            self._record(
                date=self._local(transaction.created),
                amount=amount,
                debit_credit=DebitCredit.DEBIT,
                account=self.accounts.contributions,
                counter_account=self.accounts.bank,
                memo=f"Stripe {transaction.description or 'Contribution'} {transaction.id}",
            )
        ]
