"""Customer master data maintenance: validation and debtor account numbers."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from billing_ledger.clients.stripe_api import StripeAPIClient
from billing_ledger.config.ledger_loader import ChartOfAccounts
from billing_ledger.diagnostics import DiagnosticCode, DiagnosticLog
from billing_ledger.sources import ACCOUNT_NUMBER_METADATA_KEY, Customer
from billing_ledger.tax import TaxExempt, TaxSignals, classify_tax

logger = structlog.get_logger(__name__)

FIRST_ACCOUNT_NUMBER = 10100

# Metadata written by earlier subscription tooling, cleared when numbering
LEGACY_METADATA_KEYS = (
    "subscribedNetPrice",
    "subscribedProduct",
    "subscribedProductName",
    "subscribedTaxRate",
    "subscribedTotal",
)


def validate_customers(
    customers: Iterable[Customer], accounts: ChartOfAccounts, diagnostics: DiagnosticLog
) -> int:
    """Check every customer's master data and tax classification.

    Returns:
        Number of customers checked.
    """
    count = 0
    for customer in customers:
        if customer.address is None:
            diagnostics.add(
                DiagnosticCode.CUSTOMER_WITHOUT_ADDRESS,
                "Customer without address",
                source_id=customer.id,
            )
        if customer.tax_exempt == TaxExempt.EXEMPT.value:
            diagnostics.add(
                DiagnosticCode.EXEMPT_CUSTOMER, "Exempt customer", source_id=customer.id
            )

        classification = classify_tax(TaxSignals.for_customer(customer), accounts)
        for advisory in classification.advisories:
            diagnostics.append(advisory.with_context(source_id=customer.id))
        count += 1

    logger.info("customers_validated", count=count)
    return count


@dataclass(frozen=True)
class AccountAssignment:
    """Metadata update giving a customer its own debtor account."""

    customer_id: str
    account_number: str
    metadata: dict[str, str] = field(default_factory=dict)


def plan_account_numbers(customers: Iterable[Customer]) -> list[AccountAssignment]:
    """Assign consecutive account numbers to the newest unnumbered customers.

    ``customers`` must be ordered newest first, as Stripe lists them. Scanning
    stops at the first customer that already has a number; numbering continues
    from it, oldest unnumbered customer first.
    """
    highest = FIRST_ACCOUNT_NUMBER - 1
    unnumbered: list[Customer] = []
    for customer in customers:
        if customer.account_number is not None:
            highest = int(customer.account_number)
            break
        unnumbered.append(customer)

    logger.info(
        "account_numbers_planned",
        unnumbered=len(unnumbered),
        highest=highest,
    )

    plan: list[AccountAssignment] = []
    for customer in reversed(unnumbered):
        highest += 1
        metadata = {ACCOUNT_NUMBER_METADATA_KEY: str(highest)}
        for key in LEGACY_METADATA_KEYS:
            if key in customer.metadata:
                metadata[key] = ""
        plan.append(
            AccountAssignment(
                customer_id=customer.id, account_number=str(highest), metadata=metadata
            )
        )
    return plan


async def fill_account_numbers(client: StripeAPIClient, plan: list[AccountAssignment]) -> int:
    """Write planned account numbers to Stripe customer metadata."""
    for assignment in plan:
        await client.update_customer_metadata(assignment.customer_id, assignment.metadata)
        logger.info(
            "account_number_assigned",
            customer_id=assignment.customer_id,
            account_number=assignment.account_number,
        )
    return len(plan)
