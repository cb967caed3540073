"""Synchronous transform from a retrieved batch to accounting records."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import structlog

from billing_ledger.cache import LookupCache
from billing_ledger.config.ledger_loader import LedgerConfig
from billing_ledger.diagnostics import DiagnosticLog
from billing_ledger.ledger import LedgerRecordGenerator
from billing_ledger.models import AccountingRecord, RecordGroup, RevenueItem
from billing_ledger.periods import PeriodExtractor
from billing_ledger.retrieval import SourceBatch
from billing_ledger.revenue import RevenueItemBuilder, sort_revenue_items

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RecordKind(str, Enum):
    """Export streams, one DATEV file family each."""

    REVENUE = "Revenue"
    CHARGES = "Charges"
    TRANSFERS = "Transfers"
    PAYOUTS = "Payouts"
    CONTRIBUTIONS = "Contributions"


@dataclass
class PipelineResult:
    """Record groups per export stream plus the run's advisories."""

    revenue_items: list[RevenueItem]
    groups: dict[RecordKind, list[RecordGroup]]
    diagnostics: DiagnosticLog = field(default_factory=DiagnosticLog)

    def records(self, kind: RecordKind) -> list[AccountingRecord]:
        return [record for group in self.groups.get(kind, []) for record in group.records]

    @property
    def record_count(self) -> int:
        return sum(len(group) for groups in self.groups.values() for group in groups)


def _grouped(
    sources: Iterable[T],
    source_id: Callable[[T], str],
    build: Callable[[T], list[AccountingRecord]],
) -> list[RecordGroup]:
    groups = [RecordGroup(source_id=source_id(src), records=tuple(build(src))) for src in sources]
    return [group for group in groups if group.records]


class LedgerPipeline:
    """Builds revenue items and postings for a closed batch.

    The pipeline performs no I/O. Given the same batch and a cache populated
    the same way it produces the same records in the same order; a fatal
    ``LedgerError`` aborts the whole run before anything is returned.
    """

    def __init__(
        self,
        config: LedgerConfig,
        cache: LookupCache,
        diagnostics: DiagnosticLog | None = None,
        extractor: PeriodExtractor | None = None,
    ):
        self.config = config
        self.cache = cache
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticLog()
        self.builder = RevenueItemBuilder(config, cache, self.diagnostics, extractor)
        self.generator = LedgerRecordGenerator(config)

    def build_revenue_items(self, batch: SourceBatch) -> list[RevenueItem]:
        items = self.builder.from_invoices(batch.invoices)
        items.extend(self.builder.from_charges(batch.charges))
        return sort_revenue_items(items)

    def run(self, batch: SourceBatch) -> PipelineResult:
        items = self.build_revenue_items(batch)
        collective_debtor = self.config.accounts.collective_debtor

        charges = sorted(batch.charges, key=lambda charge: (charge.created, charge.id))
        groups = {
            RecordKind.REVENUE: self.generator.revenue_groups(items),
            RecordKind.CHARGES: _grouped(
                charges,
                lambda charge: charge.id,
                lambda charge: self.generator.charge_records(
                    charge,
                    collective_debtor,
                    charge.invoice_number if charge.has_invoice else charge.receipt_number,
                ),
            ),
            RecordKind.TRANSFERS: _grouped(
                batch.transfers, lambda t: t.id, self.generator.transfer_records
            ),
            RecordKind.PAYOUTS: _grouped(
                batch.payouts, lambda p: p.id, self.generator.payout_records
            ),
            RecordKind.CONTRIBUTIONS: _grouped(
                batch.contributions, lambda bt: bt.id, self.generator.contribution_records
            ),
        }

        result = PipelineResult(revenue_items=items, groups=groups, diagnostics=self.diagnostics)
        logger.info(
            "pipeline_completed",
            revenue_items=len(items),
            records=result.record_count,
            advisories=len(self.diagnostics),
        )
        return result
