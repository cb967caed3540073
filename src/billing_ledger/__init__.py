"""Billing ledger - revenue recognition and DATEV export for Stripe billing data."""

__version__ = "0.1.0"

from billing_ledger.cache import LookupCache
from billing_ledger.config import configure_logging, get_settings, load_ledger_config
from billing_ledger.diagnostics import Diagnostic, DiagnosticCode, DiagnosticLog
from billing_ledger.errors import (
    LedgerError,
    MultiYearBatch,
    UnexpectedCurrency,
    UnexpectedFeeShape,
    UnsupportedRefundPattern,
)
from billing_ledger.ledger import LedgerRecordGenerator
from billing_ledger.periods import PeriodExtractor, find_period
from billing_ledger.pipeline import LedgerPipeline, PipelineResult, RecordKind
from billing_ledger.recognition import split_months
from billing_ledger.revenue import RevenueItemBuilder
from billing_ledger.tax import TaxSignals, classify_tax

__all__ = [
    # Version
    "__version__",
    # Engine
    "PeriodExtractor",
    "find_period",
    "split_months",
    "TaxSignals",
    "classify_tax",
    "RevenueItemBuilder",
    "LedgerRecordGenerator",
    "LedgerPipeline",
    "PipelineResult",
    "RecordKind",
    "LookupCache",
    # Diagnostics and errors
    "Diagnostic",
    "DiagnosticCode",
    "DiagnosticLog",
    "LedgerError",
    "MultiYearBatch",
    "UnexpectedCurrency",
    "UnexpectedFeeShape",
    "UnsupportedRefundPattern",
    # Config
    "configure_logging",
    "get_settings",
    "load_ledger_config",
]
