"""Structured advisories collected alongside normal output.

Advisories describe conditions where the exporter proceeded with a documented
fallback. They are returned to the caller and logged, never raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    """How much attention an advisory needs."""

    INFO = "info"
    WARNING = "warning"


class DiagnosticCode(str, Enum):
    """Codes for advisories emitted while building ledger records."""

    # Period extraction
    EXTRACTION_AMBIGUOUS = "extraction_ambiguous"
    MISSING_PERIOD = "missing_period"

    # Tax classification
    UNKNOWN_TAX_STATUS = "unknown_tax_status"
    MISSING_DOMESTIC_TAX = "missing_domestic_tax"
    DOMESTIC_TAX_STATUS = "domestic_tax_status"
    EXEMPT_TREATED_AS_REVERSE = "exempt_treated_as_reverse"
    UNTAXED_TREATED_AS_REVERSE = "untaxed_treated_as_reverse"
    TAX_ON_REVERSE_CHARGE = "tax_on_reverse_charge"
    EU_REVERSE_CHARGE_WITHOUT_VAT_ID = "eu_reverse_charge_without_vat_id"

    # Source selection
    IGNORED_BY_METADATA = "ignored_by_metadata"
    SKIPPED_REFUNDED_CHARGE = "skipped_refunded_charge"
    SKIPPED_INVOICE_CHARGE = "skipped_invoice_charge"

    # Retrieval window
    LATE_REVERSAL = "late_reversal"
    EARLIER_CREDIT_NOTE = "earlier_credit_note"

    # Customer master data
    CUSTOMER_WITHOUT_ADDRESS = "customer_without_address"
    EXEMPT_CUSTOMER = "exempt_customer"


@dataclass(frozen=True)
class Diagnostic:
    """A single advisory."""

    code: DiagnosticCode
    message: str
    severity: Severity = Severity.WARNING
    context: dict[str, Any] = field(default_factory=dict)

    def with_context(self, **context: Any) -> "Diagnostic":
        """Return a copy with additional context entries."""
        return Diagnostic(
            code=self.code,
            message=self.message,
            severity=self.severity,
            context={**self.context, **context},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code.value,
            "message": self.message,
            "context": dict(self.context),
        }


class DiagnosticLog:
    """Ordered collection of advisories for one run."""

    def __init__(self) -> None:
        self._entries: list[Diagnostic] = []

    def add(
        self,
        code: DiagnosticCode,
        message: str,
        severity: Severity = Severity.WARNING,
        **context: Any,
    ) -> Diagnostic:
        """Record an advisory and log it."""
        diagnostic = Diagnostic(code=code, message=message, severity=severity, context=context)
        self.append(diagnostic)
        return diagnostic

    def append(self, diagnostic: Diagnostic) -> None:
        self._entries.append(diagnostic)
        log = logger.warning if diagnostic.severity == Severity.WARNING else logger.info
        log(diagnostic.code.value, message=diagnostic.message, **diagnostic.context)

    def extend(self, diagnostics: "list[Diagnostic] | tuple[Diagnostic, ...]") -> None:
        for diagnostic in diagnostics:
            self.append(diagnostic)

    def codes(self) -> list[DiagnosticCode]:
        return [entry.code for entry in self._entries]

    def by_code(self, code: DiagnosticCode) -> list[Diagnostic]:
        return [entry for entry in self._entries if entry.code == code]

    @property
    def entries(self) -> list[Diagnostic]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))
