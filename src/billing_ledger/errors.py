"""Fatal error conditions that abort processing of a batch."""

from typing import Any


class LedgerError(Exception):
    """Base exception for conditions the exporter must not book around."""

    def __init__(self, message: str, source_id: str | None = None, details: Any = None):
        super().__init__(message)
        self.source_id = source_id
        self.details = details

    def __str__(self) -> str:
        message = super().__str__()
        if self.source_id:
            return f"{message} (source: {self.source_id})"
        return message


class UnsupportedRefundPattern(LedgerError):
    """Partial refunds, multiple refunds or multiple credit notes."""

    pass


class UnexpectedCurrency(LedgerError):
    """Amount not in the settlement currency."""

    pass


class UnexpectedFeeShape(LedgerError):
    """Fee details where none are expected."""

    pass


class MultiYearBatch(LedgerError):
    """Export batch spans more than one calendar year."""

    def __init__(self, years: list[str]):
        super().__init__(
            f"May not export records from multiple years: {', '.join(years)}",
            details={"years": years},
        )
        self.years = years
