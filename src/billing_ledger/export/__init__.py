"""Writers for DATEV files and review reports."""

from billing_ledger.export.datev import (
    export_file_name,
    group_by_month,
    print_accounts,
    print_records,
    write_records,
)
from billing_ledger.export.reports import (
    invoice_overview_rows,
    monthly_recognition_rows,
    open_invoices,
    write_csv,
)

__all__ = [
    "export_file_name",
    "group_by_month",
    "invoice_overview_rows",
    "monthly_recognition_rows",
    "open_invoices",
    "print_accounts",
    "print_records",
    "write_csv",
    "write_records",
]
