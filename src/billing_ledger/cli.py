"""Command line entry point: ``billing-ledger <command>``."""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import structlog

from billing_ledger.cache import LookupCache
from billing_ledger.clients.stripe_api import StripeAPIClient, StripeAPIError
from billing_ledger.config import (
    LedgerConfig,
    bind_run_context,
    configure_logging,
    get_settings,
    load_ledger_config,
)
from billing_ledger.customers import fill_account_numbers, plan_account_numbers, validate_customers
from billing_ledger.diagnostics import DiagnosticLog
from billing_ledger.errors import LedgerError
from billing_ledger.export.datev import (
    ENCODING,
    check_single_year,
    export_file_name,
    group_by_month,
    print_accounts,
    write_records,
)
from billing_ledger.export.reports import (
    invoice_overview_rows,
    monthly_recognition_rows,
    open_invoices,
    write_csv,
)
from billing_ledger.models import AccountingRecord
from billing_ledger.money import money_sum
from billing_ledger.periods import PeriodExtractor
from billing_ledger.pipeline import LedgerPipeline, PipelineResult, RecordKind
from billing_ledger.retrieval import BatchFetcher, SourceBatch, month_window
from billing_ledger.sources import Customer, Invoice

logger = structlog.get_logger(__name__)

# Streams split into one file per booking month
MONTHLY_KINDS = (RecordKind.REVENUE, RecordKind.CHARGES)
LABELS = {
    RecordKind.REVENUE: "Stripe Revenue",
    RecordKind.CHARGES: "Stripe Charges/Fees",
    RecordKind.TRANSFERS: "Stripe Transfers",
    RecordKind.PAYOUTS: "Stripe Payouts",
    RecordKind.CONTRIBUTIONS: "Stripe Contributions",
}


@dataclass(frozen=True)
class ExportFile:
    name: str
    label: str
    records: list[AccountingRecord]


def output_dir() -> Path:
    """Output root; test-mode keys write below ``test/``."""
    settings = get_settings()
    root = Path(settings.output_dir)
    return root / "test" if settings.is_test_mode else root


def plan_exports(result: PipelineResult, batch_month: str, config: LedgerConfig) -> list[ExportFile]:
    """DATEV files for a pipeline result, validated before anything is written."""
    files: list[ExportFile] = []
    for kind in RecordKind:
        records = result.records(kind)
        if not records:
            continue
        if kind in MONTHLY_KINDS:
            for month, month_records in group_by_month(records, config).items():
                files.append(
                    ExportFile(
                        name=export_file_name(month, kind.value, batch_month),
                        label=f"{LABELS[kind]} {month} from {batch_month}",
                        records=month_records,
                    )
                )
        else:
            files.append(
                ExportFile(
                    name=export_file_name(batch_month, kind.value),
                    label=f"{LABELS[kind]} {batch_month}",
                    records=records,
                )
            )

    for export in files:
        check_single_year(export.records, config)
    return files


def write_outputs(
    batch: SourceBatch,
    result: PipelineResult,
    cache: LookupCache,
    config: LedgerConfig,
    out_dir: Path,
    period_label: str,
) -> None:
    files = plan_exports(result, batch.month_key, config)

    invoice_ids = {invoice.id for invoice in batch.invoices}
    invoice_items = [item for item in result.revenue_items if item.id in invoice_ids]
    write_csv(
        out_dir / "overview" / f"overview-{period_label}.csv",
        invoice_overview_rows(invoice_items, cache),
    )
    write_csv(
        out_dir / "monthly_recognition" / f"monthly_recognition-{period_label}.csv",
        monthly_recognition_rows(result.revenue_items, cache),
    )

    for export in files:
        write_records(out_dir / "datev" / export.name, export.records, config, label=export.label)


# === Commands ===


async def download(year: int, month: int | None, config: LedgerConfig) -> None:
    """Retrieve a month (or a year) and write DATEV files and reports."""
    settings = get_settings()
    start, end = month_window(year, month, config.timezone)
    period_label = f"{year:04d}-{month:02d}" if month else f"{year:04d}"

    cache = LookupCache()
    diagnostics = DiagnosticLog()

    async with StripeAPIClient() as client:
        batch = await BatchFetcher(client, config, cache, diagnostics).fetch(start, end)

    pipeline = LedgerPipeline(
        config,
        cache,
        diagnostics,
        extractor=PeriodExtractor(min_year=settings.period_min_year),
    )
    result = pipeline.run(batch)
    write_outputs(batch, result, cache, config, output_dir(), period_label)

    logger.info("download_completed", period=period_label, advisories=len(diagnostics))


async def _list_customers(client: StripeAPIClient) -> list[Customer]:
    return [Customer.from_dict(data) for data in await client.list_customers()]


async def validate(config: LedgerConfig) -> None:
    diagnostics = DiagnosticLog()
    async with StripeAPIClient() as client:
        customers = await _list_customers(client)
    count = validate_customers(customers, config.accounts, diagnostics)
    print(f"Validated {count} customers, {len(diagnostics)} advisories")


async def list_accounts(config: LedgerConfig, path: str | None) -> None:
    async with StripeAPIClient() as client:
        customers = await _list_customers(client)

    if path is None:
        print_accounts(sys.stdout, customers, config)
        return
    with open(path, "w", encoding=ENCODING, errors="replace", newline="") as fp:
        count = print_accounts(fp, customers, config)
    logger.info("accounts_written", path=path, count=count)


async def fill_numbers() -> None:
    async with StripeAPIClient() as client:
        plan = plan_account_numbers(await _list_customers(client))
        count = await fill_account_numbers(client, plan)
    print(f"Assigned {count} account numbers")


async def opos(config: LedgerConfig, day: tuple[int, int, int] | None) -> None:
    """Print invoices unpaid at the end of ``day`` (default: open invoices now)."""
    if day is not None:
        year, month, dom = day
        reference = datetime(year, month, dom, tzinfo=config.timezone) + timedelta(
            days=1, seconds=-1
        )
        status = None
    else:
        reference = datetime.now(config.timezone)
        status = "open"

    print(f"Unpaid invoices as of {reference.isoformat()}")
    async with StripeAPIClient() as client:
        raw = await client.list_invoices(
            reference - timedelta(days=365), reference + timedelta(seconds=1), status=status
        )

    items = open_invoices((Invoice.from_dict(data) for data in raw), reference)
    for item in items:
        print(item.format())
    total = money_sum(item.total for item in items)
    print(f"TOTAL         {total:>10.2f} EUR")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="billing-ledger",
        description="Stripe revenue recognition and DATEV export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s download 2021 5        # Export May 2021
  %(prog)s download 2021          # Export the whole year
  %(prog)s list-accounts out.csv  # Debtor master data
  %(prog)s opos 2021 12 31        # Unpaid invoices at year end
        """,
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Ledger YAML configuration (default: LEDGER_CONFIG_PATH)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    download_cmd = commands.add_parser("download", help="Export a month or a year")
    download_cmd.add_argument("year", type=int)
    download_cmd.add_argument("month", type=int, nargs="?", default=None)

    commands.add_parser("validate-customers", help="Check customer master data")

    accounts_cmd = commands.add_parser("list-accounts", help="Export debtor accounts")
    accounts_cmd.add_argument("file", nargs="?", default=None)

    opos_cmd = commands.add_parser("opos", help="List unpaid invoices")
    opos_cmd.add_argument("date", type=int, nargs="*", metavar="YEAR MONTH DAY")

    commands.add_parser("fill-account-numbers", help="Number new customers")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    bind_run_context(
        args.command,
        year=getattr(args, "year", None),
        month=getattr(args, "month", None),
    )

    if args.command == "opos" and len(args.date) not in (0, 3):
        print("opos expects YEAR MONTH DAY", file=sys.stderr)
        return 2

    try:
        config = load_ledger_config(args.config or get_settings().ledger_config_path)
        if args.command == "download":
            asyncio.run(download(args.year, args.month, config))
        elif args.command == "validate-customers":
            asyncio.run(validate(config))
        elif args.command == "list-accounts":
            asyncio.run(list_accounts(config, args.file))
        elif args.command == "opos":
            asyncio.run(opos(config, tuple(args.date) if args.date else None))
        elif args.command == "fill-account-numbers":
            asyncio.run(fill_numbers())
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130
    except (LedgerError, StripeAPIError, ValueError) as e:
        logger.exception("command_failed", command=args.command, error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
