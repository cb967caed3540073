"""DATEV EXTF writer for booking batches and debtor master data.

Files are ``;`` separated and latin-1 encoded. The first line is the EXTF
header, the second the column names, followed by one line per record.
Booking batches are year-scoped: a record set spanning several calendar
years is rejected.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import TextIO

import structlog

from billing_ledger.config.ledger_loader import LedgerConfig
from billing_ledger.errors import MultiYearBatch
from billing_ledger.models import AccountingRecord
from billing_ledger.money import format_decimal
from billing_ledger.sources import Customer

logger = structlog.get_logger(__name__)

ENCODING = "latin-1"
SEPARATOR = ";"
FORMAT_VERSION = "700"
CATEGORY_BOOKINGS = ("21", "Buchungsstapel")
CATEGORY_ACCOUNTS = ("16", "Debitoren/Kreditoren")
MEMO_LENGTH = 60


def _numbered(*names: str, count: int) -> list[str]:
    return [name.format(n=n) for n in range(1, count + 1) for name in names]


def _bank_block(first: int, last: int) -> list[str]:
    fields: list[str] = []
    for n in range(first, last + 1):
        fields += [
            f"Bankleitzahl {n}",
            f"Bankbezeichnung {n}",
            f"Bank-Kontonummer {n}",
            f"Länderkennzeichen {n}",
            f"IBAN-Nr. {n}",
            "Leerfeld",
            f"SWIFT-Code {n}",
            f"Abw. Kontoinhaber {n}",
            f"Kennz. Hauptbankverb. {n}",
            f"Bankverb {n} Gültig von",
            f"Bankverb {n} Gültig bis",
        ]
    return fields


BOOKING_FIELDS = [
    "Umsatz (ohne Soll/Haben-Kz)",
    "Soll/Haben-Kennzeichen",
    "WKZ Umsatz",
    "Kurs",
    "Basis-Umsatz",
    "WKZ Basis-Umsatz",
    "Konto",
    "Gegenkonto (ohne BU-Schlüssel)",
    "BU-Schlüssel",
    "Belegdatum",
    "Belegfeld 1",
    "Belegfeld 2",
    "Skonto",
    "Buchungstext",
    "Postensperre",
    "Diverse Adressnummer",
    "Geschäftspartnerbank",
    "Sachverhalt",
    "Zinssperre",
    "Beleglink",
    *_numbered("Beleginfo - Art {n}", "Beleginfo - Inhalt {n}", count=8),
    "KOST1 - Kostenstelle",
    "KOST2 - Kostenstelle",
    "Kost-Menge",
    "EU-Land u. UStID",
    "EU-Steuersatz",
    "Abw. Versteuerungsart",
    "Sachverhalt L+L",
    "Funktionsergänzung L+L",
    "BU 49 Hauptfunktionstyp",
    "BU 49 Hauptfunktionsnummer",
    "BU 49 Funktionsergänzung",
    *_numbered("Zusatzinformation - Art {n}", "Zusatzinformation- Inhalt {n}", count=20),
    "Stück",
    "Gewicht",
    "Zahlweise",
    "Forderungsart",
    "Veranlagungsjahr",
    "Zugeordnete Fälligkeit",
    "Skontotyp",
    "Auftragsnummer",
    "Buchungstyp",
    "USt-Schlüssel (Anzahlungen)",
    "EU-Land (Anzahlungen)",
    "Sachverhalt L+L (Anzahlungen)",
    "EU-Steuersatz (Anzahlungen)",
    "Erlöskonto (Anzahlungen)",
    "Herkunft-Kz",
    "Buchungs GUID",
    "KOST-Datum",
    "SEPA-Mandatsreferenz",
    "Skontosperre",
    "Gesellschaftername",
    "Beteiligtennummer",
    "Identifikationsnummer",
    "Zeichnernummer",
    "Postensperre bis",
    "Bezeichnung SoBil-Sachverhalt",
    "Kennzeichen SoBil-Buchung",
    "Festschreibung",
    "Leistungsdatum",
    "Datum Zuord. Steuerperiode",
    "Fälligkeit",
    "Generalumkehr (GU)",
    "Steuersatz",
    "Land",
    "",
]

ACCOUNT_FIELDS = [
    "Konto",
    "Name (Adressattyp Unternehmen)",
    "Unternehmensgegenstand",
    "Name (Adressattyp natürl. Person)",
    "Vorname (Adressattyp natürl. Person)",
    "Name (Adressattyp keine Angabe)",
    "Adressattyp",
    "Kurzbezeichnung",
    "EU-Land",
    "EU-UStID",
    "Anrede",
    "Titel/Akad. Grad",
    "Adelstitel",
    "Namensvorsatz",
    "Adressart",
    "Straße",
    "Postfach",
    "Postleitzahl",
    "Ort",
    "Land",
    "Versandzusatz",
    "Adresszusatz",
    "Abweichende Anrede",
    "Abw. Zustellbezeichnung 1",
    "Abw. Zustellbezeichnung 2",
    "Kennz. Korrespondenzadresse",
    "Adresse Gültig von",
    "Adresse Gültig bis",
    "Telefon",
    "Bemerkung (Telefon)",
    "Telefon GL",
    "Bemerkung (Telefon GL)",
    "E-Mail",
    "Bemerkung (E-Mail)",
    "Internet",
    "Bemerkung (Internet)",
    "Fax",
    "Bemerkung (Fax)",
    "Sonstige",
    "Bemerkung (Sonstige)",
    *_bank_block(1, 5),
    "Leerfeld",
    "Briefanrede",
    "Grußformel",
    "Kunden-/Lief.-Nr.",
    "Steuernummer",
    "Sprache",
    "Ansprechpartner",
    "Vertreter",
    "Sachbearbeiter",
    "Diverse-Konto",
    "Ausgabeziel",
    "Währungssteuerung",
    "Kreditlimit (Debitor)",
    "Zahlungsbedingung",
    "Fälligkeit in Tagen (Debitor)",
    "Skonto in Prozent (Debitor)",
    "Kreditoren-Ziel 1 Tg.",
    "Kreditoren-Skonto 1 %",
    "Kreditoren-Ziel 2 Tg.",
    "Kreditoren-Skonto 2 %",
    "Kreditoren-Ziel 3 Brutto Tg.",
    "Kreditoren-Ziel 4 Tg.",
    "Kreditoren-Skonto 4 %",
    "Kreditoren-Ziel 5 Tg.",
    "Kreditoren-Skonto 5 %",
    "Mahnung",
    "Kontoauszug",
    "Mahntext 1",
    "Mahntext 2",
    "Mahntext 3",
    "Kontoauszugstext",
    "Mahnlimit Betrag",
    "Mahnlimit %",
    "Zinsberechnung",
    "Mahnzinssatz 1",
    "Mahnzinssatz 2",
    "Mahnzinssatz 3",
    "Lastschrift",
    "Leerfeld",
    "Mandantenbank",
    "Zahlungsträger",
    *_numbered("Indiv. Feld {n}", count=15),
    "Abweichende Anrede (Rechnungsadresse)",
    "Adressart (Rechnungsadresse)",
    "Straße (Rechnungsadresse)",
    "Postfach (Rechnungsadresse)",
    "Postleitzahl (Rechnungsadresse)",
    "Ort (Rechnungsadresse)",
    "Land (Rechnungsadresse)",
    "Versandzusatz (Rechnungsadresse)",
    "Adresszusatz (Rechnungsadresse)",
    "Abw. Zustellbezeichnung 1 (Rechnungsadresse)",
    "Abw. Zustellbezeichnung 2 (Rechnungsadresse)",
    "Adresse Gültig von (Rechnungsadresse)",
    "Adresse Gültig bis (Rechnungsadresse)",
    *_bank_block(6, 10),
    "Nummer Fremdsystem",
    "Insolvent",
    *_numbered("SEPA-Mandatsreferenz {n}", count=10),
    "Verknüpftes OPOS-Konto",
    "Mahnsperre bis",
    "Lastschriftsperre bis",
    "Zahlungssperre bis",
    "Gebührenberechnung",
    "Mahngebühr 1",
    "Mahngebühr 2",
    "Mahngebühr 3",
    "Pauschalenberechnung",
    "Verzugspauschale 1",
    "Verzugspauschale 2",
    "Verzugspauschale 3",
    "Alternativer Suchname",
    "Status",
    "Anschrift manuell geändert (Korrespondenzadresse)",
    "Anschrift individuell (Korrespondenzadresse)",
    "Anschrift manuell geändert (Rechnungsadresse)",
    "Anschrift individuell (Rechnungsadresse)",
    "Fristberechnung bei Debitor",
    "Mahnfrist 1",
    "Mahnfrist 2",
    "Mahnfrist 3",
    "Letzte Frist",
]


def quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def _header(
    config: LedgerConfig,
    category: tuple[str, str],
    created: datetime,
    fiscal_year: int,
    first: datetime | None = None,
    last: datetime | None = None,
    label: str | None = None,
    booking_type: str = "1",
) -> list[str]:
    return [
        quote("EXTF"),  # EXTF: produced by a third-party program
        FORMAT_VERSION,
        category[0],
        category[1],
        "5",  # format version of the category
        created.strftime("%Y%m%d%H%M%S") + "000",
        "",  # imported at
        "BH",  # origin
        "",  # exported by
        "",  # imported by
        config.datev.consultant_number,
        config.datev.client_number,
        f"{fiscal_year}0101",
        str(config.datev.account_length),
        first.strftime("%Y%m%d") if first else "",
        last.strftime("%Y%m%d") if last else "",
        quote(label) if label else "",
        "",  # dictation code
        booking_type,
        "0",  # accounting purpose
        "0",  # locked
        quote(config.currency),
    ]


def record_years(records: Iterable[AccountingRecord], config: LedgerConfig) -> list[str]:
    return sorted({f"{record.date.astimezone(config.timezone):%Y}" for record in records})


def check_single_year(records: list[AccountingRecord], config: LedgerConfig) -> None:
    years = record_years(records, config)
    if len(years) > 1:
        raise MultiYearBatch(years)


def booking_row(record: AccountingRecord, config: LedgerConfig) -> dict[str, str]:
    return {
        "Umsatz (ohne Soll/Haben-Kz)": format_decimal(record.amount),
        "Soll/Haben-Kennzeichen": record.debit_credit.value,
        "WKZ Umsatz": record.currency,
        "Konto": record.account,
        "Gegenkonto (ohne BU-Schlüssel)": record.counter_account,
        "BU-Schlüssel": record.tax_key,
        "Belegdatum": f"{record.date.astimezone(config.timezone):%d%m}",
        "Belegfeld 1": record.document_ref or "",
        "Buchungstext": quote(record.memo[:MEMO_LENGTH]),
        "EU-Land u. UStID": record.eu_vat_id or "",
    }


def print_records(
    stream: TextIO,
    records: list[AccountingRecord],
    config: LedgerConfig,
    label: str | None = None,
    now: datetime | None = None,
) -> None:
    """Write a DATEV booking batch to ``stream``."""
    check_single_year(records, config)

    dates = [record.date.astimezone(config.timezone) for record in records]
    first, last = min(dates), max(dates)
    header = _header(
        config,
        CATEGORY_BOOKINGS,
        created=now or datetime.now(config.timezone),
        fiscal_year=first.year,
        first=first,
        last=last,
        label=label,
    )
    stream.write(SEPARATOR.join(header) + "\n")
    stream.write(SEPARATOR.join(BOOKING_FIELDS) + "\n")
    for record in records:
        row = booking_row(record, config)
        stream.write(SEPARATOR.join(row.get(name, "") for name in BOOKING_FIELDS) + "\n")


def write_records(
    path: str | Path,
    records: list[AccountingRecord],
    config: LedgerConfig,
    label: str | None = None,
    now: datetime | None = None,
) -> int:
    """Write records to a DATEV file; empty record sets write nothing.

    Returns:
        Number of records written.
    """
    if not records:
        return 0

    check_single_year(records, config)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding=ENCODING, errors="replace", newline="") as fp:
        print_records(fp, records, config, label=label, now=now)

    logger.info("datev_records_written", path=str(path), count=len(records))
    return len(records)


def group_by_month(
    records: Iterable[AccountingRecord], config: LedgerConfig
) -> dict[str, list[AccountingRecord]]:
    """Records per ``YYYY-MM`` in the accounting timezone, months ascending."""
    months: dict[str, list[AccountingRecord]] = {}
    for record in records:
        months.setdefault(f"{record.date.astimezone(config.timezone):%Y-%m}", []).append(record)
    return dict(sorted(months.items()))


def export_file_name(month: str, kind: str, batch_month: str | None = None) -> str:
    """``EXTF_<month>_<kind>.csv``, suffixed with the batch month for other months."""
    if batch_month is None or month == batch_month:
        return f"EXTF_{month}_{kind}.csv"
    return f"EXTF_{month}_{kind}_From_{batch_month}.csv"


def account_row(customer: Customer, config: LedgerConfig) -> dict[str, str]:
    vat_id = customer.verified_vat_id
    address = customer.billing_address
    return {
        "Konto": customer.account_number or config.accounts.collective_debtor,
        "Name (Adressattyp Unternehmen)": customer.display_name,
        "Adressattyp": "2",
        "EU-Land": vat_id[:2] if vat_id else "",
        "EU-UStID": vat_id[2:] if vat_id else "",
        "Straße": (address.line1 if address else None) or "",
        "Adresszusatz": (address.line2 if address else None) or "",
        "Postleitzahl": (address.postal_code if address else None) or "",
        "Ort": (address.city if address else None) or "",
        "Land": (address.country if address else None) or "",
        "E-Mail": customer.email or "",
    }


def print_accounts(
    stream: TextIO,
    customers: Iterable[Customer],
    config: LedgerConfig,
    now: datetime | None = None,
) -> int:
    """Write debtor master data for ``customers``; returns the row count."""
    created = now or datetime.now(config.timezone)
    header = _header(
        config,
        CATEGORY_ACCOUNTS,
        created=created,
        fiscal_year=created.year,
        booking_type="0",
    )
    stream.write(SEPARATOR.join(header) + "\n")
    stream.write(SEPARATOR.join(ACCOUNT_FIELDS) + "\n")

    count = 0
    for customer in customers:
        row = account_row(customer, config)
        stream.write(SEPARATOR.join(row.get(name, "") for name in ACCOUNT_FIELDS) + "\n")
        count += 1
    return count
