"""Tests for the DATEV EXTF writer."""

import io
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from billing_ledger.errors import MultiYearBatch
from billing_ledger.export.datev import (
    ACCOUNT_FIELDS,
    BOOKING_FIELDS,
    ENCODING,
    check_single_year,
    export_file_name,
    group_by_month,
    print_accounts,
    print_records,
    write_records,
)
from billing_ledger.models import AccountingRecord, DebitCredit
from billing_ledger.sources import Customer

from factories import berlin, customer_dict

NOW = berlin(2021, 6, 2, 9, 30)


def record(date, amount="119.00", memo="Invoice INV-0001", **kwargs):
    return AccountingRecord(
        date=date,
        amount=Decimal(amount),
        debit_credit=kwargs.pop("debit_credit", DebitCredit.DEBIT),
        account=kwargs.pop("account", "10000"),
        counter_account=kwargs.pop("counter_account", "4400"),
        memo=memo,
        tax_key=kwargs.pop("tax_key", "9"),
        document_ref=kwargs.pop("document_ref", "INV-0001"),
        **kwargs,
    )


class TestBookingBatch:
    """Tests for booking batch output."""

    def test_header_and_columns(self, config):
        """Test the EXTF header and column line."""
        stream = io.StringIO()
        print_records(stream, [record(berlin(2021, 5, 10))], config, label="Stripe Revenue", now=NOW)

        header, columns, row = stream.getvalue().splitlines()
        fields = header.split(";")
        assert fields[:4] == ['"EXTF"', "700", "21", "Buchungsstapel"]
        assert fields[5] == "20210602093000000"
        assert fields[10:14] == ["1001", "2002", "20210101", "4"]
        assert fields[14:16] == ["20210510", "20210510"]
        assert fields[16] == '"Stripe Revenue"'
        assert fields[-1] == '"EUR"'
        assert columns.split(";") == BOOKING_FIELDS

    def test_booking_row(self, config):
        """Test amounts with decimal comma, date as ddmm and quoted memo."""
        stream = io.StringIO()
        print_records(
            stream,
            [record(berlin(2021, 5, 7, 23, 30), amount="1234.5", eu_vat_id="FR123")],
            config,
            now=NOW,
        )

        row = stream.getvalue().splitlines()[2].split(";")
        assert len(row) == len(BOOKING_FIELDS)
        assert row[0] == "1234,50"
        assert row[1] == "S"
        assert row[2] == "EUR"
        assert row[6:10] == ["10000", "4400", "9", "0705"]
        assert row[10] == "INV-0001"
        assert row[13] == '"Invoice INV-0001"'
        assert row[BOOKING_FIELDS.index("EU-Land u. UStID")] == "FR123"

    def test_memo_quotes_escaped(self, config):
        stream = io.StringIO()
        print_records(stream, [record(berlin(2021, 5, 7), memo='Plan "Pro"')], config, now=NOW)

        assert '"Plan ""Pro"""' in stream.getvalue()

    def test_multi_year_batch_rejected(self, config):
        """Test that a batch spanning two years cannot be written."""
        records = [record(berlin(2021, 12, 31, 23)), record(berlin(2022, 1, 1, 0, 30))]

        with pytest.raises(MultiYearBatch) as exc_info:
            check_single_year(records, config)

        assert exc_info.value.years == ["2021", "2022"]
        assert "May not export records from multiple years" in str(exc_info.value)

    def test_year_uses_accounting_timezone(self, config):
        """Test that 23:30 UTC on Dec 31 belongs to the next year in Berlin."""
        records = [
            record(berlin(2022, 1, 3)),
            record(datetime(2021, 12, 31, 23, 30, tzinfo=UTC)),
        ]

        check_single_year(records, config)


class TestWriteRecords:
    """Tests for writing DATEV files."""

    def test_writes_latin1(self, tmp_path, config):
        path = tmp_path / "datev" / "EXTF_2021-05_Revenue.csv"

        count = write_records(path, [record(berlin(2021, 5, 10), memo="Zürich Workshop")], config, now=NOW)

        assert count == 1
        content = path.read_bytes()
        assert b"Z\xfcrich" in content
        assert content.decode(ENCODING).startswith('"EXTF";700;21;Buchungsstapel')

    def test_empty_record_set_writes_nothing(self, tmp_path, config):
        path = tmp_path / "EXTF_2021-05_Revenue.csv"

        assert write_records(path, [], config) == 0
        assert not path.exists()

    def test_multi_year_not_written(self, tmp_path, config):
        path = tmp_path / "out.csv"

        with pytest.raises(MultiYearBatch):
            write_records(path, [record(berlin(2021, 12, 1)), record(berlin(2022, 1, 1))], config)

        assert not path.exists()


class TestFileLayout:
    """Tests for month grouping and file names."""

    def test_group_by_month_sorted(self, config):
        records = [record(berlin(2021, 6, 1)), record(berlin(2021, 5, 31)), record(berlin(2021, 6, 2))]

        months = group_by_month(records, config)

        assert list(months) == ["2021-05", "2021-06"]
        assert len(months["2021-06"]) == 2

    @pytest.mark.parametrize(
        "month,batch_month,expected",
        [
            ("2021-05", None, "EXTF_2021-05_Revenue.csv"),
            ("2021-05", "2021-05", "EXTF_2021-05_Revenue.csv"),
            ("2021-06", "2021-05", "EXTF_2021-06_Revenue_From_2021-05.csv"),
        ],
    )
    def test_export_file_name(self, month, batch_month, expected):
        assert export_file_name(month, "Revenue", batch_month) == expected


class TestAccounts:
    """Tests for debtor master data export."""

    def test_account_rows(self, config):
        """Test account number, name, VAT id and address columns."""
        numbered = Customer.from_dict(
            customer_dict(
                id="cus_fr",
                country="FR",
                vat_id="FR12345678901",
                metadata={"accountNumber": "10100"},
                description="Acme SARL",
            )
        )
        plain = Customer.from_dict(customer_dict())
        stream = io.StringIO()

        count = print_accounts(stream, [numbered, plain], config, now=NOW)

        header, columns, first, second = stream.getvalue().splitlines()
        assert count == 2
        assert header.split(";")[2:4] == ["16", "Debitoren/Kreditoren"]
        assert columns.split(";") == ACCOUNT_FIELDS
        first = first.split(";")
        assert first[ACCOUNT_FIELDS.index("Konto")] == "10100"
        assert first[ACCOUNT_FIELDS.index("Name (Adressattyp Unternehmen)")] == "Acme SARL"
        assert first[ACCOUNT_FIELDS.index("EU-Land")] == "FR"
        assert first[ACCOUNT_FIELDS.index("EU-UStID")] == "12345678901"
        assert first[ACCOUNT_FIELDS.index("Land")] == "FR"
        assert second.split(";")[0] == "10000"
