"""Tests for the ledger YAML configuration loader."""

import copy
from zoneinfo import ZoneInfo

import pytest

from billing_ledger.config.ledger_loader import (
    EXAMPLE_CONFIG_PATH,
    load_ledger_config,
    parse_ledger_config,
)

from factories import LEDGER_CONFIG_DATA


def config_data(**overrides):
    data = copy.deepcopy(LEDGER_CONFIG_DATA)
    for section, values in overrides.items():
        data[section].update(values)
    return data


class TestLoadLedgerConfig:
    """Tests for loading configuration files."""

    def test_example_config_loads(self):
        config = load_ledger_config(EXAMPLE_CONFIG_PATH)

        assert config.timezone == ZoneInfo("Europe/Berlin")
        assert config.currency == "EUR"
        assert config.datev.consultant_number == "1234567"
        assert config.accounts.revenue_german_vat == "4400"
        assert config.accounts.tax_key_reverse_charge == ""
        assert config.accounts.has_prepaid_clearing is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_ledger_config(tmp_path / "ledger.yaml")

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(
            "company:\n  timezone: Europe/Vienna\n"
            "datev:\n  consultant_number: 1\n  client_number: 2\n  account_length: 5\n"
            "accounts:\n"
            + "".join(
                f"  {role}: {value!r}\n"
                for role, value in LEDGER_CONFIG_DATA["accounts"].items()
                if role != "prepaid_clearing"
            ),
            encoding="utf-8",
        )

        config = load_ledger_config(path)

        assert config.timezone == ZoneInfo("Europe/Vienna")
        assert config.datev.account_length == 5
        assert config.accounts.prepaid_clearing == ""
        assert config.accounts.has_prepaid_clearing is False


class TestParseLedgerConfig:
    """Tests for configuration validation."""

    def test_accounts_stringified(self, config):
        assert config.accounts.bank == "1201"
        assert config.accounts.tax_key_germany == "9"
        assert config.datev.account_length == 4

    def test_unknown_timezone(self):
        with pytest.raises(ValueError, match="timezone"):
            parse_ledger_config(config_data(company={"timezone": "Mars/Olympus"}))

    def test_missing_role(self):
        data = config_data()
        del data["accounts"]["transit"]

        with pytest.raises(ValueError, match="transit"):
            parse_ledger_config(data)

    def test_invalid_account_value(self):
        with pytest.raises(ValueError, match="bank"):
            parse_ledger_config(config_data(accounts={"bank": [1201]}))

    @pytest.mark.parametrize("length", [3, 9, "4"])
    def test_account_length_range(self, length):
        with pytest.raises(ValueError, match="account_length"):
            parse_ledger_config(config_data(datev={"account_length": length}))

    def test_missing_datev_number(self):
        data = config_data()
        del data["datev"]["client_number"]

        with pytest.raises(ValueError, match="client_number"):
            parse_ledger_config(data)

    def test_top_level_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_ledger_config(["not", "a", "mapping"])
