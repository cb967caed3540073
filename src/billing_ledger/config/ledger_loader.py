"""Utilities for loading the chart of accounts and company setup from YAML."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml  # type: ignore[import-untyped]

EXAMPLE_CONFIG_PATH = Path(__file__).resolve().parent / "ledger.example.yaml"

REQUIRED_ACCOUNT_ROLES = (
    "bank",
    "fees",
    "revenue_reverse_charge_eu",
    "revenue_reverse_charge_world",
    "revenue_german_vat",
    "collective_debtor",
    "transit",
    "contributions",
    "external_services",
    "tax_key_germany",
    "tax_key_reverse_charge",
)


@dataclass(frozen=True)
class ChartOfAccounts:
    """Account numbers per posting role.

    ``prepaid_clearing`` is optional; an empty value disables deferred
    revenue postings.
    """

    bank: str
    fees: str
    revenue_reverse_charge_eu: str
    revenue_reverse_charge_world: str
    revenue_german_vat: str
    collective_debtor: str
    transit: str
    contributions: str
    external_services: str
    tax_key_germany: str
    tax_key_reverse_charge: str
    prepaid_clearing: str = ""

    @property
    def has_prepaid_clearing(self) -> bool:
        return bool(self.prepaid_clearing)


@dataclass(frozen=True)
class DatevSettings:
    """Identifiers written into the DATEV export header."""

    consultant_number: str
    client_number: str
    account_length: int = 4


@dataclass(frozen=True)
class LedgerConfig:
    """Company-level ledger configuration."""

    timezone: ZoneInfo
    currency: str
    datev: DatevSettings
    accounts: ChartOfAccounts


def _account_value(name: str, role: str, value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"{name}: accounts.{role} must be a number or string")
    return str(value).strip()


def parse_ledger_config(data: dict[str, Any], name: str = "<config>") -> LedgerConfig:
    """Validate a parsed YAML mapping and build a LedgerConfig."""
    if not isinstance(data, dict):
        raise ValueError(f"{name}: top level must be a mapping")

    company = data.get("company") or {}
    if not isinstance(company, dict):
        raise ValueError(f"{name}: company must be a mapping")

    tz_name = company.get("timezone")
    if not tz_name or not isinstance(tz_name, str):
        raise ValueError(f"{name}: company.timezone is required")
    try:
        timezone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"{name}: unknown timezone {tz_name!r}") from exc

    currency = str(company.get("currency", "EUR")).upper()
    if len(currency) != 3:
        raise ValueError(f"{name}: company.currency must be an ISO code")

    datev = data.get("datev")
    if not isinstance(datev, dict):
        raise ValueError(f"{name}: datev must be a mapping")
    for key in ("consultant_number", "client_number"):
        if datev.get(key) is None:
            raise ValueError(f"{name}: datev.{key} is required")
    account_length = datev.get("account_length", 4)
    if not isinstance(account_length, int) or not (4 <= account_length <= 8):
        raise ValueError(f"{name}: datev.account_length must be 4-8")

    accounts = data.get("accounts")
    if not isinstance(accounts, dict):
        raise ValueError(f"{name}: accounts must be a mapping")

    missing = [role for role in REQUIRED_ACCOUNT_ROLES if accounts.get(role) is None]
    if missing:
        raise ValueError(f"{name}: accounts missing roles {', '.join(missing)}")

    roles = {
        role: _account_value(name, role, accounts[role])
        for role in REQUIRED_ACCOUNT_ROLES
    }
    prepaid = accounts.get("prepaid_clearing")
    roles["prepaid_clearing"] = (
        "" if prepaid is None else _account_value(name, "prepaid_clearing", prepaid)
    )

    return LedgerConfig(
        timezone=timezone,
        currency=currency,
        datev=DatevSettings(
            consultant_number=str(datev["consultant_number"]),
            client_number=str(datev["client_number"]),
            account_length=account_length,
        ),
        accounts=ChartOfAccounts(**roles),
    )


@lru_cache
def load_ledger_config(path: str | Path = EXAMPLE_CONFIG_PATH) -> LedgerConfig:
    """Load the ledger configuration from a YAML file.

    Returns:
        Parsed and validated configuration.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ValueError(f"Ledger config not found: {config_path}")

    raw = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    return parse_ledger_config(data, name=config_path.name)
