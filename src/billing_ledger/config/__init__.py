"""Configuration module for the billing ledger exporter."""

from billing_ledger.config.ledger_loader import (
    ChartOfAccounts,
    DatevSettings,
    LedgerConfig,
    load_ledger_config,
    parse_ledger_config,
)
from billing_ledger.config.logging import bind_run_context, configure_logging
from billing_ledger.config.settings import FlatSettings, get_settings

__all__ = [
    "ChartOfAccounts",
    "DatevSettings",
    "FlatSettings",
    "LedgerConfig",
    "bind_run_context",
    "configure_logging",
    "get_settings",
    "load_ledger_config",
    "parse_ledger_config",
]
