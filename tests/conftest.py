"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("STRIPE_API_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_API_URL", "http://stripe.test")
os.environ.setdefault("STRIPE_MAX_RETRIES", "0")

from billing_ledger.cache import LookupCache  # noqa: E402
from billing_ledger.config.ledger_loader import LedgerConfig, parse_ledger_config  # noqa: E402
from billing_ledger.diagnostics import DiagnosticLog  # noqa: E402
from billing_ledger.periods import PeriodExtractor  # noqa: E402
from billing_ledger.revenue import RevenueItemBuilder  # noqa: E402

from factories import (  # noqa: E402
    LEDGER_CONFIG_DATA,
    charge_dict,
    customer_dict,
    invoice_dict,
    line_dict,
)


@pytest.fixture
def config() -> LedgerConfig:
    """Ledger configuration with a prepaid clearing account."""
    return parse_ledger_config(LEDGER_CONFIG_DATA, name="test")


@pytest.fixture
def accounts(config):
    return config.accounts


@pytest.fixture
def cache() -> LookupCache:
    return LookupCache()


@pytest.fixture
def diagnostics() -> DiagnosticLog:
    return DiagnosticLog()


@pytest.fixture
def extractor() -> PeriodExtractor:
    return PeriodExtractor(min_year=2020, max_year=2030)


@pytest.fixture
def builder(config, cache, diagnostics, extractor) -> RevenueItemBuilder:
    return RevenueItemBuilder(config, cache, diagnostics, extractor)


@pytest.fixture
def make_customer() -> Callable[..., dict[str, Any]]:
    return customer_dict


@pytest.fixture
def make_invoice() -> Callable[..., dict[str, Any]]:
    return invoice_dict


@pytest.fixture
def make_line() -> Callable[..., dict[str, Any]]:
    return line_dict


@pytest.fixture
def make_charge() -> Callable[..., dict[str, Any]]:
    return charge_dict


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client
