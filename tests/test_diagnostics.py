"""Tests for advisories and the run lookup cache."""

import pytest

from billing_ledger.cache import LookupCache, MissingLookup
from billing_ledger.diagnostics import Diagnostic, DiagnosticCode, DiagnosticLog, Severity
from billing_ledger.sources import Customer

from factories import customer_dict


class TestDiagnosticLog:
    """Tests for DiagnosticLog."""

    def test_add_records_context(self):
        log = DiagnosticLog()

        diagnostic = log.add(DiagnosticCode.MISSING_PERIOD, "No period", source_id="in_1")

        assert len(log) == 1
        assert log.entries == [diagnostic]
        assert diagnostic.severity == Severity.WARNING
        assert diagnostic.to_dict() == {
            "severity": "warning",
            "code": "missing_period",
            "message": "No period",
            "context": {"source_id": "in_1"},
        }

    def test_by_code_keeps_order(self):
        log = DiagnosticLog()
        log.add(DiagnosticCode.LATE_REVERSAL, "a")
        log.add(DiagnosticCode.MISSING_PERIOD, "b", severity=Severity.INFO)
        log.add(DiagnosticCode.LATE_REVERSAL, "c")

        assert [d.message for d in log.by_code(DiagnosticCode.LATE_REVERSAL)] == ["a", "c"]
        assert log.codes() == [
            DiagnosticCode.LATE_REVERSAL,
            DiagnosticCode.MISSING_PERIOD,
            DiagnosticCode.LATE_REVERSAL,
        ]

    def test_with_context(self):
        base = Diagnostic(DiagnosticCode.UNKNOWN_TAX_STATUS, "Unknown", context={"a": 1})

        extended = base.with_context(source_id="ch_1")

        assert extended.context == {"a": 1, "source_id": "ch_1"}
        assert base.context == {"a": 1}

    def test_extend(self):
        log = DiagnosticLog()
        log.extend([Diagnostic(DiagnosticCode.MISSING_PERIOD, "x")] * 2)

        assert len(list(log)) == 2


class TestLookupCache:
    """Tests for LookupCache."""

    def test_first_value_wins(self):
        cache = LookupCache()
        first = Customer.from_dict(customer_dict(id="cus_1", country="DE"))
        second = Customer.from_dict(customer_dict(id="cus_1", country="AT"))

        cache.add_customer(first)
        stored = cache.add_customer(second)

        assert stored is first
        assert cache.customer("cus_1").country == "DE"

    def test_missing_lookup(self):
        """Test that a lookup retrieval never populated fails loudly."""
        cache = LookupCache()

        with pytest.raises(MissingLookup, match="cus_x"):
            cache.customer("cus_x")
        with pytest.raises(KeyError):
            cache.tax_rate("txr_x")

    def test_checkout_session_lookup(self):
        cache = LookupCache()
        cache.checkout_sessions.put("pi_1", None)

        assert cache.checkout_session(None) is None
        assert cache.checkout_session("pi_1") is None
        assert "pi_1" in cache.checkout_sessions
        assert len(cache.checkout_sessions) == 1

    def test_get_or_create_calls_factory_once(self):
        cache = LookupCache()
        calls = []

        def factory():
            calls.append(1)
            return "value"

        assert cache.customers.get_or_create("k", factory) == "value"
        assert cache.customers.get_or_create("k", factory) == "value"
        assert calls == [1]
