"""Tests for the engine tracer decorator (pricing_engines/tracer.py)."""

from decimal import Decimal

import pytest

from pricing_engines.aggregation import aggregate_allocations
from pricing_engines.tracer import compute_input_fingerprint, traced_engine
from pricing_kernel.domain.calculation import AllocationLine, CalculationContext


def _traces(logs):
    return [r for r in logs if r.get("trace_type") == "PRICING_ENGINE_TRACE"]


class TestFingerprint:

    def test_deterministic(self):
        kwargs = {"params": {"b": 2, "a": 1}, "lines": [1, 2]}

        first = compute_input_fingerprint(("params", "lines"), kwargs)
        second = compute_input_fingerprint(("params", "lines"), dict(reversed(kwargs.items())))

        assert first == second
        assert len(first) == 16

    def test_dict_key_order_irrelevant(self):
        a = compute_input_fingerprint(("p",), {"p": {"x": 1, "y": 2}})
        b = compute_input_fingerprint(("p",), {"p": {"y": 2, "x": 1}})
        assert a == b

    def test_different_inputs_differ(self):
        a = compute_input_fingerprint(("p",), {"p": Decimal("1")})
        b = compute_input_fingerprint(("p",), {"p": Decimal("2")})
        assert a != b

    def test_missing_field_is_null(self):
        a = compute_input_fingerprint(("p",), {})
        b = compute_input_fingerprint(("p",), {"p": None})
        assert a == b


class TestTracedEngine:

    def test_emits_trace_record(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("value",))
        def double(*, value):
            return value * 2

        assert double(value=21) == 42

        (trace,) = _traces(captured_logs())
        assert trace["engine_name"] == "demo"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(
            ("value",), {"value": 21},
        )
        assert trace["duration_ms"] >= 0

    def test_no_fingerprint_fields(self, captured_logs):
        @traced_engine("bare", "1.0")
        def noop():
            return None

        noop()

        (trace,) = _traces(captured_logs())
        assert trace["input_fingerprint"] == ""

    def test_exception_propagates_without_trace(self, captured_logs):
        @traced_engine("failing", "1.0")
        def boom():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            boom()

        assert _traces(captured_logs()) == []

    def test_aggregation_is_traced(self, captured_logs):
        lines = [AllocationLine("HCC", "Senior", "HCC", 2025, 1, Decimal("1"))]

        aggregate_allocations(lines=lines, context=CalculationContext())

        traces = _traces(captured_logs())
        assert [t["engine_name"] for t in traces] == ["allocation_aggregation"]

    def test_preserves_function_metadata(self):
        @traced_engine("meta", "1.0")
        def documented():
            """Docstring survives."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring survives."
