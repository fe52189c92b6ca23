"""Tests for structured logging (pricing_kernel/logging_config.py).

Covers:
- JSON line shape and encoding of UUID, Decimal, date and enum values
- LogContext fields for actor, rfq, package and task
- Kernel exception fields flattened into the record
- Engine traces and missing-rate warnings as emitted by the engines
- configure_logging idempotence
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from pricing_engines.scenario import calculate_time_and_material
from pricing_kernel.domain.approval import TaskStatus
from pricing_kernel.domain.calculation import (
    AllocationLine,
    CalculationContext,
    InMemoryRateLookup,
    ScenarioParams,
    ScenarioType,
)
from pricing_kernel.exceptions import TaskAlreadyClaimedError
from pricing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests; restore the suite config after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def stream():
    """Structured output of the pricing_kernel logger at DEBUG."""
    out = StringIO()
    handler = logging.StreamHandler(out)
    configure_logging(handler=handler, level=logging.DEBUG)
    return out


def records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestRecordShape:

    def test_base_fields(self, stream):
        get_logger("services.approval").info("task_claimed")

        (record,) = records(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "task_claimed"
        assert record["logger"] == "pricing_kernel.services.approval"
        assert "ts" in record

    def test_domain_values_encoded(self, stream):
        scenario_id = uuid4()
        get_logger("engines.scenario").info(
            "scenario_priced",
            extra={
                "scenario_id": scenario_id,
                "margin": Decimal("48000.00"),
                "effective_from": date(2025, 1, 1),
                "decision": TaskStatus.APPROVED,
            },
        )

        (record,) = records(stream)
        assert record["scenario_id"] == str(scenario_id)
        assert record["margin"] == "48000.00"
        assert record["effective_from"] == "2025-01-01"
        assert record["decision"] == "APPROVED"

    def test_level_threshold(self):
        out = StringIO()
        configure_logging(handler=logging.StreamHandler(out), level=logging.INFO)
        logger = get_logger("services.rate")
        logger.debug("rate_lookup")
        logger.warning("rate_overlap_rejected")

        assert [r["message"] for r in records(out)] == ["rate_overlap_rejected"]

    def test_claim_conflict_fields(self, stream):
        try:
            raise TaskAlreadyClaimedError("task-1", "user-9")
        except TaskAlreadyClaimedError:
            get_logger("services.approval").warning("claim_failed", exc_info=True)

        (record,) = records(stream)
        assert record["exc_code"] == "TASK_ALREADY_CLAIMED"
        assert record["exc_type"] == "TaskAlreadyClaimedError"
        assert record["exc_task_id"] == "task-1"
        assert record["exc_assigned_to_id"] == "user-9"
        assert "traceback" in record


class TestApprovalContext:

    def test_nested_binds_follow_the_flow(self, stream):
        logger = get_logger("services.approval")
        actor_id, rfq_id, package_id, task_id = uuid4(), uuid4(), uuid4(), uuid4()

        with LogContext.bind(actor_id=actor_id, rfq_id=rfq_id):
            with LogContext.bind(package_id=package_id):
                with LogContext.bind(task_id=task_id):
                    logger.info("task_decided")
                logger.info("package_rejected")
            logger.info("rfq_updated")

        decided, rejected, updated = records(stream)
        assert decided["task_id"] == str(task_id)
        assert decided["package_id"] == str(package_id)
        assert "task_id" not in rejected
        assert rejected["rfq_id"] == str(rfq_id)
        assert "package_id" not in updated
        assert updated["actor_id"] == str(actor_id)

    def test_rebinding_restores_outer_task(self):
        LogContext.set(task_id="tech")
        with LogContext.bind(task_id="overall"):
            assert LogContext.get_all()["task_id"] == "overall"
        assert LogContext.get_all() == {"task_id": "tech"}

    def test_restored_after_failed_decision(self):
        with pytest.raises(TaskAlreadyClaimedError):
            with LogContext.bind(package_id="p", task_id="t"):
                raise TaskAlreadyClaimedError("t")
        assert LogContext.get_all() == {}

    def test_unknown_and_none_fields_ignored(self):
        with LogContext.bind(scenario_id="s", actor_id="a", rfq_id=None):
            assert LogContext.get_all() == {"actor_id": "a"}
        LogContext.set(customer="ACME", rfq_id="r")
        assert LogContext.get_all() == {"rfq_id": "r"}

    def test_no_context_no_fields(self, stream):
        get_logger("services.proposal").info("rfq_created")

        (record,) = records(stream)
        assert not set(LogContext.FIELDS) & set(record)


class TestEngineLogs:

    def test_missing_rate_and_trace(self, stream):
        lines = [AllocationLine("HCC", "Senior", "HCC", 2025, 1, Decimal("1"))]

        with LogContext.bind(rfq_id="rfq-7"):
            calculate_time_and_material(
                lines=lines,
                params=ScenarioParams(ScenarioType.TM, "UC1"),
                rates=InMemoryRateLookup(),
                context=CalculationContext(),
            )

        logs = records(stream)
        missing = [r for r in logs if r["message"] == "rate_missing"]
        assert {r["rate_kind"] for r in missing} == {"COST", "SELL"}
        assert all(r["rfq_id"] == "rfq-7" and r["level"] == "WARNING" for r in missing)
        traces = {r["engine_name"] for r in logs if r["message"] == "PRICING_ENGINE_TRACE"}
        assert traces == {"allocation_aggregation", "time_and_material"}


class TestConfigureLogging:

    def test_idempotent(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        configure_logging(handler=logging.StreamHandler(StringIO()))

        # pytest may attach its own capture handlers; count ours only.
        structured = [
            h for h in logging.getLogger("pricing_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert len(structured) == 1

    def test_does_not_propagate(self):
        configure_logging()

        assert logging.getLogger("pricing_kernel").propagate is False

    def test_child_logger_reaches_handler(self, stream):
        child = get_logger("engines.tracer")
        assert child.name == "pricing_kernel.engines.tracer"

        child.debug("hierarchy_check")

        assert records(stream)[0]["logger"] == "pricing_kernel.engines.tracer"
