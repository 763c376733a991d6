"""Unit tests for the end-to-end orchestration controller."""

from __future__ import annotations

from typing import Any

import pytest
from structlog.testing import capture_logs

from consensus_orchestrator.config.schema import ConfigValidationError
from consensus_orchestrator.consensus.report import MemoryReportSink
from consensus_orchestrator.control_plane.controller import OrchestrationController
from consensus_orchestrator.domain.errors import (
    ConfigurationError,
    CyclicGraphError,
    RetryExhausted,
)
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.models import Confidence, Priority, Severity
from consensus_orchestrator.observability.metrics import MetricsRegistry
from consensus_orchestrator.persistence.event_log import InMemoryEventLog
from consensus_orchestrator.verification_plane.quality_gates import GateContext
from tests.unit.control_plane import ScriptedWorker, make_pool

_SECURITY_ONLY = {"security": 1.0}


def _payload(tasks: list[dict[str, Any]], **extra: Any) -> dict[str, Any]:
    return {"domain": "web", "description": "harden login", "tasks": tasks, **extra}


def _build_and_scan() -> list[dict[str, Any]]:
    return [
        {"id": "build", "kind": "builder"},
        {"id": "verify", "kind": "validator", "pairs_with": "build"},
        {"id": "zap", "kind": "analyzer", "blocked_by": ["verify"]},
        {"id": "lighthouse", "kind": "analyzer", "blocked_by": ["verify"]},
    ]


def _controller(
    *,
    analyzer: ScriptedWorker | None = None,
    builder: object | None = None,
    config: dict[str, Any] | None = None,
) -> OrchestrationController:
    return OrchestrationController(
        config,
        make_pool(analyzer=analyzer, builder=builder),
        event_log=InMemoryEventLog(name="controller"),
    )


@pytest.mark.asyncio
async def test_run_builds_executes_and_reports() -> None:
    analyzer = ScriptedWorker(
        "analyzer",
        {
            "zap": [
                {
                    "findings": [
                        {
                            "location": "src/login.py:10",
                            "title": "SQL injection",
                            "severity": "high",
                            "category": "security",
                        }
                    ]
                }
            ],
            "lighthouse": [
                {
                    "findings": [
                        {
                            "location": "src/login.py:10",
                            "title": "Unsanitized query",
                            "severity": "critical",
                            "category": "security",
                        }
                    ]
                }
            ],
        },
    )
    controller = _controller(analyzer=analyzer)
    sink = MemoryReportSink()

    result = await controller.run(_payload(_build_and_scan()), weights=_SECURITY_ONLY, sink=sink)

    assert result.succeeded
    assert result.execution.completed == ("build", "lighthouse", "verify", "zap")
    (record,) = result.report.ranked_findings
    assert record.confidence is Confidence.CONFIRMED
    assert record.severity is Severity.CRITICAL
    assert record.priority is Priority.FIX_IMMEDIATELY
    assert sorted(record.source_ids) == ["lighthouse", "zap"]
    assert result.report.health_score.display == "85/100"
    assert result.report.event_log_reference == "memory://controller"
    assert sink.latest is result.report
    assert controller.metrics.get_gauge("health_score") == 85.0

    records = controller.event_log.records()
    assert records[0].type is EventType.RUN_STARTED
    assert records[0].payload["run_id"] == result.run_id
    assert records[-1].type is EventType.RUN_COMPLETED
    assert records[-1].payload["status"] == "succeeded"
    assert records[-1].payload["health_score"] == "85/100"
    assert EventType.CONSENSUS_COMPLETED in {record.type for record in records}


@pytest.mark.asyncio
async def test_callable_acceptance_predicate_gates_change_proposers() -> None:
    def _second_attempt_only(result: object, context: GateContext) -> bool:
        return context.attempt >= 2

    builder = ScriptedWorker("builder", default={"change_set": ["src/a.py"], "rationale": "ok"})
    controller = _controller(builder=builder)

    result = await controller.run(
        _payload(
            [
                {"id": "build", "kind": "builder"},
                {"id": "verify", "kind": "validator", "pairs_with": "build"},
            ],
            acceptance_predicate=_second_attempt_only,
        ),
        weights=_SECURITY_ONLY,
    )

    assert result.is_clean
    assert builder.attempts("build") == [1, 2]
    failed_gates = [
        record.payload["gate"]
        for record in controller.event_log.records()
        if record.type is EventType.GATE_FAILED
    ]
    assert failed_gates == ["acceptance_predicate", "acceptance_predicate"]


@pytest.mark.asyncio
async def test_escalations_are_returned_not_raised() -> None:
    builder = ScriptedWorker("builder", default=RuntimeError("compiler crashed"))
    controller = _controller(builder=builder, config={"retry": {"max_retries": 1}})

    result = await controller.run(
        _payload(
            [
                {"id": "build", "kind": "builder"},
                {"id": "verify", "kind": "validator", "pairs_with": "build"},
                {"id": "scan", "kind": "analyzer"},
            ]
        ),
        weights=_SECURITY_ONLY,
    )

    assert not result.succeeded
    assert not result.is_clean
    assert [item.task_id for item in result.escalations] == ["build"]
    assert result.escalations[0].blocked_dependents == ("verify",)
    assert result.execution.blocked == ("verify",)
    assert "scan" in result.execution.completed
    assert builder.attempts("build") == [1, 2]
    assert result.report.health_score.display == "100/100"
    assert controller.event_log.records()[-1].payload["status"] == "escalated"
    counts = controller.event_log.records()[-1].payload["counts"]
    assert counts["tasks_dispatched"] == 3
    assert counts["tasks_rejected"] == 2
    assert counts["tasks_escalated"] == counts["tasks_completed"] == 1

    with pytest.raises(RetryExhausted, match="'build'"):
        result.raise_for_escalations()


@pytest.mark.asyncio
async def test_unknown_weight_profile_fails_before_dispatch() -> None:
    analyzer = ScriptedWorker("analyzer", default={"findings": []})
    controller = _controller(analyzer=analyzer)

    with pytest.raises(ConfigurationError, match="unknown weight profile 'seo'"):
        await controller.run(
            _payload([{"id": "scan", "kind": "analyzer"}]), weight_profile="seo"
        )

    assert analyzer.calls == []
    assert len(controller.event_log) == 0


@pytest.mark.asyncio
async def test_invalid_explicit_weights_fail_before_dispatch() -> None:
    analyzer = ScriptedWorker("analyzer", default={"findings": []})
    controller = _controller(analyzer=analyzer)

    with pytest.raises(ConfigurationError):
        await controller.run(
            _payload([{"id": "scan", "kind": "analyzer"}]),
            weights={"security": 0.5, "seo": 0.4},
        )

    assert analyzer.calls == []


def test_fallback_weights_are_used_with_a_warning() -> None:
    analyzer = ScriptedWorker(
        "analyzer", default={"findings": [{"location": "a.py:1", "title": "lint", "severity": "low"}]}
    )
    controller = _controller(analyzer=analyzer)

    with capture_logs() as logs:
        result = controller.run_sync(_payload([{"id": "scan", "kind": "analyzer"}]))

    assert any(entry["event"] == "control_plane_fallback_weights" for entry in logs)
    (score,) = result.report.category_scores
    assert (score.category, score.weight, score.score) == ("uncategorized", 1.0, 98)
    assert result.report.health_score.display == "98/100"
    assert result.report.warnings[0].startswith("no category weights configured")


def test_cyclic_request_fails_and_is_recorded() -> None:
    controller = _controller()

    with pytest.raises(CyclicGraphError):
        controller.run_sync(
            _payload(
                [
                    {"id": "a", "kind": "analyzer", "blocked_by": ["b"]},
                    {"id": "b", "kind": "analyzer", "blocked_by": ["a"]},
                ]
            ),
            weights=_SECURITY_ONLY,
        )

    types = [record.type for record in controller.event_log.records()]
    assert types == [EventType.RUN_STARTED, EventType.GRAPH_REJECTED, EventType.RUN_COMPLETED]
    assert controller.event_log.records()[-1].payload["status"] == "failed"


def test_context_and_overrides_flow_into_the_report() -> None:
    analyzer = ScriptedWorker(
        "analyzer",
        default={
            "findings": [
                {
                    "location": "wp-config.php",
                    "title": "debug enabled",
                    "severity": "medium",
                    "category": "security",
                    "applicability": ["wordpress"],
                },
                {
                    "location": "vendor/lib.js",
                    "title": "old jquery",
                    "severity": "high",
                    "category": "security",
                },
            ]
        },
    )
    controller = _controller(analyzer=analyzer)

    result = controller.run_sync(
        _payload([{"id": "scan", "kind": "analyzer"}]),
        weights=_SECURITY_ONLY,
        context=["django"],
        false_positive_overrides={"vendor/lib.js": "vendored, patched upstream"},
    )

    assert result.report.is_clean
    reasons = [item.reason for item in result.report.excluded_false_positives]
    assert reasons == [
        "applies to ['wordpress'] but detected context is ['django']",
        "vendored, patched upstream",
    ]
    assert result.report.health_score.display == "100/100"


def test_invalid_config_is_rejected_at_construction() -> None:
    with pytest.raises(ConfigValidationError):
        OrchestrationController({"consensus": {"rounding": "ceiling"}}, make_pool())


def test_caller_supplied_empty_collaborators_are_kept() -> None:
    audit_log = InMemoryEventLog(name="audit")
    metrics = MetricsRegistry()
    controller = OrchestrationController(
        {"persistence": {"event_log_backend": "sqlite"}},
        make_pool(),
        event_log=audit_log,
        metrics=metrics,
    )

    result = controller.run_sync(
        _payload([{"id": "scan", "kind": "analyzer"}]), weights=_SECURITY_ONLY
    )

    assert controller.event_log is audit_log
    assert controller.metrics is metrics
    assert result.report.event_log_reference == "memory://audit"
    assert audit_log.records()[0].type is EventType.RUN_STARTED
    assert len(audit_log) == audit_log.last_seq > 0
