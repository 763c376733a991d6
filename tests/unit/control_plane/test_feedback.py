"""Unit tests for retry feedback packages."""

from __future__ import annotations

import json

from consensus_orchestrator.control_plane.feedback import build_feedback, build_feedback_package
from consensus_orchestrator.domain.models import FailureKind, FailureRecord


def _gate_failure() -> FailureRecord:
    return FailureRecord(
        attempt=2,
        kind=FailureKind.GATE_FAILURE,
        message="task 'B' failed quality gates",
        reasons=(
            {"gate": "rationale_present", "code": "missing_rationale", "message": "no rationale"},
            {"gate": "non_empty_change_set", "code": "empty_change_set", "message": "empty"},
        ),
        details={"checkpoint": "worker_idle"},
    )


def test_reason_codes_are_sorted_and_hints_follow_code_order() -> None:
    package = build_feedback_package(_gate_failure())

    assert package.attempt == 2
    assert package.failure_kind == "gate_failure"
    assert package.reason_codes == ("empty_change_set", "missing_rationale")
    assert package.remediation_hints == (
        "Propose at least one change.",
        "Explain why the proposed change satisfies the task.",
        "Resolve every failing quality gate listed in the reasons.",
    )
    assert [reason["code"] for reason in package.reasons] == [
        "empty_change_set",
        "missing_rationale",
    ]


def test_failure_without_reasons_uses_its_kind_as_code() -> None:
    record = FailureRecord(attempt=1, kind=FailureKind.WORKER_TIMEOUT, message="timed out")

    feedback = build_feedback(record)

    assert feedback["reason_codes"] == ["worker_timeout"]
    assert feedback["remediation_hints"] == ["Respond within the configured worker timeout."]


def test_json_output_is_deterministic() -> None:
    first = build_feedback_package(_gate_failure()).to_json()
    second = build_feedback_package(_gate_failure()).to_json()

    assert first == second
    assert json.loads(first)["details"] == {"checkpoint": "worker_idle"}
