"""
Retry feedback packages.

A feedback package is appended to a task node after every failed attempt and handed to
the worker on the next dispatch. It is deterministic: reason codes are sorted and unique,
hints follow the code order, and JSON output uses sorted keys.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from consensus_orchestrator.domain.models import FailureKind, FailureRecord, JSONValue

_SCHEMA_VERSION = 1

_REASON_HINTS: dict[str, str] = {
    FailureKind.WORKER_ERROR.value: "The worker reported an error; address it before resubmitting.",
    FailureKind.WORKER_TIMEOUT.value: "Respond within the configured worker timeout.",
    FailureKind.INVALID_RESULT.value: (
        "Return {change_set, rationale} for builders and validators or {findings} for analyzers."
    ),
    FailureKind.CONFLICT.value: (
        "Another in-flight task holds the listed resources; avoid touching them or retry later."
    ),
    FailureKind.GATE_FAILURE.value: "Resolve every failing quality gate listed in the reasons.",
    "empty_change_set": "Propose at least one change.",
    "missing_rationale": "Explain why the proposed change satisfies the task.",
    "malformed_finding": "Every finding needs a location and a title.",
    "blocked_resource": "Do not modify resources reserved by the request owner.",
    "gate_error": "A quality gate could not evaluate the result; check its input shape.",
    "gate_failed": "The acceptance predicate rejected the result.",
}


@dataclass(frozen=True, slots=True)
class FeedbackPackage:
    """Machine-readable feedback for one failed attempt."""

    schema_version: int
    attempt: int
    failure_kind: str
    message: str
    reason_codes: tuple[str, ...]
    remediation_hints: tuple[str, ...]
    reasons: tuple[dict[str, JSONValue], ...]
    details: dict[str, JSONValue]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": self.schema_version,
            "attempt": self.attempt,
            "failure_kind": self.failure_kind,
            "message": self.message,
            "reason_codes": list(self.reason_codes),
            "remediation_hints": list(self.remediation_hints),
            "reasons": [dict(reason) for reason in self.reasons],
            "details": dict(self.details),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_feedback_package(record: FailureRecord) -> FeedbackPackage:
    codes = record.reason_codes
    hints: list[str] = []
    for code in codes:
        hint = _REASON_HINTS.get(code)
        if hint is not None and hint not in hints:
            hints.append(hint)
    kind_hint = _REASON_HINTS.get(record.kind.value)
    if kind_hint is not None and kind_hint not in hints:
        hints.append(kind_hint)
    return FeedbackPackage(
        schema_version=_SCHEMA_VERSION,
        attempt=record.attempt,
        failure_kind=record.kind.value,
        message=record.message,
        reason_codes=codes,
        remediation_hints=tuple(hints),
        reasons=tuple(
            sorted(
                (dict(reason) for reason in record.reasons),
                key=lambda item: json.dumps(item, sort_keys=True),
            )
        ),
        details=dict(record.details),
    )


def build_feedback(record: FailureRecord) -> dict[str, JSONValue]:
    """Feedback payload attached to a task node's spec for its next attempt."""

    return build_feedback_package(record).to_dict()


__all__ = ["FeedbackPackage", "build_feedback", "build_feedback_package"]
