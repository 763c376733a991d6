"""
Domain model for orchestration and consensus scoring.

Purpose
- Typed representations of task nodes, requests, worker results, findings, consensus
  records, category/health scores, failures, and escalations.

Functional requirements
- Task status changes go through an explicit transition table.
- ``ConsensusRecord`` confidence is monotonically non-decreasing except through
  ``mark_false_positive`` with a non-empty justification.
- All ``to_dict`` outputs are JSON-compatible and deterministic.

Non-functional requirements
- No IO; the domain layer only depends on the standard library.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final, TypeAlias

from consensus_orchestrator.constants import (
    DEFAULT_CATEGORY,
    DEFAULT_MAX_RETRIES,
    MAX_CATEGORY_SCORE,
    SEVERITY_DEDUCTIONS,
    SEVERITY_LEVELS,
)
from consensus_orchestrator.domain.errors import InvalidTransitionError, RetryExhausted
from consensus_orchestrator.domain.events import as_json_object
from consensus_orchestrator.domain.ids import validate_task_id

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class TaskKind(StrEnum):
    """Kind of work a task node represents."""

    BUILDER = "builder"
    VALIDATOR = "validator"
    ANALYZER = "analyzer"

    @property
    def capability(self) -> WorkerCapability:
        return WorkerCapability(self.value)

    @property
    def proposes_changes(self) -> bool:
        return self is not TaskKind.ANALYZER


class WorkerCapability(StrEnum):
    """Closed set of worker capabilities the executor dispatches on."""

    BUILDER = "builder"
    VALIDATOR = "validator"
    ANALYZER = "analyzer"
    CONSENSUS = "consensus"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    REJECTED = "rejected"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: Final[frozenset[TaskStatus]] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.ESCALATED}
)

TASK_TRANSITIONS: Final[Mapping[TaskStatus, frozenset[TaskStatus]]] = {
    TaskStatus.BLOCKED: frozenset({TaskStatus.PENDING}),
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.REJECTED}),
    TaskStatus.REJECTED: frozenset({TaskStatus.PENDING, TaskStatus.ESCALATED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.ESCALATED: frozenset(),
}


class Severity(StrEnum):
    """Canonical four-level severity scale."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return SEVERITY_LEVELS.index(self.value) + 1

    @property
    def deduction(self) -> int:
        return SEVERITY_DEDUCTIONS[self.value]


class Certainty(StrEnum):
    """Analyzer-declared certainty for a single finding."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Confidence(StrEnum):
    CONFIRMED = "confirmed"
    LIKELY = "likely"
    INVESTIGATE = "investigate"
    FALSE_POSITIVE = "false_positive"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK: Final[dict[Confidence, int]] = {
    Confidence.FALSE_POSITIVE: 0,
    Confidence.INVESTIGATE: 1,
    Confidence.LIKELY: 2,
    Confidence.CONFIRMED: 3,
}


class Priority(StrEnum):
    """Remediation urgency bucket; lower rank is more urgent."""

    FIX_IMMEDIATELY = "fix_immediately"
    FIX_THIS_SPRINT = "fix_this_sprint"
    BACKLOG = "backlog"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)


_PRIORITY_ORDER: Final[tuple[Priority, ...]] = (
    Priority.FIX_IMMEDIATELY,
    Priority.FIX_THIS_SPRINT,
    Priority.BACKLOG,
    Priority.INFO,
)


class FailureKind(StrEnum):
    WORKER_ERROR = "worker_error"
    WORKER_TIMEOUT = "worker_timeout"
    GATE_FAILURE = "gate_failure"
    CONFLICT = "conflict"
    INVALID_RESULT = "invalid_result"


# ---------------------------------------------------------------------------
# Worker results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Proposed change-set from a builder or validator worker."""

    changes: tuple[dict[str, JSONValue], ...] = ()
    resource_keys: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.changes and not self.resource_keys

    def touched_resources(self) -> tuple[str, ...]:
        """Resource keys touched by this change-set, sorted and de-duplicated."""
        keys = set(self.resource_keys)
        for change in self.changes:
            for field_name in ("resource", "path"):
                value = change.get(field_name)
                if isinstance(value, str) and value.strip():
                    keys.add(value.strip())
                    break
        return tuple(sorted(keys))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "changes": [dict(change) for change in self.changes],
            "resource_keys": list(self.resource_keys),
        }

    @classmethod
    def coerce(cls, value: object, path: str = "change_set") -> ChangeSet:
        if isinstance(value, ChangeSet):
            return value
        if value is None:
            return cls()
        if isinstance(value, Mapping):
            raw_changes = value.get("changes", ())
            raw_keys = value.get("resource_keys", ())
            return cls(
                changes=_as_change_entries(raw_changes, f"{path}.changes"),
                resource_keys=_as_str_tuple(raw_keys, f"{path}.resource_keys"),
            )
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            return cls(changes=_as_change_entries(value, path))
        raise ValueError(f"{path}: expected mapping or list of changes, got {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class BuilderResult:
    """Response of a builder or validator worker."""

    change_set: ChangeSet
    rationale: str = ""

    def touched_resources(self) -> tuple[str, ...]:
        return self.change_set.touched_resources()

    def to_dict(self) -> dict[str, JSONValue]:
        return {"change_set": self.change_set.to_dict(), "rationale": self.rationale}


@dataclass(frozen=True, slots=True)
class AnalyzerResult:
    """Response of an analyzer worker: raw, not yet normalized, findings."""

    findings: tuple[object, ...] = ()

    def touched_resources(self) -> tuple[str, ...]:
        return ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {"finding_count": len(self.findings)}


TaskResult: TypeAlias = BuilderResult | AnalyzerResult


def coerce_task_result(kind: TaskKind, raw: object) -> TaskResult:
    """Coerce a worker response into the result type expected for ``kind``.

    Raises ``ValueError`` when the response does not match the worker contract.
    """
    if kind is TaskKind.ANALYZER:
        if isinstance(raw, AnalyzerResult):
            return raw
        if isinstance(raw, Mapping):
            findings = raw.get("findings")
            if findings is None:
                raise ValueError("analyzer response must contain 'findings'")
            if isinstance(findings, (str, bytes)) or not isinstance(findings, Sequence):
                raise ValueError("analyzer 'findings' must be a list")
            return AnalyzerResult(findings=tuple(findings))
        if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes, bytearray)):
            return AnalyzerResult(findings=tuple(raw))
        raise ValueError(f"analyzer response must be a mapping, got {type(raw).__name__}")

    if isinstance(raw, BuilderResult):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError(f"{kind.value} response must be a mapping, got {type(raw).__name__}")
    if "change_set" not in raw:
        raise ValueError(f"{kind.value} response must contain 'change_set'")
    rationale = raw.get("rationale", "")
    if rationale is None:
        rationale = ""
    if not isinstance(rationale, str):
        raise ValueError(f"{kind.value} 'rationale' must be a string")
    return BuilderResult(change_set=ChangeSet.coerce(raw["change_set"]), rationale=rationale)


# ---------------------------------------------------------------------------
# Task graph nodes and requests
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TaskNode:
    """Schedulable unit of work, owned by the task-graph arena and addressed by id."""

    id: str
    kind: TaskKind
    domain: str
    dependencies: frozenset[str] = frozenset()
    status: TaskStatus = TaskStatus.PENDING
    owner: str | None = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    spec: dict[str, JSONValue] = field(default_factory=dict)
    feedback: tuple[dict[str, JSONValue], ...] = ()
    result: TaskResult | None = None
    resources: tuple[str, ...] = ()
    gates: tuple[str, ...] = ()
    source_id: str | None = None
    pairs_with: str | None = None

    def __post_init__(self) -> None:
        validate_task_id(self.id)
        self.kind = TaskKind(self.kind)
        self.status = TaskStatus(self.status)
        self.dependencies = frozenset(self.dependencies)
        if self.id in self.dependencies:
            raise ValueError(f"task {self.id!r} cannot depend on itself")
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def effective_source_id(self) -> str:
        return self.source_id or self.id

    def transition(self, new_status: TaskStatus) -> TaskStatus:
        """Move to ``new_status`` and return the previous status."""
        target = TaskStatus(new_status)
        if target not in TASK_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status.value, target.value)
        previous = self.status
        self.status = target
        return previous

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "domain": self.domain,
            "dependencies": sorted(self.dependencies),
            "status": self.status.value,
            "owner": self.owner,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "resources": list(self.resources),
            "gates": list(self.gates),
            "source_id": self.source_id,
            "pairs_with": self.pairs_with,
            "feedback_count": len(self.feedback),
            "result": None if self.result is None else self.result.to_dict(),
        }


AcceptancePredicate: TypeAlias = str | Callable[..., object]


@dataclass(frozen=True, slots=True)
class TaskDeclaration:
    """One task as declared in an incoming request."""

    id: str
    kind: TaskKind
    domain: str = ""
    blocked_by: tuple[str, ...] = ()
    pairs_with: str | None = None
    spec: Mapping[str, JSONValue] = field(default_factory=dict)
    resources: tuple[str, ...] = ()
    gates: tuple[str, ...] = ()
    source_id: str | None = None
    max_retries: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object], path: str = "task") -> TaskDeclaration:
        parsed = _expect_object(
            data,
            path,
            required={"id", "kind"},
            optional={
                "domain",
                "blocked_by",
                "blockedBy",
                "pairs_with",
                "spec",
                "resources",
                "gates",
                "source_id",
                "max_retries",
            },
        )
        raw_kind = _as_str(parsed["kind"], f"{path}.kind")
        try:
            kind = TaskKind(raw_kind)
        except ValueError as exc:
            allowed = ", ".join(member.value for member in TaskKind)
            raise ValueError(f"{path}.kind: unsupported kind {raw_kind!r}; allowed: {allowed}") from exc

        blocked_raw = parsed.get("blocked_by", parsed.get("blockedBy", ()))
        spec_raw = parsed.get("spec", {})
        if not isinstance(spec_raw, Mapping):
            raise ValueError(f"{path}.spec: expected object")
        max_retries = parsed.get("max_retries")
        if max_retries is not None and (isinstance(max_retries, bool) or not isinstance(max_retries, int)):
            raise ValueError(f"{path}.max_retries: expected integer")
        return cls(
            id=_as_str(parsed["id"], f"{path}.id"),
            kind=kind,
            domain=_as_optional_str(parsed.get("domain"), f"{path}.domain") or "",
            blocked_by=_as_str_tuple(blocked_raw, f"{path}.blocked_by"),
            pairs_with=_as_optional_str(parsed.get("pairs_with"), f"{path}.pairs_with"),
            spec=dict(spec_raw),
            resources=_as_str_tuple(parsed.get("resources", ()), f"{path}.resources"),
            gates=_as_str_tuple(parsed.get("gates", ()), f"{path}.gates"),
            source_id=_as_optional_str(parsed.get("source_id"), f"{path}.source_id"),
            max_retries=max_retries,
        )


@dataclass(frozen=True, slots=True)
class Request:
    """Incoming unit of orchestration work; produces exactly one task graph."""

    domain: str
    description: str
    tasks: tuple[TaskDeclaration, ...]
    acceptance_predicate: AcceptancePredicate | None = None
    initial_resources: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Request:
        parsed = _expect_object(
            data,
            "Request",
            required={"domain", "description", "tasks"},
            optional={"acceptance_predicate", "initial_resources"},
        )
        raw_tasks = parsed["tasks"]
        if isinstance(raw_tasks, (str, bytes)) or not isinstance(raw_tasks, Sequence):
            raise ValueError("Request.tasks: expected list")
        predicate = parsed.get("acceptance_predicate")
        if predicate is not None and not (isinstance(predicate, str) or callable(predicate)):
            raise ValueError("Request.acceptance_predicate: expected gate name or callable")
        return cls(
            domain=_as_str(parsed["domain"], "Request.domain"),
            description=_as_str(parsed["description"], "Request.description"),
            tasks=tuple(
                TaskDeclaration.from_dict(_as_mapping(item, f"Request.tasks[{index}]"), f"Request.tasks[{index}]")
                for index, item in enumerate(raw_tasks)
            ),
            acceptance_predicate=predicate,
            initial_resources=_as_str_tuple(
                parsed.get("initial_resources", ()), "Request.initial_resources"
            ),
        )


# ---------------------------------------------------------------------------
# Failures and escalation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FailureRecord:
    """One failed attempt of a task, in machine-readable form."""

    attempt: int
    kind: FailureKind
    message: str
    reasons: tuple[dict[str, JSONValue], ...] = ()
    details: dict[str, JSONValue] = field(default_factory=dict)

    @property
    def reason_codes(self) -> tuple[str, ...]:
        codes = {str(reason.get("code")) for reason in self.reasons if reason.get("code")}
        if not codes:
            codes.add(self.kind.value)
        return tuple(sorted(codes))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "attempt": self.attempt,
            "kind": self.kind.value,
            "message": self.message,
            "reasons": [dict(reason) for reason in self.reasons],
            "details": dict(self.details),
        }


@dataclass(frozen=True, slots=True)
class Escalation:
    """Terminal failure of one branch, surfaced for an external decision."""

    task_id: str
    kind: TaskKind
    domain: str
    retry_count: int
    max_retries: int
    failures: tuple[FailureRecord, ...]
    blocked_dependents: tuple[str, ...] = ()

    @property
    def last_failure(self) -> FailureRecord | None:
        return self.failures[-1] if self.failures else None

    def to_error(self) -> RetryExhausted:
        return RetryExhausted(self)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task_id": self.task_id,
            "kind": self.kind.value,
            "domain": self.domain,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "failures": [failure.to_dict() for failure in self.failures],
            "blocked_dependents": list(self.blocked_dependents),
        }


# ---------------------------------------------------------------------------
# Findings and consensus
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Finding:
    """Canonical, normalized finding produced by one analyzer."""

    id: str
    source_id: str
    location: str
    title: str
    severity: Severity
    category: str = DEFAULT_CATEGORY
    evidence: JSONValue = None
    remediation: JSONValue = None
    certainty: Certainty = Certainty.MEDIUM
    applicability: tuple[str, ...] = ()
    related: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "location": self.location,
            "title": self.title,
            "severity": self.severity.value,
            "category": self.category,
            "evidence": self.evidence,
            "remediation": self.remediation,
            "certainty": self.certainty.value,
            "applicability": list(self.applicability),
            "related": list(self.related),
        }


@dataclass(slots=True)
class ConsensusRecord:
    """One or more findings judged to describe the same underlying issue."""

    record_id: str
    location: str
    title: str
    category: str
    severity: Severity
    confidence: Confidence = Confidence.INVESTIGATE
    priority: Priority = Priority.INFO
    contributing_finding_ids: list[str] = field(default_factory=list)
    source_ids: list[str] = field(default_factory=list)
    justification: str | None = None

    @classmethod
    def seed(cls, record_id: str, finding: Finding) -> ConsensusRecord:
        record = cls(
            record_id=record_id,
            location=finding.location,
            title=finding.title,
            category=finding.category,
            severity=finding.severity,
        )
        record.add_finding(finding)
        return record

    def add_finding(self, finding: Finding) -> None:
        if finding.id not in self.contributing_finding_ids:
            self.contributing_finding_ids.append(finding.id)
        if finding.source_id not in self.source_ids:
            self.source_ids.append(finding.source_id)
        if finding.severity.rank > self.severity.rank:
            self.severity = finding.severity

    @property
    def distinct_sources(self) -> int:
        return len(self.source_ids)

    def promote(self, confidence: Confidence) -> bool:
        """Raise confidence to ``confidence``; never lowers it. Returns whether it changed."""
        target = Confidence(confidence)
        if target is Confidence.FALSE_POSITIVE:
            raise ValueError("use mark_false_positive() to reclassify a record as false_positive")
        if self.confidence is Confidence.FALSE_POSITIVE:
            return False
        if target.rank <= self.confidence.rank:
            return False
        self.confidence = target
        return True

    def mark_false_positive(self, justification: str) -> None:
        if not isinstance(justification, str) or not justification.strip():
            raise ValueError("false_positive reclassification requires a justification")
        self.confidence = Confidence.FALSE_POSITIVE
        self.justification = justification.strip()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "record_id": self.record_id,
            "location": self.location,
            "title": self.title,
            "category": self.category,
            "severity": self.severity.value,
            "confidence": self.confidence.value,
            "priority": self.priority.value,
            "contributing_finding_ids": list(self.contributing_finding_ids),
            "source_ids": list(self.source_ids),
            "justification": self.justification,
        }


@dataclass(frozen=True, slots=True)
class ExcludedFinding:
    """A finding removed from scoring, with the reason it was removed."""

    finding_id: str
    source_id: str
    location: str
    title: str
    reason: str
    confidence: Confidence = Confidence.FALSE_POSITIVE

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "finding_id": self.finding_id,
            "source_id": self.source_id,
            "location": self.location,
            "title": self.title,
            "reason": self.reason,
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True, slots=True)
class CategoryScore:
    category: str
    weight: float
    score: float = MAX_CATEGORY_SCORE
    deduction: int = 0
    finding_count: int = 0

    def __post_init__(self) -> None:
        for name in ("weight", "score"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"CategoryScore.{name}: expected number")
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(f"CategoryScore.weight must be within [0, 1], got {self.weight}")
        if not 0 <= self.score <= MAX_CATEGORY_SCORE:
            raise ValueError(f"CategoryScore.score must be within [0, 100], got {self.score}")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "category": self.category,
            "weight": self.weight,
            "score": self.score,
            "deduction": self.deduction,
            "finding_count": self.finding_count,
        }


@dataclass(frozen=True, slots=True)
class HealthScore:
    """Weighted health score; ``value`` is exact, ``rounded`` is what gets displayed."""

    value: float
    rounded: int
    rounding: str = "half_up"

    @property
    def display(self) -> str:
        return f"{self.rounded}/{MAX_CATEGORY_SCORE}"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "value": self.value,
            "rounded": self.rounded,
            "rounding": self.rounding,
            "display": self.display,
        }


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str],
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{path}: expected object, got {type(value).__name__}")

    for key in value:
        if not isinstance(key, str):
            raise ValueError(f"{path}: object keys must be strings")

    unknown = sorted(key for key in value if key not in required and key not in optional)
    if unknown:
        raise ValueError(f"{path}: unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in value)
    if missing:
        raise ValueError(f"{path}: missing required fields: {missing}")

    return dict(value)


def _as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{path}: expected object, got {type(value).__name__}")
    return value


def _as_str(value: object, path: str, *, max_len: int = 4096) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    parsed = value.strip()
    if not parsed:
        raise ValueError(f"{path}: must not be empty")
    if len(parsed) > max_len:
        raise ValueError(f"{path}: must be <= {max_len} characters")
    return parsed


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=256)


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, (Sequence, frozenset, set)):
        raise ValueError(f"{path}: expected list of strings, got {type(value).__name__}")
    items = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
    out: list[str] = []
    for index, item in enumerate(items):
        parsed = _as_str(item, f"{path}[{index}]")
        if parsed not in out:
            out.append(parsed)
    return tuple(out)


def _as_change_entries(value: object, path: str) -> tuple[dict[str, JSONValue], ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ValueError(f"{path}: expected list of change objects")
    entries: list[dict[str, JSONValue]] = []
    for index, item in enumerate(value):
        if isinstance(item, str):
            entries.append({"path": item})
            continue
        if not isinstance(item, Mapping):
            raise ValueError(f"{path}[{index}]: expected object or path string")
        entries.append(
            as_json_object({str(key): entry for key, entry in item.items()}, f"{path}[{index}]")
        )
    return tuple(entries)


__all__ = [
    "AcceptancePredicate",
    "AnalyzerResult",
    "BuilderResult",
    "CategoryScore",
    "ChangeSet",
    "Certainty",
    "Confidence",
    "ConsensusRecord",
    "Escalation",
    "ExcludedFinding",
    "FailureKind",
    "FailureRecord",
    "Finding",
    "HealthScore",
    "JSONScalar",
    "JSONValue",
    "Priority",
    "Request",
    "Severity",
    "TASK_TRANSITIONS",
    "TERMINAL_STATUSES",
    "TaskDeclaration",
    "TaskKind",
    "TaskNode",
    "TaskResult",
    "TaskStatus",
    "WorkerCapability",
    "coerce_task_result",
]
