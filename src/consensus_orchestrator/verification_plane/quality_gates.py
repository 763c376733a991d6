"""
Quality gate enforcement.

Purpose
- Evaluate pure pass/fail predicates over a worker result at two checkpoints: when the
  worker reports done (``worker_idle``) and when the task is about to complete
  (``candidate_completion``).

Functional requirements
- Every required gate attached to a node must pass; reasons are structured and
  machine-checkable so the executor can attach them to the next attempt.
- A gate with ``required = False`` is advisory: its failure is recorded in the outcome and
  the event log but never fails the node.
- A gate that raises is converted into a verdict with status ``error`` and reason
  ``gate_error``; it blocks exactly like a failure when the gate is required.
- With ``stop_on_failure`` the gates after the first blocking verdict are ``skipped``.
- Gates never mutate task state; they only return verdicts.

Non-functional requirements
- Deterministic verdict ordering (by gate name) and stable JSON output.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final, Protocol, runtime_checkable

import structlog

from consensus_orchestrator.domain.errors import ConfigurationError, QualityGateFailure
from consensus_orchestrator.domain.events import EventType, as_json_object
from consensus_orchestrator.domain.models import (
    AnalyzerResult,
    BuilderResult,
    JSONValue,
    TaskKind,
    TaskResult,
)
from consensus_orchestrator.persistence.event_log import EventLog

_ACTOR: Final[str] = "quality_gate"

NON_EMPTY_CHANGE_SET: Final[str] = "non_empty_change_set"
RATIONALE_PRESENT: Final[str] = "rationale_present"
FINDINGS_WELL_FORMED: Final[str] = "findings_well_formed"
NO_BLOCKED_RESOURCES: Final[str] = "no_blocked_resources"


class GateCheckpoint(StrEnum):
    WORKER_IDLE = "worker_idle"
    CANDIDATE_COMPLETION = "candidate_completion"


ALL_CHECKPOINTS: Final[frozenset[GateCheckpoint]] = frozenset(GateCheckpoint)


class GateStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


_EVENT_FOR_STATUS: Final[dict[GateStatus, EventType]] = {
    GateStatus.PASSED: EventType.GATE_PASSED,
    GateStatus.FAILED: EventType.GATE_FAILED,
    GateStatus.ERROR: EventType.GATE_FAILED,
    GateStatus.SKIPPED: EventType.GATE_SKIPPED,
}


@dataclass(frozen=True, slots=True)
class GateReason:
    """One machine-checkable failure reason."""

    code: str
    message: str
    details: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.code, str) or not self.code.strip():
            raise ValueError("GateReason.code must be a non-empty string")
        object.__setattr__(self, "details", as_json_object(dict(self.details), "GateReason.details"))

    def to_dict(self) -> dict[str, JSONValue]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


@dataclass(frozen=True, slots=True)
class GateVerdict:
    gate: str
    passed: bool
    reasons: tuple[GateReason, ...] = ()
    required: bool = True
    status: GateStatus | None = None

    def __post_init__(self) -> None:
        if self.status is None:
            object.__setattr__(
                self, "status", GateStatus.PASSED if self.passed else GateStatus.FAILED
            )
        elif (self.status is GateStatus.PASSED) != self.passed:
            raise ValueError(
                f"gate {self.gate!r}: status {self.status.value!r} contradicts passed={self.passed}"
            )
        if not self.passed and not self.reasons:
            object.__setattr__(
                self,
                "reasons",
                (GateReason("gate_failed", f"gate {self.gate!r} rejected the result"),),
            )

    @property
    def blocking(self) -> bool:
        """A required gate that failed or errored."""
        return self.required and self.status in (GateStatus.FAILED, GateStatus.ERROR)

    @property
    def advisory_failure(self) -> bool:
        return not self.required and self.status in (GateStatus.FAILED, GateStatus.ERROR)

    def with_requirement(self, required: bool) -> GateVerdict:
        if required == self.required:
            return self
        return GateVerdict(self.gate, self.passed, self.reasons, required, self.status)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "gate": self.gate,
            "passed": self.passed,
            "status": str(self.status),
            "required": self.required,
            "reasons": [reason.to_dict() for reason in self.reasons],
        }


@dataclass(frozen=True, slots=True)
class GateContext:
    """Read-only view of the task a result belongs to."""

    task_id: str
    kind: TaskKind
    domain: str
    attempt: int = 1
    spec: Mapping[str, JSONValue] = field(default_factory=dict)
    reserved_resources: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class GateOutcome:
    checkpoint: GateCheckpoint
    verdicts: tuple[GateVerdict, ...] = ()

    @property
    def passed(self) -> bool:
        """True unless a required gate failed or errored."""
        return not any(verdict.blocking for verdict in self.verdicts)

    @property
    def reasons(self) -> tuple[dict[str, JSONValue], ...]:
        """Blocking reasons across all gates, each tagged with its gate name."""
        return _tagged_reasons(verdict for verdict in self.verdicts if verdict.blocking)

    @property
    def advisory(self) -> tuple[dict[str, JSONValue], ...]:
        """Reasons from failed non-required gates; these never fail the node."""
        return _tagged_reasons(verdict for verdict in self.verdicts if verdict.advisory_failure)

    def statuses(self) -> dict[str, str]:
        return {verdict.gate: str(verdict.status) for verdict in self.verdicts}

    def to_error(self, task_id: str) -> QualityGateFailure:
        return QualityGateFailure(task_id, self.reasons)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "checkpoint": self.checkpoint.value,
            "passed": self.passed,
            "verdicts": [verdict.to_dict() for verdict in self.verdicts],
            "advisory": [dict(reason) for reason in self.advisory],
        }


@runtime_checkable
class QualityGate(Protocol):
    """Gate protocol implemented by built-ins and caller-supplied predicates.

    A gate may also define ``required``; gates without it are required.
    """

    name: str
    checkpoints: frozenset[GateCheckpoint]

    def evaluate(self, result: TaskResult, context: GateContext) -> GateVerdict: ...


GatePredicate = Callable[[TaskResult, GateContext], object]


class PredicateGate:
    """Adapts a plain callable into a :class:`QualityGate`.

    The callable may return a bool, a :class:`GateVerdict`, or a mapping shaped like
    ``{"passed": bool, "reasons": [...]}`` (``"pass"`` and ``"message"`` are accepted too).
    """

    def __init__(
        self,
        name: str,
        predicate: GatePredicate,
        *,
        checkpoints: Iterable[GateCheckpoint] = (GateCheckpoint.CANDIDATE_COMPLETION,),
        required: bool = True,
    ) -> None:
        if not callable(predicate):
            raise TypeError("predicate must be callable")
        self.name = name
        self.required = required
        self.checkpoints = frozenset(GateCheckpoint(item) for item in checkpoints)
        self._predicate = predicate

    def evaluate(self, result: TaskResult, context: GateContext) -> GateVerdict:
        return _coerce_verdict(self.name, self._predicate(result, context))


class NonEmptyChangeSetGate:
    name = NON_EMPTY_CHANGE_SET
    required = True
    checkpoints = frozenset({GateCheckpoint.WORKER_IDLE})

    def evaluate(self, result: TaskResult, context: GateContext) -> GateVerdict:
        if not isinstance(result, BuilderResult):
            return GateVerdict(self.name, True)
        if result.change_set.is_empty:
            return GateVerdict(
                self.name,
                False,
                (GateReason("empty_change_set", "the proposed change set contains no changes"),),
            )
        return GateVerdict(self.name, True)


class RationalePresentGate:
    name = RATIONALE_PRESENT
    required = True
    checkpoints = frozenset({GateCheckpoint.WORKER_IDLE})

    def evaluate(self, result: TaskResult, context: GateContext) -> GateVerdict:
        if isinstance(result, BuilderResult) and not result.rationale.strip():
            return GateVerdict(
                self.name,
                False,
                (GateReason("missing_rationale", "a rationale must accompany the change set"),),
            )
        return GateVerdict(self.name, True)


class FindingsWellFormedGate:
    """Every raw finding must carry a location and a title."""

    name = FINDINGS_WELL_FORMED
    required = True
    checkpoints = frozenset({GateCheckpoint.WORKER_IDLE})

    def evaluate(self, result: TaskResult, context: GateContext) -> GateVerdict:
        if not isinstance(result, AnalyzerResult):
            return GateVerdict(self.name, True)
        reasons: list[GateReason] = []
        for index, raw in enumerate(result.findings):
            missing = [key for key in ("location", "title") if not _raw_field(raw, key)]
            if missing:
                reasons.append(
                    GateReason(
                        "malformed_finding",
                        f"finding {index} is missing {', '.join(missing)}",
                        {"index": index, "missing": missing},
                    )
                )
        return GateVerdict(self.name, not reasons, tuple(reasons))


class NoBlockedResourcesGate:
    """Rejects change sets that touch keys the request owner reserved."""

    name = NO_BLOCKED_RESOURCES
    required = True
    checkpoints = frozenset({GateCheckpoint.CANDIDATE_COMPLETION})

    def evaluate(self, result: TaskResult, context: GateContext) -> GateVerdict:
        blocked = sorted(set(result.touched_resources()) & context.reserved_resources)
        if not blocked:
            return GateVerdict(self.name, True)
        return GateVerdict(
            self.name,
            False,
            (
                GateReason(
                    "blocked_resource",
                    f"change set touches reserved resources: {', '.join(blocked)}",
                    {"resources": blocked},
                ),
            ),
        )


class GateRegistry:
    """Named gates available to task nodes."""

    def __init__(self, gates: Iterable[QualityGate] = ()) -> None:
        self._gates: dict[str, QualityGate] = {}
        for gate in gates:
            self.register(gate)

    @classmethod
    def with_builtins(cls) -> GateRegistry:
        return cls(
            (
                NonEmptyChangeSetGate(),
                RationalePresentGate(),
                FindingsWellFormedGate(),
                NoBlockedResourcesGate(),
            )
        )

    def register(self, gate: QualityGate) -> None:
        if not isinstance(gate, QualityGate):
            raise TypeError(f"{gate!r} does not implement the QualityGate protocol")
        if not isinstance(gate.name, str) or not gate.name.strip():
            raise ValueError("gate name must be a non-empty string")
        if gate.name in self._gates:
            raise ValueError(f"gate {gate.name!r} is already registered")
        self._gates[gate.name] = gate

    def register_predicate(
        self,
        name: str,
        predicate: GatePredicate,
        *,
        checkpoints: Iterable[GateCheckpoint] = (GateCheckpoint.CANDIDATE_COMPLETION,),
        required: bool = True,
    ) -> PredicateGate:
        gate = PredicateGate(name, predicate, checkpoints=checkpoints, required=required)
        self.register(gate)
        return gate

    def with_gate(self, gate: QualityGate) -> GateRegistry:
        """Copy of this registry with ``gate`` added (or replacing a same-named gate)."""
        copy = GateRegistry(g for name, g in self._gates.items() if name != gate.name)
        copy.register(gate)
        return copy

    def contains(self, name: str) -> bool:
        return name in self._gates

    def get(self, name: str) -> QualityGate:
        gate = self._gates.get(name)
        if gate is None:
            known = ", ".join(self.names())
            raise KeyError(f"unknown quality gate {name!r}; registered: [{known}]")
        return gate

    def resolve(self, names: Sequence[str]) -> tuple[QualityGate, ...]:
        missing = sorted({name for name in names if name not in self._gates})
        if missing:
            raise ConfigurationError(f"unknown quality gates: {missing}")
        return tuple(self._gates[name] for name in sorted(set(names)))

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._gates))


def evaluate_gates(
    gates: Sequence[QualityGate],
    result: TaskResult,
    context: GateContext,
    checkpoint: GateCheckpoint,
    *,
    stop_on_failure: bool = False,
    event_log: EventLog | None = None,
    logger: Any | None = None,
) -> GateOutcome:
    """Evaluate every gate registered for ``checkpoint``; every required gate must pass."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    verdicts: list[GateVerdict] = []
    for gate in sorted(gates, key=lambda item: item.name):
        if checkpoint not in gate.checkpoints:
            continue
        required = bool(getattr(gate, "required", True))
        if stop_on_failure and any(verdict.blocking for verdict in verdicts):
            verdict = GateVerdict(
                gate.name,
                False,
                (GateReason("skipped", "skipped after an earlier required gate failed"),),
                required,
                GateStatus.SKIPPED,
            )
        else:
            verdict = _run_gate(gate, result, context, log).with_requirement(required)
        verdicts.append(verdict)
        if event_log is not None:
            event_log.append(
                _ACTOR,
                _EVENT_FOR_STATUS[verdict.status],
                {
                    "task_id": context.task_id,
                    "attempt": context.attempt,
                    "checkpoint": checkpoint.value,
                    **verdict.to_dict(),
                },
            )

    outcome = GateOutcome(checkpoint=checkpoint, verdicts=tuple(verdicts))
    if not outcome.passed:
        log.info(
            "verification_gates_failed",
            task_id=context.task_id,
            checkpoint=checkpoint.value,
            reason_codes=sorted({str(reason["code"]) for reason in outcome.reasons}),
        )
    if outcome.advisory:
        log.info(
            "verification_advisory_gates_failed",
            task_id=context.task_id,
            checkpoint=checkpoint.value,
            gates=sorted({str(reason["gate"]) for reason in outcome.advisory}),
        )
    return outcome


def _run_gate(
    gate: QualityGate, result: TaskResult, context: GateContext, log: Any
) -> GateVerdict:
    try:
        verdict = gate.evaluate(result, context)
        if not isinstance(verdict, GateVerdict):
            verdict = _coerce_verdict(gate.name, verdict)
        return verdict
    except Exception as exc:  # noqa: BLE001 - gate errors become error verdicts
        log.warning(
            "verification_gate_error",
            task_id=context.task_id,
            gate=gate.name,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return GateVerdict(
            gate.name,
            False,
            (
                GateReason(
                    "gate_error",
                    f"gate raised {type(exc).__name__}: {exc}",
                    {"error_type": type(exc).__name__},
                ),
            ),
            status=GateStatus.ERROR,
        )


def _tagged_reasons(verdicts: Iterable[GateVerdict]) -> tuple[dict[str, JSONValue], ...]:
    return tuple(
        {"gate": verdict.gate, **reason.to_dict()}
        for verdict in verdicts
        for reason in verdict.reasons
    )


def _coerce_verdict(name: str, raw: object) -> GateVerdict:
    if isinstance(raw, GateVerdict):
        return raw
    if isinstance(raw, bool):
        return GateVerdict(name, raw)
    if isinstance(raw, Mapping):
        passed = raw.get("passed", raw.get("pass"))
        if not isinstance(passed, bool):
            raise TypeError(f"gate {name!r} returned a mapping without a boolean 'passed'")
        reasons: list[GateReason] = []
        for item in raw.get("reasons", ()) or ():
            if isinstance(item, GateReason):
                reasons.append(item)
            elif isinstance(item, Mapping):
                reasons.append(
                    GateReason(
                        code=str(item.get("code", "gate_failed")),
                        message=str(item.get("message", "")),
                        details=dict(item.get("details", {}) or {}),
                    )
                )
            else:
                reasons.append(GateReason("gate_failed", str(item)))
        message = raw.get("message")
        if not passed and not reasons and isinstance(message, str):
            reasons.append(GateReason("gate_failed", message))
        return GateVerdict(name, passed, tuple(reasons) if not passed else ())
    raise TypeError(f"gate {name!r} returned unsupported verdict type {type(raw).__name__}")


def _raw_field(raw: object, key: str) -> object:
    if isinstance(raw, Mapping):
        value = raw.get(key)
    else:
        value = getattr(raw, key, None)
    if isinstance(value, str):
        return value.strip()
    return value


__all__ = [
    "ALL_CHECKPOINTS",
    "FINDINGS_WELL_FORMED",
    "FindingsWellFormedGate",
    "GateCheckpoint",
    "GateContext",
    "GateOutcome",
    "GatePredicate",
    "GateReason",
    "GateStatus",
    "GateRegistry",
    "GateVerdict",
    "NON_EMPTY_CHANGE_SET",
    "NO_BLOCKED_RESOURCES",
    "NoBlockedResourcesGate",
    "NonEmptyChangeSetGate",
    "PredicateGate",
    "QualityGate",
    "RATIONALE_PRESENT",
    "RationalePresentGate",
    "evaluate_gates",
]
