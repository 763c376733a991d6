"""Verification plane: quality gates evaluated at task checkpoints."""

from consensus_orchestrator.verification_plane.quality_gates import (
    FINDINGS_WELL_FORMED,
    NO_BLOCKED_RESOURCES,
    NON_EMPTY_CHANGE_SET,
    RATIONALE_PRESENT,
    GateCheckpoint,
    GateContext,
    GateOutcome,
    GateReason,
    GateRegistry,
    GateVerdict,
    PredicateGate,
    QualityGate,
    evaluate_gates,
)

__all__ = [
    "FINDINGS_WELL_FORMED",
    "GateCheckpoint",
    "GateContext",
    "GateOutcome",
    "GateReason",
    "GateRegistry",
    "GateVerdict",
    "NON_EMPTY_CHANGE_SET",
    "NO_BLOCKED_RESOURCES",
    "PredicateGate",
    "QualityGate",
    "RATIONALE_PRESENT",
    "evaluate_gates",
]
