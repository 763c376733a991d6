"""Domain types shared across planes: task nodes, findings, consensus records, events."""

from consensus_orchestrator.domain.errors import (
    ConfigurationError,
    ConflictDetected,
    CyclicGraphError,
    GraphBuildError,
    InvalidTransitionError,
    MalformedFinding,
    OrchestrationError,
    QualityGateFailure,
    RetryExhausted,
    WorkerRejected,
    WorkerTimeout,
)
from consensus_orchestrator.domain.events import EventRecord, EventType
from consensus_orchestrator.domain.models import (
    AnalyzerResult,
    BuilderResult,
    CategoryScore,
    Certainty,
    ChangeSet,
    Confidence,
    ConsensusRecord,
    Escalation,
    ExcludedFinding,
    FailureKind,
    FailureRecord,
    Finding,
    HealthScore,
    Priority,
    Request,
    Severity,
    TaskDeclaration,
    TaskKind,
    TaskNode,
    TaskStatus,
    WorkerCapability,
)

__all__ = [
    "AnalyzerResult",
    "BuilderResult",
    "CategoryScore",
    "Certainty",
    "ChangeSet",
    "Confidence",
    "ConfigurationError",
    "ConflictDetected",
    "ConsensusRecord",
    "CyclicGraphError",
    "Escalation",
    "EventRecord",
    "EventType",
    "ExcludedFinding",
    "FailureKind",
    "FailureRecord",
    "Finding",
    "GraphBuildError",
    "HealthScore",
    "InvalidTransitionError",
    "MalformedFinding",
    "OrchestrationError",
    "Priority",
    "QualityGateFailure",
    "Request",
    "RetryExhausted",
    "Severity",
    "TaskDeclaration",
    "TaskKind",
    "TaskNode",
    "TaskStatus",
    "WorkerCapability",
    "WorkerRejected",
    "WorkerTimeout",
]
