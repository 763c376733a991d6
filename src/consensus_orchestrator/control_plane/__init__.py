"""Control plane: resource claims, conflict admission, retries, scheduling and runs."""

from consensus_orchestrator.control_plane.conflict_detector import Admission, ConflictDetector
from consensus_orchestrator.control_plane.controller import (
    FALLBACK_WEIGHTS,
    OrchestrationController,
    RunResult,
)
from consensus_orchestrator.control_plane.feedback import (
    FeedbackPackage,
    build_feedback,
    build_feedback_package,
)
from consensus_orchestrator.control_plane.resource_registry import (
    BatchClaimOutcome,
    ClaimOutcome,
    ResourceClaim,
    ResourceRegistry,
)
from consensus_orchestrator.control_plane.retry_policy import (
    RetryAction,
    RetryDecision,
    RetryPolicy,
)
from consensus_orchestrator.control_plane.scheduler import (
    REQUEST_OWNER,
    ExecutionOutcome,
    Executor,
    TaskSpecView,
    Worker,
    WorkerPool,
)

__all__ = [
    "Admission",
    "BatchClaimOutcome",
    "ClaimOutcome",
    "ConflictDetector",
    "ExecutionOutcome",
    "Executor",
    "FALLBACK_WEIGHTS",
    "FeedbackPackage",
    "OrchestrationController",
    "REQUEST_OWNER",
    "ResourceClaim",
    "ResourceRegistry",
    "RetryAction",
    "RetryDecision",
    "RetryPolicy",
    "RunResult",
    "TaskSpecView",
    "Worker",
    "WorkerPool",
    "build_feedback",
    "build_feedback_package",
]
