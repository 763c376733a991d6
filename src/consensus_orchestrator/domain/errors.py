"""
Error taxonomy for orchestration and consensus scoring.

Fatal errors (raised to the caller):
- ``CyclicGraphError`` at graph-build time
- ``ConfigurationError`` before any scoring begins

Recoverable errors (converted into failure records by the executor and retried):
- ``WorkerTimeout``, ``WorkerRejected``, ``QualityGateFailure``, ``ConflictDetected``

Branch-terminal:
- ``RetryExhausted`` wraps an escalation; it is surfaced as an actionable item and only
  raised when a caller opts in.

Batch-local:
- ``MalformedFinding`` is logged and the record dropped; the batch continues.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from consensus_orchestrator.domain.models import Escalation


class OrchestrationError(Exception):
    """Base class for all errors raised by this package."""


class CyclicGraphError(OrchestrationError, ValueError):
    """Raised when a task graph contains a dependency cycle."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        self.cycles = tuple(tuple(path) for path in cycles)
        if not self.cycles:
            message = "Task graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in self.cycles[:3])
            suffix = "..." if len(self.cycles) > 3 else ""
            message = f"Task graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class GraphBuildError(OrchestrationError, ValueError):
    """Raised when a request cannot be translated into a valid task graph."""


class InvalidTransitionError(OrchestrationError, RuntimeError):
    """Raised when a task status change is not in the transition table."""

    def __init__(self, task_id: str, current: str, requested: str) -> None:
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(f"task {task_id!r}: illegal transition {current} -> {requested}")


class WorkerTimeout(OrchestrationError, TimeoutError):
    """A worker did not respond within the configured interval."""

    def __init__(self, task_id: str, timeout_seconds: float) -> None:
        self.task_id = task_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"worker for task {task_id!r} timed out after {timeout_seconds}s")


class WorkerRejected(OrchestrationError):
    """A worker reported failure or returned a result that cannot be used."""

    def __init__(self, task_id: str, message: str, *, error_type: str | None = None) -> None:
        self.task_id = task_id
        self.error_type = error_type
        super().__init__(f"worker for task {task_id!r} failed: {message}")


class QualityGateFailure(OrchestrationError):
    """One or more gates returned a failing verdict."""

    def __init__(self, task_id: str, reasons: Sequence[Mapping[str, object]]) -> None:
        self.task_id = task_id
        self.reasons = tuple(dict(reason) for reason in reasons)
        codes = sorted({str(reason.get("code", "unknown")) for reason in self.reasons})
        super().__init__(f"task {task_id!r} failed quality gates: {', '.join(codes)}")


class ConflictDetected(OrchestrationError):
    """A candidate result touches resources held by another in-flight task."""

    def __init__(self, task_id: str, conflicts: Mapping[str, str]) -> None:
        self.task_id = task_id
        self.conflicts = dict(sorted(conflicts.items()))
        held = ", ".join(f"{key} (held by {holder})" for key, holder in self.conflicts.items())
        super().__init__(f"task {task_id!r} conflicts on {held}")


class RetryExhausted(OrchestrationError):
    """A task exceeded its retry bound and was escalated."""

    def __init__(self, escalation: Escalation) -> None:
        self.escalation = escalation
        super().__init__(
            f"task {escalation.task_id!r} escalated after {escalation.retry_count} attempts"
        )


class MalformedFinding(OrchestrationError, ValueError):
    """A raw analyzer record is missing mandatory fields."""

    def __init__(self, source_id: str, index: int, missing: Sequence[str]) -> None:
        self.source_id = source_id
        self.index = index
        self.missing = tuple(sorted(missing))
        super().__init__(
            f"finding {index} from {source_id!r} missing required fields: {list(self.missing)}"
        )


class ConfigurationError(OrchestrationError, ValueError):
    """Invalid run configuration, such as category weights not summing to 1."""


__all__ = [
    "ConfigurationError",
    "ConflictDetected",
    "CyclicGraphError",
    "GraphBuildError",
    "InvalidTransitionError",
    "MalformedFinding",
    "OrchestrationError",
    "QualityGateFailure",
    "RetryExhausted",
    "WorkerRejected",
    "WorkerTimeout",
]
