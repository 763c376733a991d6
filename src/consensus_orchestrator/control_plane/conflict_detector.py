"""Admission check for candidate results against in-flight resource claims."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from consensus_orchestrator.control_plane.resource_registry import ResourceRegistry
from consensus_orchestrator.domain.errors import ConflictDetected
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.models import AnalyzerResult, JSONValue, TaskResult
from consensus_orchestrator.persistence.event_log import EventLog

_ACTOR: Final[str] = "conflict_detector"


@dataclass(frozen=True, slots=True)
class Admission:
    accepted: bool
    claimed_keys: tuple[str, ...] = ()
    conflicts: dict[str, str] = field(default_factory=dict)

    def to_error(self, task_id: str) -> ConflictDetected:
        return ConflictDetected(task_id, self.conflicts)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "accepted": self.accepted,
            "claimed_keys": list(self.claimed_keys),
            "conflicts": dict(self.conflicts),
        }


class ConflictDetector:
    """Claims every resource a candidate result touches, all or nothing."""

    def __init__(
        self,
        registry: ResourceRegistry,
        *,
        event_log: EventLog | None = None,
        logger: Any | None = None,
    ) -> None:
        self._registry = registry
        self._event_log = event_log
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    def admit(self, task_id: str, result: TaskResult) -> Admission:
        if isinstance(result, AnalyzerResult):
            return Admission(accepted=True)

        touched = result.touched_resources()
        if not touched:
            return Admission(accepted=True)

        outcome = self._registry.claim_all(touched, task_id)
        if outcome.granted:
            return Admission(accepted=True, claimed_keys=outcome.claimed_keys)

        conflicts = dict(outcome.conflicts)
        if self._event_log is not None:
            self._event_log.append(
                _ACTOR,
                EventType.CONFLICT_DETECTED,
                {"task_id": task_id, "touched": list(touched), "conflicts": conflicts},
            )
        self._logger.info(
            "control_plane_conflict_detected",
            task_id=task_id,
            resources=sorted(conflicts),
            holders=sorted(set(conflicts.values())),
        )
        return Admission(accepted=False, conflicts=conflicts)


__all__ = ["Admission", "ConflictDetector"]
