"""Per-key resource claims with compare-and-set semantics.

The claims table is the only state shared between concurrently executing tasks. Every
mutation happens under one lock, and every claim attempt and release is appended to the
event log before the table changes.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.models import JSONValue
from consensus_orchestrator.persistence.event_log import EventLog

_ACTOR: Final[str] = "resource_registry"


@dataclass(frozen=True, slots=True)
class ResourceClaim:
    resource_key: str
    owning_task_id: str
    claimed_at: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "resource_key": self.resource_key,
            "owning_task_id": self.owning_task_id,
            "claimed_at": self.claimed_at,
        }


@dataclass(frozen=True, slots=True)
class ClaimOutcome:
    """Result of a single compare-and-set attempt."""

    granted: bool
    holder: str
    claim: ResourceClaim | None = None


@dataclass(frozen=True, slots=True)
class BatchClaimOutcome:
    """Result of an all-or-nothing multi-key claim."""

    granted: bool
    claimed_keys: tuple[str, ...] = ()
    conflicts: dict[str, str] = field(default_factory=dict)


class ResourceRegistry:
    """Thread-safe claims table keyed by resource key."""

    def __init__(self, *, event_log: EventLog | None = None, logger: Any | None = None) -> None:
        self._lock = threading.Lock()
        self._claims: dict[str, ResourceClaim] = {}
        self._clock = 0
        self._event_log = event_log
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def logical_clock(self) -> int:
        with self._lock:
            return self._clock

    def compare_and_set(self, resource_key: str, task_id: str) -> ClaimOutcome:
        """Claim ``resource_key`` for ``task_id`` if it is free or already theirs."""
        key = _require_key(resource_key)
        with self._lock:
            existing = self._claims.get(key)
            if existing is not None and existing.owning_task_id != task_id:
                self._record(
                    EventType.RESOURCE_CLAIM_REJECTED,
                    {"task_id": task_id, "resource_key": key, "holder": existing.owning_task_id},
                )
                return ClaimOutcome(granted=False, holder=existing.owning_task_id, claim=existing)
            claim = existing or self._grant(key, task_id)
            return ClaimOutcome(granted=True, holder=task_id, claim=claim)

    def claim_all(self, resource_keys: Iterable[str], task_id: str) -> BatchClaimOutcome:
        """Claim every key for ``task_id`` or none of them.

        Keys are checked in sorted order. On conflict nothing is claimed and the
        conflicting holders are returned as ``{resource_key: holder}``.
        """
        keys = sorted({_require_key(key) for key in resource_keys})
        with self._lock:
            conflicts = {
                key: self._claims[key].owning_task_id
                for key in keys
                if key in self._claims and self._claims[key].owning_task_id != task_id
            }
            if conflicts:
                self._record(
                    EventType.RESOURCE_CLAIM_REJECTED,
                    {"task_id": task_id, "resource_keys": keys, "conflicts": dict(conflicts)},
                )
                self._logger.info(
                    "control_plane_claim_rejected",
                    task_id=task_id,
                    conflicts=conflicts,
                )
                return BatchClaimOutcome(granted=False, conflicts=conflicts)
            for key in keys:
                if key not in self._claims:
                    self._grant(key, task_id)
            return BatchClaimOutcome(granted=True, claimed_keys=tuple(keys))

    def release_task(self, task_id: str) -> tuple[str, ...]:
        """Release every claim held by ``task_id`` and return the released keys."""
        with self._lock:
            released = tuple(
                sorted(key for key, claim in self._claims.items() if claim.owning_task_id == task_id)
            )
            if not released:
                return ()
            self._record(
                EventType.RESOURCE_RELEASED,
                {"task_id": task_id, "resource_keys": list(released)},
            )
            for key in released:
                del self._claims[key]
            return released

    def holder(self, resource_key: str) -> str | None:
        with self._lock:
            claim = self._claims.get(resource_key)
            return None if claim is None else claim.owning_task_id

    def claims_of(self, task_id: str) -> tuple[str, ...]:
        with self._lock:
            return tuple(
                sorted(key for key, claim in self._claims.items() if claim.owning_task_id == task_id)
            )

    def snapshot(self) -> dict[str, JSONValue]:
        with self._lock:
            return {
                "logical_clock": self._clock,
                "claims": [self._claims[key].to_dict() for key in sorted(self._claims)],
            }

    def _grant(self, key: str, task_id: str) -> ResourceClaim:
        # Caller holds the lock.
        self._clock += 1
        claim = ResourceClaim(resource_key=key, owning_task_id=task_id, claimed_at=self._clock)
        self._record(EventType.RESOURCE_CLAIMED, {"task_id": task_id, **claim.to_dict()})
        self._claims[key] = claim
        return claim

    def _record(self, event_type: EventType, payload: Mapping[str, object]) -> None:
        if self._event_log is not None:
            self._event_log.append(_ACTOR, event_type, payload)


def _require_key(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("resource key must be a non-empty string")
    return value.strip()


__all__ = ["BatchClaimOutcome", "ClaimOutcome", "ResourceClaim", "ResourceRegistry"]
