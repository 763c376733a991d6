"""Event-log record definitions, serialization, and payload validation."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_JSON_DEPTH = 16


class EventType(StrEnum):
    """Every orchestration action that is appended to the event log."""

    RUN_STARTED = "RunStarted"
    RUN_COMPLETED = "RunCompleted"

    GRAPH_BUILT = "GraphBuilt"
    GRAPH_REJECTED = "GraphRejected"

    TASK_CREATED = "TaskCreated"
    TASK_UNBLOCKED = "TaskUnblocked"
    TASK_ASSIGNED = "TaskAssigned"
    TASK_COMPLETED = "TaskCompleted"
    TASK_REJECTED = "TaskRejected"
    TASK_REQUEUED = "TaskRequeued"
    TASK_ESCALATED = "TaskEscalated"

    WORKER_ERROR = "WorkerError"
    WORKER_TIMEOUT = "WorkerTimeout"

    GATE_PASSED = "GatePassed"
    GATE_FAILED = "GateFailed"
    GATE_SKIPPED = "GateSkipped"

    RESOURCE_CLAIMED = "ResourceClaimed"
    RESOURCE_CLAIM_REJECTED = "ResourceClaimRejected"
    RESOURCE_RELEASED = "ResourceReleased"
    CONFLICT_DETECTED = "ConflictDetected"

    FINDING_DROPPED = "FindingDropped"
    FINDING_EXCLUDED = "FindingExcluded"
    CONSENSUS_COMPLETED = "ConsensusCompleted"


# Task transition events mapped to the status they record; TaskCreated carries its own.
STATUS_EVENT_TYPES: dict[EventType, str] = {
    EventType.TASK_UNBLOCKED: "pending",
    EventType.TASK_ASSIGNED: "in_progress",
    EventType.TASK_COMPLETED: "completed",
    EventType.TASK_REJECTED: "rejected",
    EventType.TASK_REQUEUED: "pending",
    EventType.TASK_ESCALATED: "escalated",
}


@dataclass(frozen=True, slots=True)
class EventRecord:
    """Immutable, sequenced entry of the append-only event log."""

    seq: int
    actor: str
    type: EventType
    payload: dict[str, JSONValue]
    timestamp: datetime

    def __post_init__(self) -> None:
        if isinstance(self.seq, bool) or not isinstance(self.seq, int) or self.seq < 1:
            raise ValueError(f"EventRecord.seq: expected integer >= 1, got {self.seq!r}")
        object.__setattr__(self, "actor", _as_str(self.actor, "EventRecord.actor"))
        object.__setattr__(self, "type", _as_event_type(self.type, "EventRecord.type"))
        object.__setattr__(self, "payload", as_json_object(self.payload, "EventRecord.payload"))
        object.__setattr__(
            self, "timestamp", _as_utc_datetime(self.timestamp, "EventRecord.timestamp")
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "seq": self.seq,
            "actor": self.actor,
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": datetime_to_iso8601z(self.timestamp),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> EventRecord:
        if not isinstance(data, dict):
            raise ValueError(f"EventRecord: expected object, got {type(data).__name__}")
        expected = {"seq", "actor", "type", "payload", "timestamp"}
        missing = sorted(expected - set(data))
        if missing:
            raise ValueError(f"EventRecord: missing required fields: {missing}")
        unknown = sorted(set(data) - expected)
        if unknown:
            raise ValueError(f"EventRecord: unexpected fields: {unknown}")
        seq = data["seq"]
        if isinstance(seq, bool) or not isinstance(seq, int):
            raise ValueError("EventRecord.seq: expected integer")
        return cls(
            seq=seq,
            actor=_as_str(data["actor"], "EventRecord.actor"),
            type=_as_event_type(data["type"], "EventRecord.type"),
            payload=as_json_object(data["payload"], "EventRecord.payload"),
            timestamp=_as_utc_datetime(data["timestamp"], "EventRecord.timestamp"),
        )

    @classmethod
    def from_json(cls, raw: str) -> EventRecord:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"EventRecord: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("EventRecord: JSON root must be an object")
        return cls.from_dict(parsed)


def datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_utc_datetime(value, "timestamp")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


def as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    """Validate ``value`` as JSON, converting tuples to lists and enums to their values."""
    if depth > _MAX_JSON_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, StrEnum):
        return value.value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return [
            as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    parsed = value.strip()
    if not parsed:
        raise ValueError(f"{path}: must not be empty")
    return parsed


def _as_event_type(value: object, path: str) -> EventType:
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string event type, got {type(value).__name__}")
    try:
        return EventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in EventType)
        raise ValueError(f"{path}: unsupported event type {value!r}; allowed: {allowed}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise ValueError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


__all__ = [
    "EventRecord",
    "EventType",
    "JSONScalar",
    "JSONValue",
    "STATUS_EVENT_TYPES",
    "as_json_object",
    "as_json_value",
    "datetime_to_iso8601z",
]
