"""Unit tests for rebuilding task state from the event log."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from consensus_orchestrator.domain.events import EventRecord, EventType
from consensus_orchestrator.persistence.event_log import InMemoryEventLog
from consensus_orchestrator.persistence.replay import replay_task_states

_TS = datetime(2026, 3, 1, tzinfo=UTC)


def test_replay_folds_lifecycle_events() -> None:
    log = InMemoryEventLog()
    log.append("graph_builder", EventType.TASK_CREATED, {"task_id": "b", "status": "pending"})
    log.append("graph_builder", EventType.TASK_CREATED, {"task_id": "v", "status": "blocked"})
    log.append("executor", EventType.TASK_ASSIGNED, {"task_id": "b", "attempt": 1})
    log.append("executor", EventType.TASK_REJECTED, {"task_id": "b", "retry_count": 0})
    log.append("executor", EventType.TASK_REQUEUED, {"task_id": "b", "retry_count": 1})
    log.append("executor", EventType.GATE_PASSED, {"task_id": "b", "gate": "rationale_present"})
    log.append("executor", EventType.TASK_ASSIGNED, {"task_id": "b", "attempt": 2})
    log.append("executor", EventType.TASK_COMPLETED, {"task_id": "b"})
    log.append("executor", EventType.TASK_UNBLOCKED, {"task_id": "v"})
    log.append("executor", EventType.RUN_COMPLETED, {"run_id": "r"})

    states = replay_task_states(log.records())

    assert list(states) == ["b", "v"]
    assert states["b"].status == "completed"
    assert states["b"].retry_count == 1
    assert states["b"].history == [
        "pending",
        "in_progress",
        "rejected",
        "pending",
        "in_progress",
        "completed",
    ]
    assert states["b"].last_seq == 8
    assert states["v"].status == "pending"
    assert states["v"].history == ["blocked", "pending"]


def test_replay_rejects_sequence_gaps() -> None:
    records = [
        EventRecord(1, "x", EventType.TASK_CREATED, {"task_id": "a", "status": "pending"}, _TS),
        EventRecord(3, "x", EventType.TASK_ASSIGNED, {"task_id": "a"}, _TS),
    ]

    with pytest.raises(ValueError, match="gap"):
        replay_task_states(records)


def test_replay_rejects_events_for_unknown_tasks() -> None:
    records = [EventRecord(1, "x", EventType.TASK_ASSIGNED, {"task_id": "ghost"}, _TS)]

    with pytest.raises(ValueError, match="unknown task 'ghost'"):
        replay_task_states(records)


def test_replay_of_empty_log_is_empty() -> None:
    assert replay_task_states(()) == {}
