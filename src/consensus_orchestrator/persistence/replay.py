"""Rebuild task state from event-log records alone."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from consensus_orchestrator.domain.events import STATUS_EVENT_TYPES, EventRecord, EventType


@dataclass(slots=True)
class ReplayedTask:
    task_id: str
    status: str
    retry_count: int = 0
    last_seq: int = 0
    history: list[str] = field(default_factory=list)


def replay_task_states(records: Iterable[EventRecord]) -> dict[str, ReplayedTask]:
    """Fold task lifecycle events into the last durable status of every task.

    Records must be in sequence order; a gap or reordering raises ``ValueError``
    because replay would otherwise silently diverge from the run it describes.
    """
    tasks: dict[str, ReplayedTask] = {}
    expected_seq: int | None = None
    for record in records:
        if expected_seq is not None and record.seq != expected_seq:
            raise ValueError(f"event log gap: expected seq {expected_seq}, got {record.seq}")
        expected_seq = record.seq + 1

        task_id = record.payload.get("task_id")
        if not isinstance(task_id, str):
            continue

        if record.type is EventType.TASK_CREATED:
            status = record.payload.get("status")
            tasks[task_id] = ReplayedTask(
                task_id=task_id,
                status=status if isinstance(status, str) else "pending",
                last_seq=record.seq,
                history=[status if isinstance(status, str) else "pending"],
            )
            continue

        target = STATUS_EVENT_TYPES.get(record.type)
        if target is None:
            continue
        state = tasks.get(task_id)
        if state is None:
            raise ValueError(f"event {record.seq} references unknown task {task_id!r}")
        state.status = target
        state.last_seq = record.seq
        state.history.append(target)
        retry_count = record.payload.get("retry_count")
        if isinstance(retry_count, int) and not isinstance(retry_count, bool):
            state.retry_count = retry_count

    return dict(sorted(tasks.items()))


__all__ = ["ReplayedTask", "replay_task_states"]
