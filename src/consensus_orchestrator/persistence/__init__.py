"""Persistence layer: the append-only event log and replay helpers."""

from consensus_orchestrator.persistence.event_log import (
    EventLog,
    EventLogError,
    InMemoryEventLog,
    SQLiteEventLog,
)
from consensus_orchestrator.persistence.replay import ReplayedTask, replay_task_states

__all__ = [
    "EventLog",
    "EventLogError",
    "InMemoryEventLog",
    "ReplayedTask",
    "SQLiteEventLog",
    "replay_task_states",
]
