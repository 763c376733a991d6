"""
Append-only, totally ordered event log.

Purpose
- Record every orchestration action (task transitions, resource claim attempts, gate
  evaluations, dropped findings) for audit and deterministic replay.

Functional requirements
- ``append`` returns a strictly increasing sequence number starting at 1.
- No update or delete operation exists.
- ``read_from(seq)`` returns records with ``record.seq >= seq`` in sequence order.

Non-functional requirements
- Appends are atomic with respect to the sequence counter under concurrent writers
  (threads for the in-memory log; threads and processes for the SQLite log).
"""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from consensus_orchestrator.constants import EVENT_LOG_SCHEMA_VERSION
from consensus_orchestrator.domain.events import (
    EventRecord,
    EventType,
    JSONValue,
    as_json_object,
    datetime_to_iso8601z,
)

Clock = Callable[[], datetime]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000

_SCHEMA_STATEMENTS: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS event_log_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        seq INTEGER PRIMARY KEY,
        actor TEXT NOT NULL,
        type TEXT NOT NULL,
        payload TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    # Append-only: reject in-place mutation at the storage layer too.
    """
    CREATE TRIGGER IF NOT EXISTS events_no_update BEFORE UPDATE ON events
    BEGIN SELECT RAISE(ABORT, 'event log is append-only'); END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS events_no_delete BEFORE DELETE ON events
    BEGIN SELECT RAISE(ABORT, 'event log is append-only'); END
    """,
)


class EventLogError(RuntimeError):
    """Raised when the event log storage cannot be opened or written."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class EventLog(ABC):
    """Abstract ordered, durable log interface."""

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock if clock is not None else _utc_now

    @property
    @abstractmethod
    def reference(self) -> str:
        """Opaque locator included in final reports."""

    @property
    @abstractmethod
    def last_seq(self) -> int:
        """Sequence number of the newest record, ``0`` when empty."""

    @abstractmethod
    def append(
        self,
        actor: str,
        event_type: EventType | str,
        payload: Mapping[str, object] | None = None,
    ) -> int:
        """Append one event and return its sequence number."""

    @abstractmethod
    def read_from(self, seq: int = 1) -> tuple[EventRecord, ...]:
        """Return records with ``seq`` greater than or equal to ``seq``."""

    def records(self) -> tuple[EventRecord, ...]:
        return self.read_from(1)

    def __len__(self) -> int:
        return self.last_seq

    def _prepare(
        self,
        actor: str,
        event_type: EventType | str,
        payload: Mapping[str, object] | None,
    ) -> tuple[str, EventType, dict[str, JSONValue], datetime]:
        if not isinstance(actor, str) or not actor.strip():
            raise ValueError("event actor must be a non-empty string")
        resolved_type = EventType(event_type)
        resolved_payload = as_json_object(dict(payload or {}), f"{resolved_type.value}.payload")
        return actor.strip(), resolved_type, resolved_payload, self._clock()


class InMemoryEventLog(EventLog):
    """Thread-safe in-process event log."""

    def __init__(self, *, name: str = "memory", clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self._name = name
        self._lock = threading.Lock()
        self._records: list[EventRecord] = []

    @property
    def reference(self) -> str:
        return f"memory://{self._name}"

    @property
    def last_seq(self) -> int:
        with self._lock:
            return len(self._records)

    def append(
        self,
        actor: str,
        event_type: EventType | str,
        payload: Mapping[str, object] | None = None,
    ) -> int:
        actor_name, resolved_type, resolved_payload, timestamp = self._prepare(
            actor, event_type, payload
        )
        with self._lock:
            seq = len(self._records) + 1
            self._records.append(
                EventRecord(
                    seq=seq,
                    actor=actor_name,
                    type=resolved_type,
                    payload=resolved_payload,
                    timestamp=timestamp,
                )
            )
        return seq

    def read_from(self, seq: int = 1) -> tuple[EventRecord, ...]:
        start = max(1, _validate_seq(seq))
        with self._lock:
            return tuple(self._records[start - 1 :])


class SQLiteEventLog(EventLog):
    """Durable event log stored in a SQLite database (WAL journal).

    One connection is opened per instance and shared by every thread that uses it; the
    instance lock serializes access. Other processes coordinate through SQLite locking.
    ``close`` releases the connection and the next operation reopens it.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(clock=clock)
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            try:
                self._ensure_schema()
            except Exception:
                self._close_connection()
                raise

    @property
    def path(self) -> Path:
        return self._path

    @property
    def reference(self) -> str:
        return f"sqlite://{self._path.as_posix()}"

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def last_seq(self) -> int:
        with self._lock, self._connection() as conn:
            row = conn.execute("SELECT COALESCE(MAX(seq), 0) FROM events").fetchone()
        return int(row[0])

    def append(
        self,
        actor: str,
        event_type: EventType | str,
        payload: Mapping[str, object] | None = None,
    ) -> int:
        actor_name, resolved_type, resolved_payload, timestamp = self._prepare(
            actor, event_type, payload
        )
        encoded = json.dumps(
            resolved_payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )
        with self._lock, self._connection() as conn, self._transaction(conn):
            row = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM events").fetchone()
            seq = int(row[0])
            conn.execute(
                "INSERT INTO events (seq, actor, type, payload, timestamp) VALUES (?, ?, ?, ?, ?)",
                (seq, actor_name, resolved_type.value, encoded, datetime_to_iso8601z(timestamp)),
            )
        return seq

    def read_from(self, seq: int = 1) -> tuple[EventRecord, ...]:
        start = max(1, _validate_seq(seq))
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                "SELECT seq, actor, type, payload, timestamp FROM events "
                "WHERE seq >= ? ORDER BY seq ASC",
                (start,),
            ).fetchall()
        return tuple(
            EventRecord(
                seq=int(row[0]),
                actor=str(row[1]),
                type=EventType(str(row[2])),
                payload=json.loads(str(row[3])),
                timestamp=str(row[4]),  # type: ignore[arg-type]
            )
            for row in rows
        )

    def close(self) -> None:
        with self._lock:
            self._close_connection()

    def __enter__(self) -> SQLiteEventLog:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        # Callers hold self._lock.
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self._path, isolation_level=None, timeout=30.0, check_same_thread=False
                )
            except sqlite3.Error as exc:
                raise EventLogError(f"unable to open event log {self._path}: {exc}") from exc
            try:
                conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            except sqlite3.Error:
                conn.close()
                raise
            self._conn = conn
        yield self._conn

    def _close_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            journal_row = conn.execute("PRAGMA journal_mode=WAL").fetchone()
            if journal_row is None or str(journal_row[0]).lower() != "wal":
                raise EventLogError("failed to configure WAL journal mode for event log")
            with self._transaction(conn):
                for statement in _SCHEMA_STATEMENTS:
                    conn.execute(statement)
                row = conn.execute(
                    "SELECT value FROM event_log_meta WHERE key = 'schema_version'"
                ).fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO event_log_meta (key, value) VALUES ('schema_version', ?)",
                        (str(EVENT_LOG_SCHEMA_VERSION),),
                    )
                elif int(row[0]) != EVENT_LOG_SCHEMA_VERSION:
                    raise EventLogError(
                        f"event log schema version {row[0]} is not supported "
                        f"(expected {EVENT_LOG_SCHEMA_VERSION})"
                    )


def _validate_seq(seq: int) -> int:
    if isinstance(seq, bool) or not isinstance(seq, int):
        raise ValueError(f"seq must be an integer, got {type(seq).__name__}")
    return seq


__all__ = [
    "Clock",
    "EventLog",
    "EventLogError",
    "InMemoryEventLog",
    "SQLiteEventLog",
]
