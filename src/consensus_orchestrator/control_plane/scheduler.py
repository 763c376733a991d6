"""
Scheduler/executor for one task graph.

The executor is the single arbiter of task state. Workers run as independent asyncio
tasks and only talk to it through dispatch (a :class:`TaskSpecView`) and response (the
awaited return value).

Ordering rules:
- every transition is appended to the event log before the in-memory status changes;
- the ready set is drained in task-id order, up to ``max_concurrency`` in flight;
- responses finishing at the same wake-up form one admission round, processed in task-id
  order in three phases: result coercion and gates, conflict admission, then completion
  and dependent unblocking.

Failures of any recoverable kind (worker error, timeout, invalid result, gate failure,
conflict) go through the same :class:`RetryPolicy`. Escalation ends one branch only;
siblings keep running and transitive dependents stay ``blocked``.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Protocol, runtime_checkable

import structlog

from consensus_orchestrator.constants import DEFAULT_MAX_CONCURRENCY
from consensus_orchestrator.control_plane.conflict_detector import ConflictDetector
from consensus_orchestrator.control_plane.feedback import build_feedback
from consensus_orchestrator.control_plane.resource_registry import ResourceRegistry
from consensus_orchestrator.control_plane.retry_policy import RetryPolicy
from consensus_orchestrator.domain.errors import ConfigurationError
from consensus_orchestrator.domain.events import EventType, as_json_object
from consensus_orchestrator.domain.models import (
    Escalation,
    FailureKind,
    FailureRecord,
    JSONValue,
    TaskKind,
    TaskNode,
    TaskResult,
    TaskStatus,
    WorkerCapability,
    coerce_task_result,
)
from consensus_orchestrator.observability.logging import correlation_scope
from consensus_orchestrator.observability.metrics import MetricsRegistry, RunMetric
from consensus_orchestrator.persistence.event_log import EventLog
from consensus_orchestrator.planning.task_graph import TaskGraph
from consensus_orchestrator.utils.concurrency import (
    CancellationToken,
    DispatchSlots,
    run_with_timeout,
)
from consensus_orchestrator.verification_plane.quality_gates import (
    GateCheckpoint,
    GateContext,
    GateRegistry,
    QualityGate,
    evaluate_gates,
)

REQUEST_OWNER: Final[str] = "request"
_ACTOR: Final[str] = "executor"


@dataclass(frozen=True, slots=True)
class TaskSpecView:
    """What a worker sees for one attempt."""

    task_id: str
    kind: TaskKind
    domain: str
    attempt: int
    spec: dict[str, JSONValue]
    feedback: tuple[dict[str, JSONValue], ...] = ()

    @property
    def capability(self) -> WorkerCapability:
        return self.kind.capability

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task_id": self.task_id,
            "kind": self.kind.value,
            "domain": self.domain,
            "attempt": self.attempt,
            "spec": dict(self.spec),
            "feedback": [dict(item) for item in self.feedback],
        }


@runtime_checkable
class Worker(Protocol):
    async def run(self, task: TaskSpecView) -> object: ...


class _CallableWorker:
    __slots__ = ("name", "_func")

    def __init__(self, func: Callable[[TaskSpecView], Awaitable[object]], name: str) -> None:
        self._func = func
        self.name = name

    async def run(self, task: TaskSpecView) -> object:
        return await self._func(task)


class WorkerPool:
    """Maps each worker capability to the worker that serves it."""

    def __init__(
        self,
        workers: Mapping[WorkerCapability | str, Worker | Callable[[TaskSpecView], Awaitable[object]]]
        | None = None,
    ) -> None:
        self._workers: dict[WorkerCapability, Worker] = {}
        for capability, worker in (workers or {}).items():
            self.register(capability, worker)

    def register(
        self,
        capability: WorkerCapability | str,
        worker: Worker | Callable[[TaskSpecView], Awaitable[object]],
    ) -> None:
        tag = WorkerCapability(capability)
        if isinstance(worker, Worker):
            self._workers[tag] = worker
        elif inspect.iscoroutinefunction(worker):
            self._workers[tag] = _CallableWorker(worker, name=f"{tag.value}-worker")
        else:
            raise TypeError(
                f"worker for {tag.value!r} must define 'async run(task)' or be an async callable"
            )

    def for_capability(self, capability: WorkerCapability) -> Worker:
        worker = self._workers.get(capability)
        if worker is None:
            raise ConfigurationError(f"no worker registered for capability {capability.value!r}")
        return worker

    def capabilities(self) -> tuple[WorkerCapability, ...]:
        return tuple(sorted(self._workers))

    def __contains__(self, capability: object) -> bool:
        return capability in self._workers


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    graph: TaskGraph
    escalations: tuple[Escalation, ...] = ()
    blocked: tuple[str, ...] = ()
    dispatch_order: tuple[str, ...] = ()
    failures: dict[str, tuple[FailureRecord, ...]] = field(default_factory=dict)

    @property
    def completed(self) -> tuple[str, ...]:
        return self.graph.nodes_with_status(TaskStatus.COMPLETED)

    @property
    def succeeded(self) -> bool:
        return not self.escalations and not self.blocked

    def analyzer_results(self) -> tuple[TaskNode, ...]:
        """Completed analyzer nodes in task-id order."""
        return tuple(
            node
            for node in self.graph
            if node.kind is TaskKind.ANALYZER and node.status is TaskStatus.COMPLETED
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "completed": list(self.completed),
            "escalations": [item.to_dict() for item in self.escalations],
            "blocked": list(self.blocked),
            "dispatch_order": list(self.dispatch_order),
            "nodes": [node.to_dict() for node in self.graph],
        }


@dataclass(slots=True)
class _Candidate:
    node: TaskNode
    result: TaskResult
    advisory: tuple[dict[str, JSONValue], ...] = ()


class Executor:
    """Drives one :class:`TaskGraph` to a terminal state."""

    def __init__(
        self,
        graph: TaskGraph,
        workers: WorkerPool,
        *,
        registry: ResourceRegistry,
        event_log: EventLog,
        gates: GateRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        reserved_resources: Iterable[str] = (),
        stop_on_gate_failure: bool = False,
        metrics: MetricsRegistry | None = None,
        cancel_token: CancellationToken | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        self._graph = graph
        self._workers = workers
        self._registry = registry
        self._event_log = event_log
        self._policy = retry_policy if retry_policy is not None else RetryPolicy()
        self._slots = DispatchSlots(max_concurrency)
        self._reserved = frozenset(reserved_resources)
        self._stop_on_gate_failure = stop_on_gate_failure
        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._cancel_token = cancel_token
        self._sleep = sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._detector = ConflictDetector(registry, event_log=event_log, logger=self._logger)

        gate_registry = gates if gates is not None else GateRegistry.with_builtins()
        self._node_gates: dict[str, tuple[QualityGate, ...]] = {
            node.id: gate_registry.resolve(node.gates) for node in graph
        }
        for node in graph:
            workers.for_capability(node.kind.capability)

        self._failures: dict[str, list[FailureRecord]] = {}
        self._delays: dict[str, float] = {}
        self._dispatch_order: list[str] = []
        self._escalations: list[Escalation] = []

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    async def execute(self) -> ExecutionOutcome:
        in_flight: dict[asyncio.Task[object], str] = {}
        if self._reserved:
            self._registry.claim_all(self._reserved, REQUEST_OWNER)
        try:
            while True:
                self._dispatch_ready(in_flight)
                if not in_flight:
                    break
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                finished = sorted(
                    ((in_flight.pop(task), task) for task in done), key=lambda item: item[0]
                )
                for _ in finished:
                    self._slots.release()
                self._process_round(finished)
        except asyncio.CancelledError:
            for task in in_flight:
                task.cancel()
            await asyncio.gather(*in_flight, return_exceptions=True)
            raise
        finally:
            if self._reserved:
                self._registry.release_task(REQUEST_OWNER)

        blocked = tuple(node.id for node in self._graph if not node.is_terminal)
        self._metrics.set_gauge(RunMetric.SLOTS_PEAK, float(self._slots.peak))
        self._logger.info(
            "control_plane_execution_finished",
            completed=len(self._graph.nodes_with_status(TaskStatus.COMPLETED)),
            escalated=len(self._escalations),
            blocked=len(blocked),
        )
        return ExecutionOutcome(
            graph=self._graph,
            escalations=tuple(self._escalations),
            blocked=blocked,
            dispatch_order=tuple(self._dispatch_order),
            failures={key: tuple(value) for key, value in sorted(self._failures.items())},
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch_ready(self, in_flight: dict[asyncio.Task[object], str]) -> None:
        if self._cancel_token is not None:
            self._cancel_token.raise_if_cancelled()
        in_flight_ids = set(in_flight.values())
        for task_id in self._graph.ready_nodes():
            if self._slots.available <= 0:
                return
            node = self._graph.node(task_id)
            if node.resources and not self._claim_declared(node, in_flight_ids):
                continue
            in_flight[self._dispatch(node)] = task_id
            in_flight_ids.add(task_id)

    def _claim_declared(self, node: TaskNode, in_flight_ids: set[str]) -> bool:
        outcome = self._registry.claim_all(node.resources, node.id)
        if outcome.granted:
            return True
        # Keys held by another in-flight task: wait for it to finish. Keys held by the
        # request owner never free up; admission will reject the result as a conflict.
        return not any(holder in in_flight_ids for holder in outcome.conflicts.values())

    def _dispatch(self, node: TaskNode) -> asyncio.Task[object]:
        capability = node.kind.capability
        worker = self._workers.for_capability(capability)
        owner = str(getattr(worker, "name", f"{capability.value}-worker"))
        attempt = node.retry_count + 1
        delay = self._delays.pop(node.id, 0.0)

        self._append(
            EventType.TASK_ASSIGNED,
            {
                "task_id": node.id,
                "attempt": attempt,
                "owner": owner,
                "capability": capability.value,
                "retry_count": node.retry_count,
            },
        )
        node.transition(TaskStatus.IN_PROGRESS)
        node.owner = owner
        self._slots.acquire()
        self._dispatch_order.append(node.id)
        self._metrics.inc(RunMetric.TASKS_DISPATCHED)
        self._metrics.set_gauge(RunMetric.IN_FLIGHT, float(self._slots.in_use))

        view = TaskSpecView(
            task_id=node.id,
            kind=node.kind,
            domain=node.domain,
            attempt=attempt,
            spec=self._spec_for(node),
            feedback=node.feedback,
        )
        with correlation_scope(task_id=node.id):
            self._logger.debug("control_plane_task_dispatched", task_id=node.id, attempt=attempt)
        return asyncio.create_task(self._attempt(worker, view, delay), name=f"task:{node.id}")

    def _spec_for(self, node: TaskNode) -> dict[str, JSONValue]:
        spec: dict[str, JSONValue] = dict(node.spec)
        if node.feedback:
            spec["feedback"] = [dict(item) for item in node.feedback]
        if node.kind is TaskKind.VALIDATOR:
            builder_id = self._graph.builder_of(node.id)
            if builder_id is not None:
                builder = self._graph.node(builder_id)
                spec["builder_id"] = builder_id
                spec["builder_result"] = None if builder.result is None else builder.result.to_dict()
        return spec

    async def _attempt(self, worker: Worker, view: TaskSpecView, delay: float) -> object:
        if delay > 0:
            await self._sleep(delay)
        started = time.monotonic()
        try:
            return await run_with_timeout(
                worker.run(view), self._policy.worker_timeout_seconds, self._cancel_token
            )
        finally:
            self._metrics.observe(RunMetric.WORKER_SECONDS, time.monotonic() - started)

    # ------------------------------------------------------------------
    # Admission rounds
    # ------------------------------------------------------------------

    def _process_round(self, finished: list[tuple[str, asyncio.Task[object]]]) -> None:
        failures: dict[str, FailureRecord] = {}
        candidates: list[_Candidate] = []

        for task_id, task in finished:
            node = self._graph.node(task_id)
            candidate, failure = self._evaluate_response(node, task)
            if failure is not None:
                failures[task_id] = failure
            elif candidate is not None:
                candidates.append(candidate)

        accepted: list[_Candidate] = []
        for candidate in candidates:
            admission = self._detector.admit(candidate.node.id, candidate.result)
            if admission.accepted:
                accepted.append(candidate)
                continue
            self._metrics.inc(RunMetric.CONFLICTS_DETECTED)
            failures[candidate.node.id] = FailureRecord(
                attempt=candidate.node.retry_count + 1,
                kind=FailureKind.CONFLICT,
                message=str(admission.to_error(candidate.node.id)),
                reasons=tuple(
                    {"code": "conflict", "resource_key": key, "holder": holder}
                    for key, holder in sorted(admission.conflicts.items())
                ),
                details={"conflicts": dict(admission.conflicts)},
            )

        for candidate in accepted:
            self._complete(candidate)
        for task_id in sorted(failures):
            self._fail(self._graph.node(task_id), failures[task_id])
        for candidate in accepted:
            self._unblock_dependents(candidate.node)

    def _evaluate_response(
        self, node: TaskNode, task: asyncio.Task[object]
    ) -> tuple[_Candidate | None, FailureRecord | None]:
        attempt = node.retry_count + 1
        if task.cancelled():
            raise asyncio.CancelledError(f"worker task for {node.id!r} was cancelled")
        exc = task.exception()
        if exc is not None and not isinstance(exc, Exception):
            raise exc
        if isinstance(exc, TimeoutError):
            self._metrics.inc(RunMetric.WORKER_TIMEOUTS)
            self._append(
                EventType.WORKER_TIMEOUT,
                {
                    "task_id": node.id,
                    "attempt": attempt,
                    "timeout_seconds": self._policy.worker_timeout_seconds,
                },
            )
            return None, FailureRecord(
                attempt=attempt,
                kind=FailureKind.WORKER_TIMEOUT,
                message=f"worker did not respond within {self._policy.worker_timeout_seconds}s",
                details={"timeout_seconds": self._policy.worker_timeout_seconds},
            )
        if exc is not None:
            self._append(
                EventType.WORKER_ERROR,
                {
                    "task_id": node.id,
                    "attempt": attempt,
                    "error_type": type(exc).__name__,
                    "message": str(exc),
                },
            )
            return None, FailureRecord(
                attempt=attempt,
                kind=FailureKind.WORKER_ERROR,
                message=str(exc) or type(exc).__name__,
                details={"error_type": type(exc).__name__},
            )

        try:
            result = coerce_task_result(node.kind, task.result())
            as_json_object(result.to_dict(), "result")
        except ValueError as invalid:
            return None, FailureRecord(
                attempt=attempt,
                kind=FailureKind.INVALID_RESULT,
                message=str(invalid),
                reasons=({"code": FailureKind.INVALID_RESULT.value, "message": str(invalid)},),
            )

        context = GateContext(
            task_id=node.id,
            kind=node.kind,
            domain=node.domain,
            attempt=attempt,
            spec=dict(node.spec),
            reserved_resources=self._reserved,
        )
        gates = self._node_gates.get(node.id, ())
        advisory: list[dict[str, JSONValue]] = []
        for checkpoint in (GateCheckpoint.WORKER_IDLE, GateCheckpoint.CANDIDATE_COMPLETION):
            outcome = evaluate_gates(
                gates,
                result,
                context,
                checkpoint,
                stop_on_failure=self._stop_on_gate_failure,
                event_log=self._event_log,
                logger=self._logger,
            )
            advisory.extend({"checkpoint": checkpoint.value, **item} for item in outcome.advisory)
            if not outcome.passed:
                self._metrics.inc(RunMetric.GATE_FAILURES)
                return None, FailureRecord(
                    attempt=attempt,
                    kind=FailureKind.GATE_FAILURE,
                    message=str(outcome.to_error(node.id)),
                    reasons=outcome.reasons,
                    details={"checkpoint": checkpoint.value},
                )
        return _Candidate(node=node, result=result, advisory=tuple(advisory)), None

    def _complete(self, candidate: _Candidate) -> None:
        node = candidate.node
        self._append(
            EventType.TASK_COMPLETED,
            {
                "task_id": node.id,
                "attempt": node.retry_count + 1,
                "retry_count": node.retry_count,
                "touched_resources": list(candidate.result.touched_resources()),
                "result": candidate.result.to_dict(),
                "advisory_gate_failures": [dict(item) for item in candidate.advisory],
            },
        )
        node.result = candidate.result
        node.transition(TaskStatus.COMPLETED)
        self._registry.release_task(node.id)
        self._metrics.inc(RunMetric.TASKS_COMPLETED)
        self._logger.info(
            "control_plane_task_completed",
            task_id=node.id,
            attempts=node.retry_count + 1,
        )

    def _fail(self, node: TaskNode, record: FailureRecord) -> None:
        history = self._failures.setdefault(node.id, [])
        history.append(record)
        decision = self._policy.decide(node.retry_count, max_retries=node.max_retries)

        self._append(
            EventType.TASK_REJECTED,
            {
                "task_id": node.id,
                "attempt": record.attempt,
                "retry_count": node.retry_count,
                "failure": record.to_dict(),
            },
        )
        node.transition(TaskStatus.REJECTED)
        self._registry.release_task(node.id)
        self._metrics.inc(RunMetric.TASKS_REJECTED)

        if decision.should_retry:
            feedback = build_feedback(record)
            self._append(
                EventType.TASK_REQUEUED,
                {
                    "task_id": node.id,
                    "retry_count": decision.next_retry_count,
                    "delay_seconds": decision.delay_seconds,
                    "reason_codes": list(record.reason_codes),
                },
            )
            node.retry_count = decision.next_retry_count
            node.feedback = (*node.feedback, feedback)
            node.transition(TaskStatus.PENDING)
            if decision.delay_seconds > 0:
                self._delays[node.id] = decision.delay_seconds
            self._logger.info(
                "control_plane_task_requeued",
                task_id=node.id,
                failure_kind=record.kind.value,
                retry_count=node.retry_count,
                max_retries=node.max_retries,
            )
            return

        blocked_dependents = self._graph.dependents_of(node.id, transitive=True)
        self._append(
            EventType.TASK_ESCALATED,
            {
                "task_id": node.id,
                "retry_count": decision.next_retry_count,
                "max_retries": node.max_retries,
                "blocked_dependents": list(blocked_dependents),
                "failures": [item.to_dict() for item in history],
            },
        )
        node.retry_count = decision.next_retry_count
        node.transition(TaskStatus.ESCALATED)
        self._metrics.inc(RunMetric.TASKS_ESCALATED)
        self._escalations.append(
            Escalation(
                task_id=node.id,
                kind=node.kind,
                domain=node.domain,
                retry_count=node.retry_count,
                max_retries=node.max_retries,
                failures=tuple(history),
                blocked_dependents=blocked_dependents,
            )
        )
        self._logger.warning(
            "control_plane_task_escalated",
            task_id=node.id,
            failure_kind=record.kind.value,
            retry_count=node.retry_count,
            blocked_dependents=list(blocked_dependents),
        )

    def _unblock_dependents(self, node: TaskNode) -> None:
        for dependent_id in self._graph.dependents_of(node.id):
            dependent = self._graph.node(dependent_id)
            if dependent.status is not TaskStatus.BLOCKED:
                continue
            if all(
                self._graph.node(dep).status is TaskStatus.COMPLETED
                for dep in self._graph.dependencies_of(dependent_id)
            ):
                self._append(
                    EventType.TASK_UNBLOCKED,
                    {"task_id": dependent_id, "unblocked_by": node.id},
                )
                dependent.transition(TaskStatus.PENDING)

    def _append(self, event_type: EventType, payload: Mapping[str, object]) -> None:
        self._event_log.append(_ACTOR, event_type, payload)


__all__ = [
    "ExecutionOutcome",
    "Executor",
    "REQUEST_OWNER",
    "TaskSpecView",
    "Worker",
    "WorkerPool",
]
