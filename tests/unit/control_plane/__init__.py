"""Shared factories for control-plane tests."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from consensus_orchestrator.control_plane.resource_registry import ResourceRegistry
from consensus_orchestrator.control_plane.retry_policy import RetryPolicy
from consensus_orchestrator.control_plane.scheduler import Executor, TaskSpecView, WorkerPool
from consensus_orchestrator.domain.models import Request, WorkerCapability
from consensus_orchestrator.persistence.event_log import InMemoryEventLog
from consensus_orchestrator.planning.graph_builder import GraphBuilder
from consensus_orchestrator.planning.task_graph import TaskGraph
from consensus_orchestrator.verification_plane.quality_gates import GateRegistry

Responder = Callable[[TaskSpecView], Awaitable[object]]


def change(*paths: str, rationale: str = "implemented") -> dict[str, object]:
    return {"change_set": {"changes": [{"path": path} for path in paths]}, "rationale": rationale}


def empty_change(rationale: str = "nothing to do") -> dict[str, object]:
    return {"change_set": {"changes": []}, "rationale": rationale}


async def own_file_change(task: TaskSpecView) -> object:
    return change(f"src/{task.task_id}.py")


class ScriptedWorker:
    """Replays scripted responses per task id and attempt.

    A response may be a value, an exception instance (raised), or an async callable taking
    the task view. The last scripted response repeats for later attempts.
    """

    def __init__(
        self,
        name: str,
        script: Mapping[str, Sequence[object]] | None = None,
        default: object = None,
    ) -> None:
        self.name = name
        self.calls: list[TaskSpecView] = []
        self._script = dict(script or {})
        self._default = default

    async def run(self, task: TaskSpecView) -> object:
        self.calls.append(task)
        responses = self._script.get(task.task_id)
        if responses:
            response = responses[min(task.attempt, len(responses)) - 1]
        else:
            response = self._default
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response(task)
        return response

    def attempts(self, task_id: str) -> list[int]:
        return [call.attempt for call in self.calls if call.task_id == task_id]


def make_request(tasks: Sequence[Mapping[str, object]], **fields: Any) -> Request:
    payload: dict[str, object] = {
        "domain": fields.pop("domain", "web"),
        "description": fields.pop("description", "control-plane test request"),
        "tasks": list(tasks),
    }
    payload.update(fields)
    return Request.from_dict(payload)


def make_pool(
    *,
    builder: object | None = None,
    validator: object | None = None,
    analyzer: object | None = None,
) -> WorkerPool:
    pool = WorkerPool()
    defaults = {
        WorkerCapability.BUILDER: builder or ScriptedWorker("builder", default=own_file_change),
        WorkerCapability.VALIDATOR: validator
        or ScriptedWorker("validator", default=empty_change("verified")),
        WorkerCapability.ANALYZER: analyzer or ScriptedWorker("analyzer", default={"findings": []}),
    }
    for capability, worker in defaults.items():
        pool.register(capability, worker)  # type: ignore[arg-type]
    return pool


def build_graph(request: Request, event_log: InMemoryEventLog, **builder_options: Any) -> TaskGraph:
    return GraphBuilder(event_log=event_log, **builder_options).build(request)


def make_executor(
    graph: TaskGraph,
    pool: WorkerPool,
    event_log: InMemoryEventLog,
    *,
    registry: ResourceRegistry | None = None,
    policy: RetryPolicy | None = None,
    gates: GateRegistry | None = None,
    **options: Any,
) -> Executor:
    return Executor(
        graph,
        pool,
        registry=registry or ResourceRegistry(event_log=event_log),
        event_log=event_log,
        gates=gates,
        retry_policy=policy or RetryPolicy(worker_timeout_seconds=5.0),
        **options,
    )


__all__ = [
    "ScriptedWorker",
    "build_graph",
    "change",
    "empty_change",
    "make_executor",
    "make_pool",
    "make_request",
    "own_file_change",
]
