"""
Translate an incoming request into a validated task graph.

Edges come from two sources:
- explicit ``blocked_by`` declarations;
- the implicit validator rule: every validator is blocked by exactly one paired builder,
  taken from ``pairs_with`` or, failing that, from the builder-domain -> validator-domain
  pairs registry.

A graph that fails validation is rejected before any node runs. Rejections are logged as
``GraphRejected``; accepted graphs produce ``GraphBuilt`` followed by one ``TaskCreated``
per node in topological order.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final

import structlog

from consensus_orchestrator.constants import DEFAULT_MAX_RETRIES
from consensus_orchestrator.domain.errors import CyclicGraphError, GraphBuildError
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.models import (
    Request,
    TaskDeclaration,
    TaskKind,
    TaskNode,
    TaskStatus,
)
from consensus_orchestrator.persistence.event_log import EventLog
from consensus_orchestrator.planning.task_graph import TaskGraph

ACCEPTANCE_GATE: Final[str] = "acceptance_predicate"
_ACTOR: Final[str] = "graph_builder"


class GraphBuilder:
    """Builds one :class:`TaskGraph` per request."""

    def __init__(
        self,
        *,
        event_log: EventLog | None = None,
        pairs: Mapping[str, str] | None = None,
        require_validator_pair: bool = False,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        logger: Any | None = None,
    ) -> None:
        if default_max_retries < 0:
            raise ValueError("default_max_retries must be >= 0")
        self._event_log = event_log
        self._pairs = dict(pairs or {})
        self._require_validator_pair = require_validator_pair
        self._default_max_retries = default_max_retries
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        event_log: EventLog | None = None,
        logger: Any | None = None,
    ) -> GraphBuilder:
        validation = config.get("validation", {})
        retry = config.get("retry", {})
        return cls(
            event_log=event_log,
            pairs=validation.get("pairs", {}),
            require_validator_pair=bool(validation.get("require_validator_pair", False)),
            default_max_retries=int(retry.get("max_retries", DEFAULT_MAX_RETRIES)),
            logger=logger,
        )

    def build(self, request: Request, *, pairs: Mapping[str, str] | None = None) -> TaskGraph:
        """Build and validate the graph for ``request``.

        ``pairs`` overrides entries of the configured pairs registry for this request only.

        Raises ``GraphBuildError`` for structural problems and ``CyclicGraphError`` when the
        dependency edges contain a cycle.
        """
        effective_pairs = {**self._pairs, **dict(pairs or {})}
        try:
            graph = self._assemble(request, effective_pairs)
            order = graph.topological_order()
        except (GraphBuildError, CyclicGraphError) as exc:
            self._reject(request, exc)
            raise

        for task_id in order:
            node = graph.node(task_id)
            node.status = TaskStatus.BLOCKED if node.dependencies else TaskStatus.PENDING

        self._append(
            EventType.GRAPH_BUILT,
            {
                "domain": request.domain,
                "description": request.description,
                "task_count": len(graph),
                "edges": [list(edge) for edge in graph.edges],
                "order": list(order),
                "initial_resources": list(request.initial_resources),
            },
        )
        for task_id in order:
            node = graph.node(task_id)
            self._append(
                EventType.TASK_CREATED,
                {
                    "task_id": node.id,
                    "kind": node.kind.value,
                    "domain": node.domain,
                    "status": node.status.value,
                    "dependencies": sorted(node.dependencies),
                    "max_retries": node.max_retries,
                    "gates": list(node.gates),
                },
            )
        self._logger.info(
            "planning_graph_built",
            request_domain=request.domain,
            task_count=len(graph),
            edge_count=len(graph.edges),
        )
        return graph

    def _assemble(self, request: Request, pairs: Mapping[str, str]) -> TaskGraph:
        if not request.tasks:
            raise GraphBuildError("request declares no tasks")

        acceptance_gate: str | None = None
        if isinstance(request.acceptance_predicate, str):
            acceptance_gate = request.acceptance_predicate
        elif request.acceptance_predicate is not None:
            acceptance_gate = ACCEPTANCE_GATE

        graph = TaskGraph()
        for declaration in request.tasks:
            if declaration.id in graph:
                raise GraphBuildError(f"duplicate task id {declaration.id!r}")
            graph.add_node(self._node_for(declaration, request, acceptance_gate))

        for declaration in request.tasks:
            for dependency in declaration.blocked_by:
                if dependency not in graph:
                    raise GraphBuildError(
                        f"task {declaration.id!r} is blocked by unknown task {dependency!r}"
                    )
                if dependency == declaration.id:
                    raise CyclicGraphError([(dependency, dependency)])
                graph.add_edge(dependency, declaration.id)

        for declaration in request.tasks:
            if declaration.kind is TaskKind.VALIDATOR:
                self._pair_validator(graph, graph.node(declaration.id), pairs)

        if self._require_validator_pair:
            self._check_every_builder_validated(graph)
        return graph

    def _node_for(
        self,
        declaration: TaskDeclaration,
        request: Request,
        acceptance_gate: str | None,
    ) -> TaskNode:
        gates = list(declaration.gates)
        if acceptance_gate is not None and declaration.kind.proposes_changes:
            if acceptance_gate not in gates:
                gates.append(acceptance_gate)
        try:
            return TaskNode(
                id=declaration.id,
                kind=declaration.kind,
                domain=declaration.domain or request.domain,
                max_retries=(
                    self._default_max_retries
                    if declaration.max_retries is None
                    else declaration.max_retries
                ),
                spec=dict(declaration.spec),
                resources=declaration.resources,
                gates=tuple(gates),
                source_id=declaration.source_id,
                pairs_with=declaration.pairs_with,
            )
        except ValueError as exc:
            raise GraphBuildError(str(exc)) from exc

    def _pair_validator(
        self,
        graph: TaskGraph,
        validator: TaskNode,
        pairs: Mapping[str, str],
    ) -> None:
        if validator.pairs_with is not None:
            target = validator.pairs_with
            if target not in graph:
                raise GraphBuildError(
                    f"validator {validator.id!r} pairs with unknown task {target!r}"
                )
            if graph.node(target).kind is not TaskKind.BUILDER:
                raise GraphBuildError(
                    f"validator {validator.id!r} pairs with {target!r}, which is not a builder"
                )
            graph.add_edge(target, validator.id)
        elif not self._declared_builders(graph, validator):
            candidates = [
                node.id
                for node in graph
                if node.kind is TaskKind.BUILDER and pairs.get(node.domain) == validator.domain
            ]
            if len(candidates) == 1:
                graph.add_edge(candidates[0], validator.id)
            elif len(candidates) > 1:
                raise GraphBuildError(
                    f"validator {validator.id!r} matches several builders by domain: {candidates}"
                )

        builders = self._declared_builders(graph, validator)
        if len(builders) != 1:
            raise GraphBuildError(
                f"validator {validator.id!r} must depend on exactly one builder, found {builders}"
            )
        if validator.pairs_with is None:
            validator.pairs_with = builders[0]

    @staticmethod
    def _declared_builders(graph: TaskGraph, validator: TaskNode) -> list[str]:
        return [
            dependency
            for dependency in graph.dependencies_of(validator.id)
            if graph.node(dependency).kind is TaskKind.BUILDER
        ]

    @staticmethod
    def _check_every_builder_validated(graph: TaskGraph) -> None:
        unvalidated = [
            node.id
            for node in graph
            if node.kind is TaskKind.BUILDER
            and not any(
                graph.node(dependent).kind is TaskKind.VALIDATOR
                for dependent in graph.dependents_of(node.id)
            )
        ]
        if unvalidated:
            raise GraphBuildError(f"builders without a paired validator: {unvalidated}")

    def _reject(self, request: Request, exc: Exception) -> None:
        payload: dict[str, object] = {
            "domain": request.domain,
            "error_type": type(exc).__name__,
            "message": str(exc),
        }
        if isinstance(exc, CyclicGraphError):
            payload["cycles"] = [list(cycle) for cycle in exc.cycles]
        self._append(EventType.GRAPH_REJECTED, payload)
        self._logger.warning(
            "planning_graph_rejected",
            request_domain=request.domain,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def _append(self, event_type: EventType, payload: Mapping[str, object]) -> None:
        if self._event_log is not None:
            self._event_log.append(_ACTOR, event_type, payload)


__all__ = ["ACCEPTANCE_GATE", "GraphBuilder"]
