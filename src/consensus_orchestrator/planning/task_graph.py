"""Arena of task nodes with deterministic dependency traversal.

Nodes are owned by the graph and addressed by id; an edge ``parent -> child`` means
``child`` depends on ``parent``. The node's own ``dependencies`` set and the graph's
parent adjacency are kept in sync by :meth:`TaskGraph.add_edge`.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence, Set
from heapq import heapify, heappop, heappush

from consensus_orchestrator.constants import DEFAULT_MAX_RETRIES, TASK_GRAPH_SCHEMA_VERSION
from consensus_orchestrator.domain.errors import CyclicGraphError
from consensus_orchestrator.domain.models import TaskKind, TaskNode, TaskStatus


class TaskGraph:
    """Directed graph of :class:`TaskNode` values keyed by task id."""

    __slots__ = ("_nodes", "_children", "_parents")

    def __init__(self, nodes: Iterable[TaskNode] | None = None) -> None:
        self._nodes: dict[str, TaskNode] = {}
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}
        for node in nodes or ():
            self.add_node(node)
        for node in tuple(self._nodes.values()):
            for dependency in sorted(node.dependencies):
                self.add_edge(dependency, node.id)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._nodes

    def __iter__(self) -> Iterator[TaskNode]:
        for task_id in sorted(self._nodes):
            yield self._nodes[task_id]

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._nodes))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """``(dependency, dependent)`` pairs in deterministic order."""
        return tuple(
            (parent, child)
            for parent in sorted(self._nodes)
            for child in sorted(self._children[parent])
        )

    def node(self, task_id: str) -> TaskNode:
        self._assert_node_exists(task_id)
        return self._nodes[task_id]

    def add_node(self, node: TaskNode) -> None:
        if node.id in self._nodes:
            raise ValueError(f"duplicate task id {node.id!r}")
        self._nodes[node.id] = node
        self._children[node.id] = set()
        self._parents[node.id] = set()

    def add_edge(self, dependency: str, dependent: str) -> None:
        """Record that ``dependent`` may not start before ``dependency`` completes."""
        self._assert_node_exists(dependency)
        self._assert_node_exists(dependent)
        if dependency == dependent:
            raise CyclicGraphError([(dependency, dependency)])
        if dependent in self._children[dependency]:
            return
        self._children[dependency].add(dependent)
        self._parents[dependent].add(dependency)
        node = self._nodes[dependent]
        node.dependencies = node.dependencies | {dependency}

    def topological_order(self) -> tuple[str, ...]:
        """Kahn's algorithm with a min-heap so ties break by task id."""
        indegree = {task_id: len(parents) for task_id, parents in self._parents.items()}
        ready = [task_id for task_id, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            task_id = heappop(ready)
            order.append(task_id)
            for child in self._children[task_id]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, child)

        if len(order) != len(self._nodes):
            raise CyclicGraphError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return every cycle found by DFS as a closed path, e.g. ``("a", "b", "a")``."""
        visiting: dict[str, int] = {}
        done: set[str] = set()
        path: list[str] = []
        found: set[tuple[str, ...]] = set()

        for root in sorted(self._nodes):
            if root in done:
                continue
            visiting[root] = 0
            path.append(root)
            stack: list[tuple[str, Iterator[str]]] = [(root, iter(sorted(self._children[root])))]
            while stack:
                current, children = stack[-1]
                child = next(children, None)
                if child is None:
                    stack.pop()
                    path.pop()
                    del visiting[current]
                    done.add(current)
                    continue
                if child in visiting:
                    found.add(_canonical_cycle(path[visiting[child] :]))
                elif child not in done:
                    visiting[child] = len(path)
                    path.append(child)
                    stack.append((child, iter(sorted(self._children[child]))))

        return tuple(sorted(found))

    def dependencies_of(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(task_id)
        if transitive:
            return self._closure(task_id, self._parents)
        return tuple(sorted(self._parents[task_id]))

    def dependents_of(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(task_id)
        if transitive:
            return self._closure(task_id, self._children)
        return tuple(sorted(self._children[task_id]))

    def ready_nodes(self, completed: Set[str] | None = None) -> tuple[str, ...]:
        """Pending nodes whose dependencies are all completed, in id order.

        ``completed`` defaults to the ids of nodes whose status is ``completed``.
        """
        if completed is None:
            completed = {
                task_id
                for task_id, node in self._nodes.items()
                if node.status is TaskStatus.COMPLETED
            }
        return tuple(
            task_id
            for task_id in sorted(self._nodes)
            if self._nodes[task_id].status is TaskStatus.PENDING
            and self._parents[task_id] <= completed
        )

    def nodes_with_status(self, status: TaskStatus) -> tuple[str, ...]:
        return tuple(
            task_id for task_id in sorted(self._nodes) if self._nodes[task_id].status is status
        )

    def builder_of(self, validator_id: str) -> str | None:
        """Id of the single builder a validator depends on, if any."""
        builders = [
            parent
            for parent in sorted(self._parents[validator_id])
            if self._nodes[parent].kind is TaskKind.BUILDER
        ]
        return builders[0] if len(builders) == 1 else None

    def is_finished(self) -> bool:
        return all(node.is_terminal for node in self._nodes.values())

    def to_dict(self) -> dict[str, object]:
        return {
            "schema_version": TASK_GRAPH_SCHEMA_VERSION,
            "nodes": [self._nodes[task_id].to_dict() for task_id in sorted(self._nodes)],
            "edges": [[parent, child] for parent, child in self.edges],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> TaskGraph:
        """Rebuild structure and statuses from :meth:`to_dict` output.

        Worker results and feedback are not restored; they live in the event log.
        """
        raw_nodes = payload.get("nodes", ())
        if isinstance(raw_nodes, (str, bytes)) or not isinstance(raw_nodes, Sequence):
            raise ValueError("'nodes' must be a list of node objects")
        graph = cls()
        for index, raw in enumerate(raw_nodes):
            if not isinstance(raw, Mapping):
                raise ValueError(f"nodes[{index}] must be an object")
            graph.add_node(_node_from_dict(raw, f"nodes[{index}]"))

        raw_edges = payload.get("edges", ())
        if isinstance(raw_edges, (str, bytes)) or not isinstance(raw_edges, Sequence):
            raise ValueError("'edges' must be a list of [dependency, dependent] pairs")
        for index, pair in enumerate(raw_edges):
            if (
                isinstance(pair, (str, bytes))
                or not isinstance(pair, Sequence)
                or len(pair) != 2
                or not all(isinstance(item, str) for item in pair)
            ):
                raise ValueError(f"edges[{index}] must be a pair of task ids")
            graph.add_edge(pair[0], pair[1])
        return graph

    def _closure(self, task_id: str, adjacency: Mapping[str, set[str]]) -> tuple[str, ...]:
        seen: set[str] = set()
        frontier = list(adjacency[task_id])
        while frontier:
            current = frontier.pop()
            if current in seen:
                continue
            seen.add(current)
            frontier.extend(adjacency[current] - seen)
        return tuple(sorted(seen))

    def _assert_node_exists(self, task_id: str) -> None:
        if task_id not in self._nodes:
            raise KeyError(f"unknown task: {task_id}")


def _canonical_cycle(members: Sequence[str]) -> tuple[str, ...]:
    # Rotate so the smallest id leads; the same loop found from different roots compares equal.
    core = tuple(members)
    pivot = core.index(min(core))
    rotated = core[pivot:] + core[:pivot]
    return rotated + (rotated[0],)


def _node_from_dict(raw: Mapping[str, object], path: str) -> TaskNode:
    try:
        return TaskNode(
            id=_text(raw.get("id"), "id"),
            kind=TaskKind(_text(raw.get("kind"), "kind")),
            domain=_optional_text(raw.get("domain")) or "",
            status=TaskStatus(_optional_text(raw.get("status")) or TaskStatus.PENDING.value),
            owner=_optional_text(raw.get("owner")),
            retry_count=_count(raw.get("retry_count", 0), "retry_count"),
            max_retries=_count(raw.get("max_retries", DEFAULT_MAX_RETRIES), "max_retries"),
            resources=_texts(raw.get("resources"), "resources"),
            gates=_texts(raw.get("gates"), "gates"),
            source_id=_optional_text(raw.get("source_id")),
            pairs_with=_optional_text(raw.get("pairs_with")),
        )
    except ValueError as exc:
        raise ValueError(f"{path}: invalid task node: {exc}") from exc


def _text(value: object, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    return value


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _count(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _texts(value: object, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ValueError(f"{name} must be a list of strings")
    return tuple(_text(item, name) for item in value)


__all__ = ["TaskGraph"]
