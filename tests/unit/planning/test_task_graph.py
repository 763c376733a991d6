"""Unit tests for task graph structure, ordering, and cycle detection."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from consensus_orchestrator.domain.errors import CyclicGraphError
from consensus_orchestrator.domain.models import TaskKind, TaskNode, TaskStatus
from consensus_orchestrator.planning.task_graph import TaskGraph


def _node(task_id: str, *deps: str, kind: TaskKind = TaskKind.BUILDER) -> TaskNode:
    return TaskNode(id=task_id, kind=kind, domain="web", dependencies=frozenset(deps))


def test_topological_order_breaks_ties_by_id() -> None:
    graph = TaskGraph([_node("c"), _node("a"), _node("b", "c"), _node("d", "a", "b")])

    assert graph.topological_order() == ("a", "c", "b", "d")
    assert graph.edges == (("a", "d"), ("b", "d"), ("c", "b"))


def test_add_edge_keeps_node_dependencies_in_sync() -> None:
    graph = TaskGraph([_node("a"), _node("b")])

    graph.add_edge("a", "b")
    graph.add_edge("a", "b")

    assert graph.node("b").dependencies == frozenset({"a"})
    assert graph.dependencies_of("b") == ("a",)
    assert graph.dependents_of("a") == ("b",)


def test_unknown_nodes_and_duplicates_are_rejected() -> None:
    graph = TaskGraph([_node("a")])

    with pytest.raises(ValueError, match="duplicate"):
        graph.add_node(_node("a"))
    with pytest.raises(KeyError, match="unknown task"):
        graph.add_edge("a", "zzz")
    with pytest.raises(KeyError):
        graph.node("zzz")


def test_cycles_are_reported_as_closed_paths() -> None:
    graph = TaskGraph([_node("a"), _node("b"), _node("c"), _node("d")])
    graph.add_edge("a", "b")
    graph.add_edge("b", "c")
    graph.add_edge("c", "a")
    graph.add_edge("c", "d")

    assert graph.detect_cycles() == (("a", "b", "c", "a"),)
    with pytest.raises(CyclicGraphError) as excinfo:
        graph.topological_order()
    assert excinfo.value.cycles == (("a", "b", "c", "a"),)
    assert "a -> b -> c -> a" in str(excinfo.value)


def test_self_edge_is_a_cycle() -> None:
    graph = TaskGraph([_node("a")])

    with pytest.raises(CyclicGraphError):
        graph.add_edge("a", "a")


def test_transitive_closures() -> None:
    graph = TaskGraph([_node("a"), _node("b", "a"), _node("c", "b"), _node("x")])

    assert graph.dependents_of("a", transitive=True) == ("b", "c")
    assert graph.dependencies_of("c", transitive=True) == ("a", "b")
    assert graph.dependents_of("x", transitive=True) == ()


def test_ready_nodes_follow_completed_dependencies() -> None:
    graph = TaskGraph([_node("a"), _node("b", "a"), _node("c")])

    assert graph.ready_nodes() == ("a", "c")

    graph.node("a").status = TaskStatus.COMPLETED
    assert graph.ready_nodes() == ("b", "c")
    assert graph.ready_nodes(completed=set()) == ("c",)
    assert graph.nodes_with_status(TaskStatus.COMPLETED) == ("a",)
    assert not graph.is_finished()


def test_builder_of_validator() -> None:
    graph = TaskGraph(
        [
            _node("b1"),
            _node("a1", kind=TaskKind.ANALYZER),
            _node("v1", "b1", "a1", kind=TaskKind.VALIDATOR),
        ]
    )

    assert graph.builder_of("v1") == "b1"
    assert graph.builder_of("b1") is None


def test_dict_roundtrip_preserves_structure_and_status() -> None:
    graph = TaskGraph([_node("a"), _node("b", "a", kind=TaskKind.VALIDATOR)])
    graph.node("a").status = TaskStatus.COMPLETED
    graph.node("a").retry_count = 2

    rebuilt = TaskGraph.from_dict(graph.to_dict())

    assert rebuilt.edges == graph.edges
    assert rebuilt.node("a").status is TaskStatus.COMPLETED
    assert rebuilt.node("a").retry_count == 2
    assert rebuilt.node("b").kind is TaskKind.VALIDATOR
    assert rebuilt.to_dict() == graph.to_dict()


@pytest.mark.parametrize(
    "payload",
    [
        {"nodes": "a"},
        {"nodes": [{"id": "a"}]},
        {"nodes": [{"id": "a", "kind": "builder"}], "edges": [["a"]]},
        {"nodes": [{"id": "a", "kind": "builder", "retry_count": "2"}]},
    ],
)
def test_from_dict_rejects_malformed_payloads(payload: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        TaskGraph.from_dict(payload)


@st.composite
def _dag_edges(draw: st.DrawFn) -> tuple[int, list[tuple[int, int]]]:
    size = draw(st.integers(min_value=1, max_value=12))
    pairs = [(low, high) for low in range(size) for high in range(low + 1, size)]
    chosen = draw(st.lists(st.sampled_from(pairs), unique=True) if pairs else st.just([]))
    return size, chosen


@settings(max_examples=100, deadline=None)
@given(_dag_edges())
def test_topological_order_respects_every_edge(spec: tuple[int, list[tuple[int, int]]]) -> None:
    size, pairs = spec
    graph = TaskGraph([_node(f"t{index:02d}") for index in range(size)])
    for low, high in pairs:
        graph.add_edge(f"t{low:02d}", f"t{high:02d}")

    order = graph.topological_order()
    position = {task_id: index for index, task_id in enumerate(order)}

    assert sorted(order) == list(graph.ids)
    assert all(position[parent] < position[child] for parent, child in graph.edges)
    assert graph.detect_cycles() == ()
