"""Unit tests for building task graphs from requests."""

from __future__ import annotations

from typing import Any

import pytest

from consensus_orchestrator.config.schema import default_config, merge_config
from consensus_orchestrator.domain.errors import CyclicGraphError, GraphBuildError
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.models import Request, TaskKind, TaskStatus
from consensus_orchestrator.persistence.event_log import InMemoryEventLog
from consensus_orchestrator.planning.graph_builder import ACCEPTANCE_GATE, GraphBuilder


def _request(tasks: list[dict[str, Any]], **extra: Any) -> Request:
    return Request.from_dict({"domain": "web", "description": "unit", "tasks": tasks, **extra})


def test_explicit_and_paired_edges_with_initial_statuses() -> None:
    log = InMemoryEventLog()
    builder = GraphBuilder(event_log=log)

    graph = builder.build(
        _request(
            [
                {"id": "build", "kind": "builder"},
                {"id": "check", "kind": "validator", "pairs_with": "build"},
                {"id": "scan", "kind": "analyzer", "blocked_by": ["check"]},
            ]
        )
    )

    assert graph.edges == (("build", "check"), ("check", "scan"))
    assert graph.node("build").status is TaskStatus.PENDING
    assert graph.node("check").status is TaskStatus.BLOCKED
    assert graph.node("scan").domain == "web"

    types = [record.type for record in log.records()]
    assert types == [EventType.GRAPH_BUILT] + [EventType.TASK_CREATED] * 3
    created = [record.payload["task_id"] for record in log.records()[1:]]
    assert created == ["build", "check", "scan"]
    assert log.records()[0].payload["order"] == ["build", "check", "scan"]


def test_validator_is_paired_by_domain_registry() -> None:
    builder = GraphBuilder(pairs={"web": "web-qa"})

    graph = builder.build(
        _request(
            [
                {"id": "build", "kind": "builder", "domain": "web"},
                {"id": "other", "kind": "builder", "domain": "api"},
                {"id": "qa", "kind": "validator", "domain": "web-qa"},
            ]
        )
    )

    assert graph.dependencies_of("qa") == ("build",)
    assert graph.node("qa").pairs_with == "build"


def test_per_request_pairs_override_registry() -> None:
    builder = GraphBuilder(pairs={"web": "nobody"})

    graph = builder.build(
        _request(
            [
                {"id": "build", "kind": "builder", "domain": "web"},
                {"id": "qa", "kind": "validator", "domain": "web-qa"},
            ]
        ),
        pairs={"web": "web-qa"},
    )

    assert graph.builder_of("qa") == "build"


@pytest.mark.parametrize(
    ("tasks", "match"),
    [
        ([{"id": "qa", "kind": "validator"}], "exactly one builder"),
        (
            [
                {"id": "b1", "kind": "builder"},
                {"id": "b2", "kind": "builder"},
                {"id": "qa", "kind": "validator", "blocked_by": ["b1", "b2"]},
            ],
            "exactly one builder",
        ),
        ([{"id": "a", "kind": "analyzer", "blocked_by": ["ghost"]}], "unknown task 'ghost'"),
        (
            [{"id": "a", "kind": "analyzer"}, {"id": "qa", "kind": "validator", "pairs_with": "a"}],
            "not a builder",
        ),
        ([{"id": "a", "kind": "builder"}, {"id": "a", "kind": "builder"}], "duplicate"),
        ([], "no tasks"),
    ],
)
def test_structural_problems_are_rejected_and_logged(
    tasks: list[dict[str, Any]], match: str
) -> None:
    log = InMemoryEventLog()

    with pytest.raises(GraphBuildError, match=match):
        GraphBuilder(event_log=log).build(_request(tasks))

    (record,) = log.records()
    assert record.type is EventType.GRAPH_REJECTED
    assert record.payload["error_type"] == "GraphBuildError"


def test_validator_matching_several_builders_by_domain_is_rejected() -> None:
    builder = GraphBuilder(pairs={"web": "qa"})

    with pytest.raises(GraphBuildError, match="several builders"):
        builder.build(
            _request(
                [
                    {"id": "b1", "kind": "builder", "domain": "web"},
                    {"id": "b2", "kind": "builder", "domain": "web"},
                    {"id": "v", "kind": "validator", "domain": "qa"},
                ]
            )
        )


def test_cycles_are_rejected_before_any_task_is_created() -> None:
    log = InMemoryEventLog()

    with pytest.raises(CyclicGraphError):
        GraphBuilder(event_log=log).build(
            _request(
                [
                    {"id": "a", "kind": "analyzer", "blocked_by": ["b"]},
                    {"id": "b", "kind": "analyzer", "blocked_by": ["a"]},
                ]
            )
        )

    (record,) = log.records()
    assert record.type is EventType.GRAPH_REJECTED
    assert record.payload["cycles"] == [["a", "b", "a"]]


def test_self_dependency_is_a_cycle() -> None:
    with pytest.raises(CyclicGraphError):
        GraphBuilder().build(_request([{"id": "a", "kind": "analyzer", "blocked_by": ["a"]}]))


def test_require_validator_pair() -> None:
    builder = GraphBuilder(require_validator_pair=True)

    with pytest.raises(GraphBuildError, match="without a paired validator"):
        builder.build(_request([{"id": "b", "kind": "builder"}]))

    graph = builder.build(
        _request([{"id": "b", "kind": "builder"}, {"id": "v", "kind": "validator", "pairs_with": "b"}])
    )
    assert len(graph) == 2


def test_acceptance_predicate_gate_is_attached_to_change_proposers() -> None:
    named = GraphBuilder().build(
        _request(
            [{"id": "b", "kind": "builder"}, {"id": "a", "kind": "analyzer"}],
            acceptance_predicate="rationale_present",
        )
    )
    callable_graph = GraphBuilder().build(
        _request([{"id": "b", "kind": "builder", "gates": ["no_empty_change"]}], acceptance_predicate=bool)
    )

    assert named.node("b").gates == ("rationale_present",)
    assert named.node("a").gates == ()
    assert callable_graph.node("b").gates == ("no_empty_change", ACCEPTANCE_GATE)


def test_max_retries_defaults_and_overrides() -> None:
    config = merge_config(default_config(), {"retry": {"max_retries": 1}})
    builder = GraphBuilder.from_config(config)

    graph = builder.build(
        _request([{"id": "a", "kind": "analyzer"}, {"id": "b", "kind": "builder", "max_retries": 0}])
    )

    assert graph.node("a").max_retries == 1
    assert graph.node("b").max_retries == 0
    assert graph.node("a").kind is TaskKind.ANALYZER


def test_invalid_task_ids_become_build_errors() -> None:
    with pytest.raises(GraphBuildError):
        GraphBuilder().build(_request([{"id": "bad id", "kind": "builder"}]))
