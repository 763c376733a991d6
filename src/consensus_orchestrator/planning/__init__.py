"""Planning plane: request -> task graph."""

from consensus_orchestrator.planning.graph_builder import ACCEPTANCE_GATE, GraphBuilder
from consensus_orchestrator.planning.task_graph import TaskGraph

__all__ = ["ACCEPTANCE_GATE", "GraphBuilder", "TaskGraph"]
