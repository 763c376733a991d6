"""
Orchestration controller.

Purpose
- Run one request end to end: build the task graph, execute it, normalize analyzer
  findings, aggregate them into a consensus report, and hand the report to a sink.

Functional requirements
- Category weights are resolved and validated before any worker is dispatched.
- Escalations are returned on the ``RunResult``; they never abort the run.
- A run with zero findings and zero escalations is a clean success.
- ``RunStarted`` and ``RunCompleted`` bracket every run in the event log, and the run id
  is bound into every log line emitted while the run is active.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, cast

import structlog

from consensus_orchestrator.config.schema import (
    assert_valid_config,
    default_config,
    merge_config,
)
from consensus_orchestrator.consensus.aggregator import CategoryWeights, ConsensusAggregator
from consensus_orchestrator.consensus.normalizer import FindingNormalizer, NormalizationResult
from consensus_orchestrator.consensus.profiles import (
    SeverityScale,
    load_severity_scales,
    load_weight_profiles,
)
from consensus_orchestrator.consensus.report import ConsensusReport, ReportSink
from consensus_orchestrator.constants import DEFAULT_CATEGORY
from consensus_orchestrator.control_plane.resource_registry import ResourceRegistry
from consensus_orchestrator.control_plane.retry_policy import RetryPolicy
from consensus_orchestrator.control_plane.scheduler import (
    ExecutionOutcome,
    Executor,
    WorkerPool,
)
from consensus_orchestrator.domain.errors import ConfigurationError, OrchestrationError
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.ids import generate_run_id
from consensus_orchestrator.domain.models import (
    AnalyzerResult,
    Escalation,
    JSONValue,
    Request,
)
from consensus_orchestrator.observability.logging import correlation_scope
from consensus_orchestrator.observability.metrics import MetricsRegistry, RunMetric
from consensus_orchestrator.persistence.event_log import (
    EventLog,
    InMemoryEventLog,
    SQLiteEventLog,
)
from consensus_orchestrator.planning.graph_builder import ACCEPTANCE_GATE, GraphBuilder
from consensus_orchestrator.verification_plane.quality_gates import GateRegistry, PredicateGate

_ACTOR: Final[str] = "controller"

# Used when neither the caller nor the config names any weights.
FALLBACK_WEIGHTS: Final[dict[str, float]] = {DEFAULT_CATEGORY: 1.0}
_FALLBACK_WARNING: Final[str] = "no category weights configured; using {'uncategorized': 1.0}"


@dataclass(frozen=True, slots=True)
class RunResult:
    """Everything a caller needs after one run."""

    run_id: str
    report: ConsensusReport
    execution: ExecutionOutcome
    escalations: tuple[Escalation, ...]
    normalization: NormalizationResult

    @property
    def succeeded(self) -> bool:
        return self.execution.succeeded

    @property
    def is_clean(self) -> bool:
        return self.report.is_clean and not self.escalations

    def raise_for_escalations(self) -> None:
        """Raise ``RetryExhausted`` for the first escalation, if any."""
        if self.escalations:
            raise self.escalations[0].to_error()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "report": self.report.to_dict(),
            "execution": self.execution.to_dict(),
            "escalations": [item.to_dict() for item in self.escalations],
            "dropped_findings": [item.to_dict() for item in self.normalization.dropped],
        }


class OrchestrationController:
    """Coordinates plan -> execute -> normalize -> aggregate -> report."""

    def __init__(
        self,
        config: Mapping[str, object] | None = None,
        workers: WorkerPool | Mapping[Any, Any] | None = None,
        *,
        gate_registry: GateRegistry | None = None,
        event_log: EventLog | None = None,
        metrics: MetricsRegistry | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = _effective_config(config)
        self._workers = workers if isinstance(workers, WorkerPool) else WorkerPool(workers)
        self._gates = gate_registry if gate_registry is not None else GateRegistry.with_builtins()
        self._event_log = (
            event_log if event_log is not None else _event_log_from_config(self._config)
        )
        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        paths = cast("Mapping[str, object]", self._config.get("paths", {}))
        scales_path = paths.get("severity_scales")
        self._scales: dict[str, SeverityScale] = (
            load_severity_scales(Path(str(scales_path))) if scales_path else {}
        )
        profiles_path = paths.get("weight_profiles")
        self._weight_profiles: dict[str, dict[str, float]] = (
            load_weight_profiles(Path(str(profiles_path))) if profiles_path else {}
        )

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    def resolve_weights(
        self,
        weights: Mapping[str, float] | CategoryWeights | None = None,
        weight_profile: str | None = None,
    ) -> CategoryWeights:
        """Explicit weights win, then the named profile, then the configured default."""
        resolved, _ = self._select_weights(weights, weight_profile)
        return resolved

    def _select_weights(
        self,
        weights: Mapping[str, float] | CategoryWeights | None,
        weight_profile: str | None,
    ) -> tuple[CategoryWeights, tuple[str, ...]]:
        consensus = cast("Mapping[str, object]", self._config["consensus"])
        tolerance = float(cast("float", consensus["weight_tolerance"]))
        if weights is not None:
            return CategoryWeights.validate(weights, tolerance), ()

        profile = weight_profile or cast("str | None", consensus.get("default_weight_profile"))
        if profile is not None:
            selected = self._weight_profiles.get(profile)
            if selected is None:
                known = ", ".join(sorted(self._weight_profiles)) or "<none>"
                raise ConfigurationError(
                    f"unknown weight profile {profile!r}; available: {known}"
                )
            return CategoryWeights.validate(selected, tolerance), ()

        self._logger.warning("control_plane_fallback_weights", weights=FALLBACK_WEIGHTS)
        return CategoryWeights.validate(FALLBACK_WEIGHTS, tolerance), (_FALLBACK_WARNING,)

    async def run(
        self,
        request: Request | Mapping[str, object],
        *,
        weights: Mapping[str, float] | CategoryWeights | None = None,
        weight_profile: str | None = None,
        context: Iterable[str] = (),
        sink: ReportSink | None = None,
        pairs: Mapping[str, str] | None = None,
        false_positive_overrides: Mapping[str, str] | None = None,
    ) -> RunResult:
        parsed = request if isinstance(request, Request) else Request.from_dict(request)
        consensus = cast("Mapping[str, Any]", self._config["consensus"])
        scheduler = cast("Mapping[str, Any]", self._config["scheduler"])

        category_weights, weight_warnings = self._select_weights(weights, weight_profile)
        aggregator = ConsensusAggregator(
            category_weights,
            rounding=str(consensus["rounding"]),
            category_deduction_cap=int(consensus["category_deduction_cap"]),
            detected_context=tuple(context),
            false_positive_overrides=false_positive_overrides,
            event_log=self._event_log,
            logger=self._logger,
        )

        run_id = generate_run_id()
        with correlation_scope(run_id=run_id):
            self._append(
                EventType.RUN_STARTED,
                {
                    "run_id": run_id,
                    "domain": parsed.domain,
                    "description": parsed.description,
                    "task_count": len(parsed.tasks),
                },
            )
            self._logger.info("control_plane_run_started", run_id=run_id, domain=parsed.domain)

            try:
                builder = GraphBuilder.from_config(
                    self._config, event_log=self._event_log, logger=self._logger
                )
                graph = builder.build(parsed, pairs=pairs)

                gates = self._gates
                predicate = parsed.acceptance_predicate
                if predicate is not None and not isinstance(predicate, str):
                    gates = gates.with_gate(PredicateGate(ACCEPTANCE_GATE, predicate))

                executor = Executor(
                    graph,
                    self._workers,
                    registry=ResourceRegistry(event_log=self._event_log, logger=self._logger),
                    event_log=self._event_log,
                    gates=gates,
                    retry_policy=RetryPolicy.from_config(self._config),
                    max_concurrency=int(scheduler["max_concurrency"]),
                    reserved_resources=parsed.initial_resources,
                    stop_on_gate_failure=bool(scheduler.get("stop_on_gate_failure", False)),
                    metrics=self._metrics,
                    logger=self._logger,
                )
                counts_before = self._metrics.executor_counts()
                execution = await executor.execute()
            except OrchestrationError as exc:
                self._append(
                    EventType.RUN_COMPLETED,
                    {"run_id": run_id, "status": "failed", "error": str(exc)},
                )
                self._logger.error(
                    "control_plane_run_failed",
                    run_id=run_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise

            normalization = self._normalize(execution)
            report = aggregator.aggregate(
                normalization.findings,
                event_log_reference=self._event_log.reference,
                warnings=(*weight_warnings, *normalization.warnings),
            )
            if sink is not None:
                sink.accept(report)

            self._metrics.set_gauge(RunMetric.HEALTH_SCORE, report.health_score.value)
            counts = self._metrics.executor_counts().since(counts_before)
            self._append(
                EventType.RUN_COMPLETED,
                {
                    "run_id": run_id,
                    "status": "succeeded" if execution.succeeded else "escalated",
                    "completed": list(execution.completed),
                    "escalated": [item.task_id for item in execution.escalations],
                    "blocked": list(execution.blocked),
                    "health_score": report.health_score.display,
                    "record_count": len(report.ranked_findings),
                    "counts": counts.to_dict(),
                },
            )
            self._logger.info(
                "control_plane_run_completed",
                run_id=run_id,
                health_score=report.health_score.display,
                escalations=len(execution.escalations),
                tasks_dispatched=counts.tasks_dispatched,
                tasks_rejected=counts.tasks_rejected,
                clean=report.is_clean and not execution.escalations,
            )

        return RunResult(
            run_id=run_id,
            report=report,
            execution=execution,
            escalations=execution.escalations,
            normalization=normalization,
        )

    def run_sync(
        self,
        request: Request | Mapping[str, object],
        **kwargs: Any,
    ) -> RunResult:
        """Blocking wrapper around :meth:`run` for callers without an event loop."""
        return asyncio.run(self.run(request, **kwargs))

    def _normalize(self, execution: ExecutionOutcome) -> NormalizationResult:
        normalizer = FindingNormalizer(
            scales=self._scales, event_log=self._event_log, logger=self._logger
        )
        combined = NormalizationResult()
        for node in execution.analyzer_results():
            if not isinstance(node.result, AnalyzerResult):
                continue
            combined = combined.merged(
                normalizer.normalize(node.effective_source_id, node.result.findings)
            )
        return combined

    def _append(self, event_type: EventType, payload: Mapping[str, object]) -> None:
        self._event_log.append(_ACTOR, event_type, payload)


def _effective_config(config: Mapping[str, object] | None) -> dict[str, Any]:
    return assert_valid_config(merge_config(default_config(), config or {}))


def _event_log_from_config(config: Mapping[str, Any]) -> EventLog:
    backend = config["persistence"]["event_log_backend"]
    if backend == "sqlite":
        return SQLiteEventLog(Path(str(config["paths"]["event_log"])))
    return InMemoryEventLog()


__all__ = ["FALLBACK_WEIGHTS", "OrchestrationController", "RunResult"]
