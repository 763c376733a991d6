"""Final consensus report and the sink protocol that receives it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from consensus_orchestrator.constants import REPORT_SCHEMA_VERSION
from consensus_orchestrator.domain.models import (
    CategoryScore,
    ConsensusRecord,
    ExcludedFinding,
    HealthScore,
    JSONValue,
    Priority,
)
from consensus_orchestrator.utils.hashing import canonical_json, canonical_json_digest


@dataclass(frozen=True, slots=True)
class ConsensusReport:
    """Ranked findings, the health-score breakdown, and the false-positive exclusions.

    All three parts are always present; an empty run yields a clean report with a
    health score of 100.
    """

    health_score: HealthScore
    category_scores: tuple[CategoryScore, ...]
    ranked_findings: tuple[ConsensusRecord, ...]
    excluded_false_positives: tuple[ExcludedFinding, ...]
    event_log_reference: str | None = None
    warnings: tuple[str, ...] = ()
    schema_version: int = REPORT_SCHEMA_VERSION

    @property
    def priority_buckets(self) -> dict[Priority, tuple[ConsensusRecord, ...]]:
        return {
            priority: tuple(
                record for record in self.ranked_findings if record.priority is priority
            )
            for priority in Priority
        }

    @property
    def is_clean(self) -> bool:
        return not self.ranked_findings

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": self.schema_version,
            "health_score": self.health_score.to_dict(),
            "category_scores": [score.to_dict() for score in self.category_scores],
            "ranked_findings": [record.to_dict() for record in self.ranked_findings],
            "priority_buckets": {
                priority.value: [record.record_id for record in records]
                for priority, records in self.priority_buckets.items()
            },
            "excluded_false_positives": [
                excluded.to_dict() for excluded in self.excluded_false_positives
            ],
            "event_log_reference": self.event_log_reference,
            "warnings": list(self.warnings),
        }

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    def digest(self) -> str:
        return canonical_json_digest(self.to_dict())


@runtime_checkable
class ReportSink(Protocol):
    """Destination for finished reports; storage format is the sink's concern."""

    def accept(self, report: ConsensusReport) -> None: ...


class MemoryReportSink:
    """Keeps accepted reports in memory, in arrival order."""

    def __init__(self) -> None:
        self.reports: list[ConsensusReport] = []

    def accept(self, report: ConsensusReport) -> None:
        self.reports.append(report)

    @property
    def latest(self) -> ConsensusReport | None:
        return self.reports[-1] if self.reports else None


__all__ = ["ConsensusReport", "MemoryReportSink", "ReportSink"]
