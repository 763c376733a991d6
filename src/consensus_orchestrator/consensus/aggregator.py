"""
Consensus aggregator.

Purpose
- Turn a batch of canonical findings, possibly from many analyzers, into one ranked
  ``ConsensusReport``.

Functional requirements
- Category weights are validated before any scoring; bad weights raise
  ``ConfigurationError``.
- Steps run in a fixed order: applicability filter, grouping, confidence voting,
  category scoring, health score, prioritization.
- Every excluded finding carries a reason; nothing is dropped silently.

Non-functional requirements
- Deterministic: the same findings produce a byte-identical report.
- Health-score arithmetic is exact (``decimal``); only the display value is rounded.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal
from typing import Any, Final

import structlog

from consensus_orchestrator.consensus.report import ConsensusReport
from consensus_orchestrator.constants import (
    CATEGORY_DEDUCTION_CAP,
    DEFAULT_WEIGHT_TOLERANCE,
    MAX_CATEGORY_SCORE,
)
from consensus_orchestrator.domain.errors import ConfigurationError
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.ids import record_id
from consensus_orchestrator.domain.models import (
    CategoryScore,
    Certainty,
    Confidence,
    ConsensusRecord,
    ExcludedFinding,
    Finding,
    HealthScore,
    Priority,
    Severity,
)
from consensus_orchestrator.persistence.event_log import EventLog

_ACTOR: Final[str] = "consensus_aggregator"

ROUNDING_MODES: Final[dict[str, str]] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
}

_URGENT: Final[frozenset[Severity]] = frozenset({Severity.CRITICAL, Severity.HIGH})
_CORROBORATED: Final[frozenset[Confidence]] = frozenset(
    {Confidence.CONFIRMED, Confidence.LIKELY}
)


@dataclass(frozen=True, slots=True)
class CategoryWeights:
    """Validated ``{category: weight}`` mapping whose weights sum to one."""

    weights: Mapping[str, float]

    @classmethod
    def validate(
        cls,
        mapping: Mapping[str, object],
        tolerance: float = DEFAULT_WEIGHT_TOLERANCE,
    ) -> CategoryWeights:
        if isinstance(mapping, CategoryWeights):
            mapping = mapping.weights
        if not isinstance(mapping, Mapping) or not mapping:
            raise ConfigurationError("category weights must be a non-empty mapping")

        parsed: dict[str, float] = {}
        for raw_category, raw_weight in mapping.items():
            if not isinstance(raw_category, str) or not raw_category.strip():
                raise ConfigurationError("category names must be non-empty strings")
            category = raw_category.strip()
            if isinstance(raw_weight, bool) or not isinstance(raw_weight, (int, float)):
                raise ConfigurationError(f"weight for {category!r} must be a number")
            weight = float(raw_weight)
            if not math.isfinite(weight) or not 0.0 <= weight <= 1.0:
                raise ConfigurationError(
                    f"weight for {category!r} must be within [0, 1], got {raw_weight!r}"
                )
            if category in parsed:
                raise ConfigurationError(f"duplicate category {category!r}")
            parsed[category] = weight

        total = math.fsum(parsed.values())
        if abs(total - 1.0) > tolerance:
            raise ConfigurationError(
                f"category weights must sum to 1 (tolerance {tolerance}), got {total!r}"
            )
        return cls(weights={key: parsed[key] for key in sorted(parsed)})

    def __contains__(self, category: object) -> bool:
        return category in self.weights

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.weights))

    def get(self, category: str) -> float | None:
        return self.weights.get(category)


def priority_for(severity: Severity, confidence: Confidence) -> Priority:
    """Fixed severity x confidence lookup."""
    if confidence in _CORROBORATED:
        if severity in _URGENT:
            return Priority.FIX_IMMEDIATELY
        if severity is Severity.MEDIUM:
            return Priority.FIX_THIS_SPRINT
        return Priority.BACKLOG
    if confidence is Confidence.INVESTIGATE and severity in _URGENT:
        return Priority.BACKLOG
    return Priority.INFO


def category_score(
    severities: Iterable[Severity],
    *,
    cap: int = CATEGORY_DEDUCTION_CAP,
) -> tuple[int, int]:
    """Return ``(score, deduction)`` for one category; the deduction is capped."""
    total = sum(Severity(severity).deduction for severity in severities)
    deduction = min(total, cap)
    return max(0, min(MAX_CATEGORY_SCORE, MAX_CATEGORY_SCORE - deduction)), deduction


def compute_health_score(
    category_scores: Sequence[CategoryScore],
    *,
    rounding: str = "half_up",
) -> HealthScore:
    """Weighted sum of category scores, clamped to [0, 100]."""
    mode = _rounding_mode(rounding)
    total = sum(
        (Decimal(str(item.score)) * Decimal(str(item.weight)) for item in category_scores),
        Decimal(0),
    )
    total = min(max(total, Decimal(0)), Decimal(MAX_CATEGORY_SCORE))
    return HealthScore(
        value=float(total),
        rounded=int(total.quantize(Decimal(1), rounding=mode)),
        rounding=rounding,
    )


class ConsensusAggregator:
    """Groups, votes, scores and ranks canonical findings."""

    def __init__(
        self,
        weights: CategoryWeights | Mapping[str, float],
        *,
        rounding: str = "half_up",
        category_deduction_cap: int = CATEGORY_DEDUCTION_CAP,
        weight_tolerance: float = DEFAULT_WEIGHT_TOLERANCE,
        detected_context: Iterable[str] = (),
        false_positive_overrides: Mapping[str, str] | None = None,
        event_log: EventLog | None = None,
        logger: Any | None = None,
    ) -> None:
        self._weights = (
            weights
            if isinstance(weights, CategoryWeights)
            else CategoryWeights.validate(weights, weight_tolerance)
        )
        _rounding_mode(rounding)
        if isinstance(category_deduction_cap, bool) or category_deduction_cap < 0:
            raise ConfigurationError("category_deduction_cap must be >= 0")
        self._rounding = rounding
        self._cap = int(category_deduction_cap)
        self._context = frozenset(
            tag.strip().lower() for tag in detected_context if tag and tag.strip()
        )
        overrides = dict(false_positive_overrides or {})
        for location, justification in overrides.items():
            if not isinstance(justification, str) or not justification.strip():
                raise ConfigurationError(
                    f"false-positive override for {location!r} needs a justification"
                )
        self._overrides = overrides
        self._event_log = event_log
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def weights(self) -> CategoryWeights:
        return self._weights

    def aggregate(
        self,
        findings: Iterable[Finding],
        *,
        event_log_reference: str | None = None,
        warnings: Iterable[str] = (),
    ) -> ConsensusReport:
        """Build the report for ``findings``.

        ``warnings`` from upstream stages (normalization) are carried into the report
        ahead of the aggregator's own.
        """
        batch = tuple(findings)
        notes: list[str] = list(warnings)

        applicable, excluded = self._filter_applicable(batch)
        records, first_seen = self._vote(self._group(applicable))

        kept: list[ConsensusRecord] = []
        for record in records:
            justification = self._override_for(record)
            if justification is None:
                kept.append(record)
                continue
            record.mark_false_positive(justification)
            for finding in applicable:
                if finding.id in record.contributing_finding_ids:
                    excluded.append(self._exclude(finding, justification))

        for record in kept:
            record.priority = priority_for(record.severity, record.confidence)

        category_scores = self._score_categories(kept, notes)
        health = compute_health_score(category_scores, rounding=self._rounding)
        ranked = sorted(
            kept,
            key=lambda item: (
                item.priority.rank,
                -item.severity.rank,
                -item.confidence.rank,
                first_seen[item.record_id],
            ),
        )

        reference = event_log_reference
        if reference is None and self._event_log is not None:
            reference = self._event_log.reference
        report = ConsensusReport(
            health_score=health,
            category_scores=tuple(category_scores),
            ranked_findings=tuple(ranked),
            excluded_false_positives=tuple(excluded),
            event_log_reference=reference,
            warnings=tuple(notes),
        )
        if self._event_log is not None:
            self._event_log.append(
                _ACTOR,
                EventType.CONSENSUS_COMPLETED,
                {
                    "health_score": health.value,
                    "display": health.display,
                    "record_count": len(ranked),
                    "excluded_count": len(excluded),
                    "report_digest": report.digest(),
                },
            )
        self._logger.info(
            "consensus_aggregation_completed",
            findings=len(batch),
            records=len(ranked),
            excluded=len(excluded),
            health_score=health.display,
        )
        return report

    def _filter_applicable(
        self, findings: Sequence[Finding]
    ) -> tuple[list[Finding], list[ExcludedFinding]]:
        if not self._context:
            return list(findings), []
        applicable: list[Finding] = []
        excluded: list[ExcludedFinding] = []
        context = sorted(self._context)
        for finding in findings:
            tags = {tag.lower() for tag in finding.applicability}
            if not tags or tags & self._context:
                applicable.append(finding)
                continue
            reason = f"applies to {sorted(tags)} but detected context is {context}"
            excluded.append(self._exclude(finding, reason))
        return applicable, excluded

    def _group(self, findings: Sequence[Finding]) -> list[list[Finding]]:
        """Union findings that share a location or declare a related link."""
        parent = list(range(len(findings)))

        def find(index: int) -> int:
            while parent[index] != index:
                parent[index] = parent[parent[index]]
                index = parent[index]
            return index

        def union(left: int, right: int) -> None:
            root_left, root_right = find(left), find(right)
            if root_left != root_right:
                # Lower index stays the root so groups keep first-observation order.
                parent[max(root_left, root_right)] = min(root_left, root_right)

        by_key: dict[str, int] = {}
        for index, finding in enumerate(findings):
            for key in (finding.location, finding.id):
                if key in by_key:
                    union(by_key[key], index)
                else:
                    by_key[key] = index
        for index, finding in enumerate(findings):
            for link in finding.related:
                if link in by_key:
                    union(by_key[link], index)

        groups: dict[int, list[Finding]] = {}
        for index, finding in enumerate(findings):
            groups.setdefault(find(index), []).append(finding)
        return [groups[root] for root in sorted(groups)]

    def _vote(
        self, groups: Sequence[Sequence[Finding]]
    ) -> tuple[list[ConsensusRecord], dict[str, int]]:
        records: list[ConsensusRecord] = []
        first_seen: dict[str, int] = {}
        for order, group in enumerate(groups):
            record = ConsensusRecord.seed(
                record_id(group[0].location, tuple(finding.id for finding in group)),
                group[0],
            )
            for finding in group[1:]:
                record.add_finding(finding)
            if record.distinct_sources >= 2:
                record.promote(Confidence.CONFIRMED)
            elif any(finding.certainty is Certainty.HIGH for finding in group):
                record.promote(Confidence.LIKELY)
            records.append(record)
            first_seen[record.record_id] = order
        return records, first_seen

    def _override_for(self, record: ConsensusRecord) -> str | None:
        justification = self._overrides.get(record.location)
        if justification is None:
            justification = self._overrides.get(record.record_id)
        return justification

    def _score_categories(
        self,
        records: Sequence[ConsensusRecord],
        warnings: list[str],
    ) -> list[CategoryScore]:
        severities: dict[str, list[Severity]] = {category: [] for category in self._weights}
        for record in records:
            if record.confidence is Confidence.FALSE_POSITIVE:
                continue
            severities.setdefault(record.category, []).append(record.severity)

        scores: list[CategoryScore] = []
        for category in sorted(severities):
            weight = self._weights.get(category)
            if weight is None:
                weight = 0.0
                warnings.append(f"category {category!r} has no configured weight; weight 0 used")
                self._logger.warning("consensus_unweighted_category", category=category)
            score, deduction = category_score(severities[category], cap=self._cap)
            scores.append(
                CategoryScore(
                    category=category,
                    weight=weight,
                    score=score,
                    deduction=deduction,
                    finding_count=len(severities[category]),
                )
            )
        return scores

    def _exclude(self, finding: Finding, reason: str) -> ExcludedFinding:
        excluded = ExcludedFinding(
            finding_id=finding.id,
            source_id=finding.source_id,
            location=finding.location,
            title=finding.title,
            reason=reason,
        )
        if self._event_log is not None:
            self._event_log.append(_ACTOR, EventType.FINDING_EXCLUDED, excluded.to_dict())
        self._logger.info(
            "consensus_finding_excluded",
            finding_id=finding.id,
            location=finding.location,
            reason=reason,
        )
        return excluded


def _rounding_mode(rounding: str) -> str:
    try:
        return ROUNDING_MODES[rounding]
    except KeyError as exc:
        allowed = ", ".join(sorted(ROUNDING_MODES))
        raise ConfigurationError(
            f"unsupported rounding mode {rounding!r}; allowed: {allowed}"
        ) from exc


__all__ = [
    "ROUNDING_MODES",
    "CategoryWeights",
    "ConsensusAggregator",
    "category_score",
    "compute_health_score",
    "priority_for",
]
