"""Consensus plane: finding normalization, aggregation, scoring and reports."""

from consensus_orchestrator.consensus.aggregator import (
    CategoryWeights,
    ConsensusAggregator,
    category_score,
    compute_health_score,
    priority_for,
)
from consensus_orchestrator.consensus.normalizer import (
    DroppedRecord,
    FindingNormalizer,
    NormalizationResult,
)
from consensus_orchestrator.consensus.profiles import (
    SeverityScale,
    load_severity_scales,
    load_weight_profiles,
)
from consensus_orchestrator.consensus.report import (
    ConsensusReport,
    MemoryReportSink,
    ReportSink,
)

__all__ = [
    "CategoryWeights",
    "ConsensusAggregator",
    "ConsensusReport",
    "DroppedRecord",
    "FindingNormalizer",
    "MemoryReportSink",
    "NormalizationResult",
    "ReportSink",
    "SeverityScale",
    "category_score",
    "compute_health_score",
    "load_severity_scales",
    "load_weight_profiles",
    "priority_for",
]
