"""
Unit tests for consensus aggregation.

Covers confidence voting, category scoring with the deduction cap, the weighted health
score and its rounding, false-positive handling, applicability filtering, and ranking.
"""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from consensus_orchestrator.consensus.aggregator import (
    CategoryWeights,
    ConsensusAggregator,
    category_score,
    compute_health_score,
    priority_for,
)
from consensus_orchestrator.domain.errors import ConfigurationError
from consensus_orchestrator.domain.events import EventType
from consensus_orchestrator.domain.models import (
    CategoryScore,
    Certainty,
    Confidence,
    Priority,
    Severity,
)
from consensus_orchestrator.persistence.event_log import InMemoryEventLog
from tests.unit.consensus import make_finding

_SEO_WEIGHTS = {
    "technical": 0.20,
    "content": 0.20,
    "schema": 0.15,
    "performance": 0.15,
    "images": 0.15,
    "sitemap": 0.15,
}


def _scores(weights: dict[str, float], scores: dict[str, float]) -> list[CategoryScore]:
    return [
        CategoryScore(category=name, weight=weights[name], score=scores[name])
        for name in sorted(weights)
    ]


def test_weighted_health_score_rounds_to_display_value() -> None:
    health = compute_health_score(
        _scores(
            _SEO_WEIGHTS,
            {
                "technical": 85,
                "content": 72,
                "schema": 60,
                "performance": 78,
                "images": 90,
                "sitemap": 95,
            },
        )
    )

    assert health.value == pytest.approx(79.85)
    assert health.rounded == 80
    assert health.display == "80/100"


@pytest.mark.parametrize(("rounding", "expected"), [("half_up", 81), ("half_even", 80)])
def test_exact_half_follows_configured_rounding(rounding: str, expected: int) -> None:
    weights = {"a": 0.5, "b": 0.5}
    health = compute_health_score(_scores(weights, {"a": 81, "b": 80}), rounding=rounding)

    assert health.value == 80.5
    assert health.rounded == expected
    assert health.rounding == rounding


def test_findings_from_two_sources_at_one_location_are_confirmed() -> None:
    aggregator = ConsensusAggregator({"security": 1.0})
    findings = [
        make_finding("zap", "src/login.py:10", severity=Severity.HIGH),
        make_finding("semgrep", "src/login.py:10", severity=Severity.MEDIUM),
    ]

    report = aggregator.aggregate(findings)

    (record,) = report.ranked_findings
    assert record.confidence is Confidence.CONFIRMED
    assert record.severity is Severity.HIGH
    assert record.source_ids == ["zap", "semgrep"]
    assert record.contributing_finding_ids == [finding.id for finding in findings]
    assert record.priority is Priority.FIX_IMMEDIATELY


def test_single_source_confidence_depends_on_certainty() -> None:
    aggregator = ConsensusAggregator({"security": 1.0})
    report = aggregator.aggregate(
        [
            make_finding("zap", "a.py:1", severity=Severity.CRITICAL, certainty=Certainty.HIGH),
            make_finding("zap", "b.py:1", severity=Severity.CRITICAL),
            make_finding("zap", "c.py:1", severity=Severity.MEDIUM),
        ]
    )

    by_location = {record.location: record for record in report.ranked_findings}
    assert by_location["a.py:1"].confidence is Confidence.LIKELY
    assert by_location["a.py:1"].priority is Priority.FIX_IMMEDIATELY
    assert by_location["b.py:1"].confidence is Confidence.INVESTIGATE
    assert by_location["b.py:1"].priority is Priority.BACKLOG
    assert by_location["c.py:1"].priority is Priority.INFO


def test_two_findings_from_one_source_are_not_confirmed() -> None:
    aggregator = ConsensusAggregator({"security": 1.0})
    report = aggregator.aggregate(
        [
            make_finding("zap", "a.py:1", title="first"),
            make_finding("zap", "a.py:1", title="second", ordinal=1),
        ]
    )

    (record,) = report.ranked_findings
    assert record.distinct_sources == 1
    assert record.confidence is Confidence.INVESTIGATE


def test_related_links_group_findings_at_different_locations() -> None:
    root = make_finding("zap", "templates/base.html:4", title="missing csp")
    linked = make_finding("semgrep", "settings.py:20", title="csp disabled", related=(root.id,))

    report = ConsensusAggregator({"security": 1.0}).aggregate([root, linked])

    (record,) = report.ranked_findings
    assert record.location == "templates/base.html:4"
    assert record.confidence is Confidence.CONFIRMED


def test_category_deduction_is_capped() -> None:
    findings = [
        make_finding("zap", f"page{index}.html", severity=Severity.HIGH) for index in range(5)
    ]

    report = ConsensusAggregator({"security": 1.0}).aggregate(findings)

    (score,) = report.category_scores
    assert score.deduction == 25
    assert score.score == 75
    assert score.finding_count == 5
    assert report.health_score.display == "75/100"


def test_false_positive_override_excludes_record_and_logs_justification() -> None:
    log = InMemoryEventLog()
    aggregator = ConsensusAggregator(
        {"security": 1.0},
        false_positive_overrides={"tests/fixtures/key.pem": "test fixture, not a real key"},
        event_log=log,
    )
    fixture = make_finding("gitleaks", "tests/fixtures/key.pem", severity=Severity.CRITICAL)

    report = aggregator.aggregate([fixture])

    assert report.ranked_findings == ()
    assert report.health_score.rounded == 100
    (excluded,) = report.excluded_false_positives
    assert excluded.finding_id == fixture.id
    assert excluded.reason == "test fixture, not a real key"
    assert excluded.confidence is Confidence.FALSE_POSITIVE
    types = [record.type for record in log.records()]
    assert types == [EventType.FINDING_EXCLUDED, EventType.CONSENSUS_COMPLETED]


def test_override_can_target_a_record_id() -> None:
    finding = make_finding("zap", "a.py:3")
    first = ConsensusAggregator({"security": 1.0}).aggregate([finding])
    record_id = first.ranked_findings[0].record_id

    second = ConsensusAggregator(
        {"security": 1.0}, false_positive_overrides={record_id: "accepted risk"}
    ).aggregate([finding])

    assert second.ranked_findings == ()
    assert second.excluded_false_positives[0].reason == "accepted risk"


def test_findings_outside_detected_context_are_excluded_with_reason() -> None:
    aggregator = ConsensusAggregator({"security": 1.0}, detected_context=["WordPress"])
    shopify = make_finding("scanner", "theme.liquid", applicability=("shopify",))
    generic = make_finding("scanner", "index.php")
    plugin = make_finding("scanner", "wp-config.php", applicability=("wordpress",))

    report = aggregator.aggregate([shopify, generic, plugin])

    assert sorted(record.location for record in report.ranked_findings) == [
        "index.php",
        "wp-config.php",
    ]
    (excluded,) = report.excluded_false_positives
    assert excluded.finding_id == shopify.id
    assert excluded.reason == "applies to ['shopify'] but detected context is ['wordpress']"


def test_without_context_applicability_tags_are_ignored() -> None:
    finding = make_finding("scanner", "theme.liquid", applicability=("shopify",))

    report = ConsensusAggregator({"security": 1.0}).aggregate([finding])

    assert len(report.ranked_findings) == 1
    assert report.excluded_false_positives == ()


def test_unweighted_category_scores_with_zero_weight_and_warns() -> None:
    findings = [make_finding("zap", "a.py:1", category="style", severity=Severity.CRITICAL)]

    report = ConsensusAggregator({"security": 1.0}).aggregate(findings, warnings=["upstream"])

    by_category = {score.category: score for score in report.category_scores}
    assert by_category["style"].weight == 0.0
    assert by_category["style"].score == 85
    assert by_category["security"].score == 100
    assert report.health_score.rounded == 100
    assert report.warnings == (
        "upstream",
        "category 'style' has no configured weight; weight 0 used",
    )


def test_ranking_orders_by_priority_then_severity_then_confidence() -> None:
    findings = [
        make_finding("zap", "info.py", severity=Severity.LOW),
        make_finding("zap", "likely-medium.py", severity=Severity.MEDIUM, certainty=Certainty.HIGH),
        make_finding("zap", "confirmed-high.py", severity=Severity.HIGH),
        make_finding("semgrep", "confirmed-high.py", severity=Severity.HIGH),
        make_finding("zap", "likely-critical.py", severity=Severity.CRITICAL, certainty=Certainty.HIGH),
    ]

    report = ConsensusAggregator({"security": 1.0}).aggregate(findings)

    assert [record.location for record in report.ranked_findings] == [
        "likely-critical.py",
        "confirmed-high.py",
        "likely-medium.py",
        "info.py",
    ]
    buckets = report.priority_buckets
    assert len(buckets[Priority.FIX_IMMEDIATELY]) == 2
    assert len(buckets[Priority.FIX_THIS_SPRINT]) == 1
    assert buckets[Priority.BACKLOG] == ()


def test_same_input_produces_identical_report_json() -> None:
    findings = [
        make_finding("zap", "a.py:1", severity=Severity.HIGH),
        make_finding("semgrep", "a.py:1", severity=Severity.LOW),
        make_finding("zap", "b.py:7", category="privacy"),
    ]
    weights = {"security": 0.6, "privacy": 0.4}

    first = ConsensusAggregator(weights).aggregate(findings, event_log_reference="memory://run")
    second = ConsensusAggregator(weights).aggregate(findings, event_log_reference="memory://run")

    assert first.to_json() == second.to_json()
    assert first.digest() == second.digest()
    payload = json.loads(first.to_json())
    assert payload["event_log_reference"] == "memory://run"
    assert set(payload["priority_buckets"]) == {priority.value for priority in Priority}


def test_empty_batch_is_a_clean_report() -> None:
    log = InMemoryEventLog()
    report = ConsensusAggregator({"security": 1.0}, event_log=log).aggregate([])

    assert report.is_clean
    assert report.health_score.display == "100/100"
    assert report.event_log_reference == log.reference
    completed = log.records()[-1]
    assert completed.type is EventType.CONSENSUS_COMPLETED
    assert completed.payload["report_digest"] == report.digest()


@pytest.mark.parametrize(
    "weights",
    [
        {},
        {"security": 0.5},
        {"security": 0.7, "privacy": 0.7},
        {"security": 1.5, "privacy": -0.5},
        {"security": "1.0"},
        {"security": True},
    ],
)
def test_invalid_weights_are_rejected(weights: dict[str, object]) -> None:
    with pytest.raises(ConfigurationError):
        CategoryWeights.validate(weights)


def test_weights_within_tolerance_are_accepted() -> None:
    weights = CategoryWeights.validate({"a": 0.1, "b": 0.2, "c": 0.7})

    assert list(weights) == ["a", "b", "c"]
    assert "b" in weights
    assert weights.get("missing") is None


def test_aggregator_rejects_bad_configuration() -> None:
    with pytest.raises(ConfigurationError):
        ConsensusAggregator({"security": 1.0}, rounding="banker")
    with pytest.raises(ConfigurationError):
        ConsensusAggregator({"security": 1.0}, category_deduction_cap=-1)
    with pytest.raises(ConfigurationError):
        ConsensusAggregator({"security": 1.0}, false_positive_overrides={"a.py": "  "})


@pytest.mark.parametrize(
    ("severity", "confidence", "expected"),
    [
        (Severity.CRITICAL, Confidence.CONFIRMED, Priority.FIX_IMMEDIATELY),
        (Severity.HIGH, Confidence.LIKELY, Priority.FIX_IMMEDIATELY),
        (Severity.MEDIUM, Confidence.CONFIRMED, Priority.FIX_THIS_SPRINT),
        (Severity.LOW, Confidence.LIKELY, Priority.BACKLOG),
        (Severity.HIGH, Confidence.INVESTIGATE, Priority.BACKLOG),
        (Severity.MEDIUM, Confidence.INVESTIGATE, Priority.INFO),
        (Severity.CRITICAL, Confidence.FALSE_POSITIVE, Priority.INFO),
    ],
)
def test_priority_matrix(severity: Severity, confidence: Confidence, expected: Priority) -> None:
    assert priority_for(severity, confidence) is expected


_severities = st.lists(st.sampled_from(list(Severity)), max_size=20)


@given(severities=_severities)
def test_category_score_stays_within_cap(severities: list[Severity]) -> None:
    score, deduction = category_score(severities)

    assert 0 <= deduction <= 25
    assert score == 100 - deduction


@given(severities=_severities, extra=st.sampled_from(list(Severity)))
def test_adding_a_finding_never_raises_a_category_score(
    severities: list[Severity], extra: Severity
) -> None:
    before, _ = category_score(severities)
    after, _ = category_score([*severities, extra])

    assert after <= before


@given(
    scores=st.lists(st.integers(min_value=0, max_value=100), min_size=1, max_size=6),
    rounding=st.sampled_from(["half_up", "half_even"]),
)
def test_health_score_stays_within_bounds(scores: list[int], rounding: str) -> None:
    weight = 1.0 / len(scores)
    category_scores = [
        CategoryScore(category=f"c{index}", weight=weight, score=score)
        for index, score in enumerate(scores)
    ]

    health = compute_health_score(category_scores, rounding=rounding)

    assert 0 <= health.value <= 100
    assert 0 <= health.rounded <= 100
    assert min(scores) - 1 <= health.rounded <= max(scores) + 1
