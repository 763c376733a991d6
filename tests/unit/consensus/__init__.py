"""Shared factories for consensus tests."""

from __future__ import annotations

from consensus_orchestrator.domain.ids import finding_id
from consensus_orchestrator.domain.models import Certainty, Finding, Severity


def make_finding(
    source_id: str,
    location: str,
    *,
    title: str = "issue",
    severity: Severity = Severity.MEDIUM,
    category: str = "security",
    certainty: Certainty = Certainty.MEDIUM,
    applicability: tuple[str, ...] = (),
    related: tuple[str, ...] = (),
    ordinal: int = 0,
) -> Finding:
    return Finding(
        id=finding_id(source_id, location, title, ordinal),
        source_id=source_id,
        location=location,
        title=title,
        severity=severity,
        category=category,
        certainty=certainty,
        applicability=applicability,
        related=related,
    )


__all__ = ["make_finding"]
