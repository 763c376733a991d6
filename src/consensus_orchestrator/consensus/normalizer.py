"""
Finding normalizer.

Purpose
- Convert heterogeneous raw analyzer output into canonical ``Finding`` objects.

Functional requirements
- Severity is always mapped onto the canonical four-level scale. Unknown or missing
  severities become ``low`` with a warning; they are never dropped.
- Records without a usable ``location`` or ``title`` are dropped as ``MalformedFinding``,
  logged, and recorded in the event log. Normalization never raises for a bad record.
- Output order follows input order, and finding ids are derived from content and position,
  so the same batch always normalizes to the same findings.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

import structlog

from consensus_orchestrator.consensus.profiles import DEFAULT_SCALE_NAME, SeverityScale
from consensus_orchestrator.constants import DEFAULT_CATEGORY
from consensus_orchestrator.domain.errors import MalformedFinding
from consensus_orchestrator.domain.events import EventType, as_json_value
from consensus_orchestrator.domain.ids import finding_id
from consensus_orchestrator.domain.models import Certainty, Finding, JSONValue, Severity
from consensus_orchestrator.persistence.event_log import EventLog

_ACTOR: Final[str] = "finding_normalizer"
_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("location", "title")
_RECORD_FIELDS: Final[tuple[str, ...]] = (
    "location",
    "title",
    "severity",
    "confidence",
    "certainty",
    "category",
    "evidence",
    "remediation",
    "applicability",
    "related",
)
_LOCATION_PATH_KEYS: Final[tuple[str, ...]] = ("file", "path", "url")

_CERTAINTY_LABELS: Final[dict[str, Certainty]] = {
    "high": Certainty.HIGH,
    "certain": Certainty.HIGH,
    "medium": Certainty.MEDIUM,
    "low": Certainty.LOW,
    "tentative": Certainty.LOW,
}


@dataclass(frozen=True, slots=True)
class DroppedRecord:
    source_id: str
    index: int
    missing: tuple[str, ...]

    def to_error(self) -> MalformedFinding:
        return MalformedFinding(self.source_id, self.index, self.missing)

    def to_dict(self) -> dict[str, JSONValue]:
        return {"source_id": self.source_id, "index": self.index, "missing": list(self.missing)}


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    findings: tuple[Finding, ...] = ()
    dropped: tuple[DroppedRecord, ...] = ()
    warnings: tuple[str, ...] = ()

    def merged(self, other: NormalizationResult) -> NormalizationResult:
        return NormalizationResult(
            findings=self.findings + other.findings,
            dropped=self.dropped + other.dropped,
            warnings=self.warnings + other.warnings,
        )


class FindingNormalizer:
    """Maps raw analyzer records onto ``Finding`` using per-source severity scales."""

    def __init__(
        self,
        *,
        scales: Mapping[str, SeverityScale] | None = None,
        event_log: EventLog | None = None,
        logger: Any | None = None,
    ) -> None:
        self._scales = dict(scales or {})
        self._default_scale = self._scales.get(DEFAULT_SCALE_NAME, SeverityScale())
        self._event_log = event_log
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def scale_for(self, source_id: str) -> SeverityScale:
        return self._scales.get(source_id, self._default_scale)

    def normalize(self, source_id: str, raw_records: Iterable[object]) -> NormalizationResult:
        scale = self.scale_for(source_id)
        findings: list[Finding] = []
        dropped: list[DroppedRecord] = []
        warnings: list[str] = []

        for index, raw in enumerate(raw_records):
            fields = _record_fields(raw)
            location = _location(fields.get("location"))
            title = _text(fields.get("title"))
            if location is None or title is None:
                missing = tuple(
                    name
                    for name, value in zip(_REQUIRED_FIELDS, (location, title), strict=True)
                    if value is None
                )
                dropped.append(self._drop(source_id, index, missing))
                continue

            raw_severity = fields.get("severity")
            severity = scale.map(raw_severity)
            if severity is None:
                severity = Severity.LOW
                warnings.append(
                    f"{source_id}[{index}]: unknown severity {raw_severity!r}; treated as low"
                )
                self._logger.warning(
                    "consensus_unknown_severity",
                    source_id=source_id,
                    index=index,
                    severity=repr(raw_severity),
                )

            raw_certainty = fields.get("confidence", fields.get("certainty"))
            certainty = _certainty(raw_certainty)
            if certainty is None:
                certainty = Certainty.MEDIUM
                warnings.append(
                    f"{source_id}[{index}]: unknown confidence {raw_certainty!r}; "
                    "treated as medium"
                )

            findings.append(
                Finding(
                    id=finding_id(source_id, location, title, index),
                    source_id=source_id,
                    location=location,
                    title=title,
                    severity=severity,
                    category=_text(fields.get("category")) or DEFAULT_CATEGORY,
                    evidence=self._opaque(fields.get("evidence"), source_id, index, warnings),
                    remediation=self._opaque(fields.get("remediation"), source_id, index, warnings),
                    certainty=certainty,
                    applicability=_tags(fields.get("applicability")),
                    related=_tags(fields.get("related")),
                )
            )

        self._logger.info(
            "consensus_findings_normalized",
            source_id=source_id,
            accepted=len(findings),
            dropped=len(dropped),
            warnings=len(warnings),
        )
        return NormalizationResult(
            findings=tuple(findings),
            dropped=tuple(dropped),
            warnings=tuple(warnings),
        )

    def _drop(self, source_id: str, index: int, missing: tuple[str, ...]) -> DroppedRecord:
        record = DroppedRecord(source_id=source_id, index=index, missing=missing)
        if self._event_log is not None:
            self._event_log.append(_ACTOR, EventType.FINDING_DROPPED, record.to_dict())
        self._logger.warning(
            "consensus_finding_dropped",
            source_id=source_id,
            index=index,
            missing=list(missing),
            error=str(record.to_error()),
        )
        return record

    def _opaque(
        self,
        value: object,
        source_id: str,
        index: int,
        warnings: list[str],
    ) -> JSONValue:
        try:
            return as_json_value(value, f"{source_id}[{index}]")
        except ValueError:
            warnings.append(f"{source_id}[{index}]: non-JSON payload stored as text")
            return str(value)


def _record_fields(raw: object) -> Mapping[str, object]:
    if isinstance(raw, Mapping):
        return {str(key): value for key, value in raw.items()}
    if dataclasses.is_dataclass(raw) and not isinstance(raw, type):
        return {item.name: getattr(raw, item.name) for item in dataclasses.fields(raw)}
    return {name: getattr(raw, name) for name in _RECORD_FIELDS if hasattr(raw, name)}


def _text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _location(value: object) -> str | None:
    if isinstance(value, str):
        return _text(value)
    if not isinstance(value, Mapping):
        return None
    path = next(
        (text for key in _LOCATION_PATH_KEYS if (text := _text(value.get(key))) is not None),
        None,
    )
    if path is None:
        return None
    line = value.get("line")
    if isinstance(line, bool) or not isinstance(line, (int, str)) or str(line).strip() == "":
        return path
    return f"{path}:{str(line).strip()}"


def _certainty(value: object) -> Certainty | None:
    if value is None:
        return Certainty.MEDIUM
    if isinstance(value, Certainty):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value >= 0.8:
            return Certainty.HIGH
        if value >= 0.5:
            return Certainty.MEDIUM
        return Certainty.LOW
    if isinstance(value, str):
        return _CERTAINTY_LABELS.get(value.strip().lower())
    return None


def _tags(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        text = value.strip()
        return (text,) if text else ()
    if isinstance(value, Iterable) and not isinstance(value, (bytes, bytearray, Mapping)):
        return tuple(sorted({text for item in value if (text := _text(item)) is not None}))
    return ()


__all__ = ["DroppedRecord", "FindingNormalizer", "NormalizationResult"]
