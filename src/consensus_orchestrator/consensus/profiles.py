"""
Severity scales and category weight profiles.

Analyzers report severity on their own scales: free-form labels ("blocker", "P2",
"serious") or numeric scores. A ``SeverityScale`` maps both onto the canonical four
levels. Scales and weight profiles can be supplied as YAML files:

    # severity_scales.yaml
    scales:
      lighthouse:
        labels: {serious: high, moderate: medium}
        thresholds:
          - {min: 9.0, severity: critical}
          - {min: 7.0, severity: high}
          - {min: 4.0, severity: medium}
          - {min: 0.0, severity: low}

    # weight_profiles.yaml
    profiles:
      seo: {technical: 0.2, content: 0.2, schema: 0.15, performance: 0.15,
            images: 0.15, sitemap: 0.15}
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

import yaml

from consensus_orchestrator.domain.errors import ConfigurationError
from consensus_orchestrator.domain.models import Severity

DEFAULT_SCALE_NAME: Final[str] = "default"

DEFAULT_SEVERITY_ALIASES: Final[dict[str, Severity]] = {
    "critical": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
    "error": Severity.CRITICAL,
    "p0": Severity.CRITICAL,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "p1": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "p2": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.LOW,
    "p3": Severity.LOW,
}

# CVSS-style bands, highest first.
DEFAULT_SEVERITY_THRESHOLDS: Final[tuple[tuple[float, Severity], ...]] = (
    (9.0, Severity.CRITICAL),
    (7.0, Severity.HIGH),
    (4.0, Severity.MEDIUM),
    (0.0, Severity.LOW),
)


@dataclass(frozen=True, slots=True)
class SeverityScale:
    """Maps analyzer-specific severity labels or scores to ``Severity``."""

    labels: Mapping[str, Severity] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_ALIASES))
    thresholds: tuple[tuple[float, Severity], ...] = DEFAULT_SEVERITY_THRESHOLDS

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "labels",
            {str(label).strip().lower(): Severity(value) for label, value in self.labels.items()},
        )
        ordered = tuple(
            sorted(
                ((float(bound), Severity(level)) for bound, level in self.thresholds),
                key=lambda item: item[0],
                reverse=True,
            )
        )
        object.__setattr__(self, "thresholds", ordered)

    def map(self, raw: object) -> Severity | None:
        """Canonical severity for ``raw``, or ``None`` when the scale does not know it."""
        if isinstance(raw, Severity):
            return raw
        if isinstance(raw, bool) or raw is None:
            return None
        if isinstance(raw, (int, float)):
            return self._from_number(float(raw))
        if isinstance(raw, str):
            label = raw.strip().lower()
            if label in self.labels:
                return self.labels[label]
            try:
                return self._from_number(float(label))
            except ValueError:
                return None
        return None

    def extended(
        self,
        labels: Mapping[str, object] | None = None,
        thresholds: tuple[tuple[float, Severity], ...] | None = None,
    ) -> SeverityScale:
        """Copy of this scale with extra labels and, optionally, replacement thresholds."""
        merged: dict[str, Severity] = dict(self.labels)
        for label, value in (labels or {}).items():
            merged[str(label).strip().lower()] = Severity(str(value).strip().lower())
        return SeverityScale(
            labels=merged,
            thresholds=self.thresholds if thresholds is None else thresholds,
        )

    def _from_number(self, value: float) -> Severity | None:
        if not math.isfinite(value):
            return None
        for bound, level in self.thresholds:
            if value >= bound:
                return level
        return None


def default_scale() -> SeverityScale:
    return SeverityScale()


def load_severity_scales(path: Path | str) -> dict[str, SeverityScale]:
    """Load per-analyzer severity scales keyed by ``source_id``.

    Every scale extends the default aliases. The returned mapping always contains a
    ``"default"`` entry, which a file may override.
    """
    payload = _load_yaml_mapping(Path(path), "scales")
    scales: dict[str, SeverityScale] = {DEFAULT_SCALE_NAME: default_scale()}
    for name, raw_scale in sorted(payload.items()):
        entry_path = f"{Path(path).as_posix()}.scales.{name}"
        if not isinstance(raw_scale, Mapping):
            raise ConfigurationError(f"{entry_path} must be an object")
        unknown = sorted(set(raw_scale) - {"labels", "thresholds"})
        if unknown:
            raise ConfigurationError(f"{entry_path} has unsupported keys: {unknown}")
        labels = raw_scale.get("labels", {})
        if not isinstance(labels, Mapping):
            raise ConfigurationError(f"{entry_path}.labels must be an object")
        try:
            thresholds = _coerce_thresholds(raw_scale.get("thresholds"), f"{entry_path}.thresholds")
            scales[str(name)] = default_scale().extended(labels, thresholds)
        except ValueError as exc:
            raise ConfigurationError(f"{entry_path}: {exc}") from exc
    return scales


def load_weight_profiles(path: Path | str) -> dict[str, dict[str, float]]:
    """Load named ``{category: weight}`` profiles; values are checked for type only.

    Sum-to-one validation happens when a profile is selected for a run.
    """
    payload = _load_yaml_mapping(Path(path), "profiles")
    profiles: dict[str, dict[str, float]] = {}
    for name, raw_weights in sorted(payload.items()):
        entry_path = f"{Path(path).as_posix()}.profiles.{name}"
        if not isinstance(raw_weights, Mapping) or not raw_weights:
            raise ConfigurationError(f"{entry_path} must be a non-empty object")
        weights: dict[str, float] = {}
        for category, weight in raw_weights.items():
            if isinstance(weight, bool) or not isinstance(weight, (int, float)):
                raise ConfigurationError(f"{entry_path}.{category} must be a number")
            weights[str(category).strip()] = float(weight)
        profiles[str(name)] = weights
    return profiles


def _load_yaml_mapping(file_path: Path, section: str) -> Mapping[str, object]:
    try:
        with file_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigurationError(f"Failed to read {file_path.as_posix()}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {file_path.as_posix()}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"{file_path.as_posix()} must contain an object")
    nested = payload.get(section)
    if nested is None:
        return payload
    if not isinstance(nested, Mapping):
        raise ConfigurationError(f"{file_path.as_posix()}.{section} must be an object")
    return nested


def _coerce_thresholds(value: object, path: str) -> tuple[tuple[float, Severity], ...] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not value:
        raise ValueError(f"{path} must be a non-empty list")
    parsed: list[tuple[float, Severity]] = []
    for index, item in enumerate(value):
        if not isinstance(item, Mapping) or set(item) != {"min", "severity"}:
            raise ValueError(f"{path}[{index}] must be {{min, severity}}")
        bound = item["min"]
        if isinstance(bound, bool) or not isinstance(bound, (int, float)):
            raise ValueError(f"{path}[{index}].min must be a number")
        parsed.append((float(bound), Severity(str(item["severity"]).strip().lower())))
    return tuple(parsed)


__all__ = [
    "DEFAULT_SCALE_NAME",
    "DEFAULT_SEVERITY_ALIASES",
    "DEFAULT_SEVERITY_THRESHOLDS",
    "SeverityScale",
    "default_scale",
    "load_severity_scales",
    "load_weight_profiles",
]
