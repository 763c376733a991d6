"""Unit tests for severity scales and weight profiles loaded from YAML."""

from __future__ import annotations

from pathlib import Path

import pytest

from consensus_orchestrator.consensus.profiles import (
    DEFAULT_SCALE_NAME,
    SeverityScale,
    load_severity_scales,
    load_weight_profiles,
)
from consensus_orchestrator.domain.errors import ConfigurationError
from consensus_orchestrator.domain.models import Severity


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_scale_maps_labels_case_insensitively() -> None:
    scale = SeverityScale()

    assert scale.map("  CRITICAL ") is Severity.CRITICAL
    assert scale.map(Severity.MEDIUM) is Severity.MEDIUM
    assert scale.map(True) is None
    assert scale.map(None) is None
    assert scale.map(float("nan")) is None
    assert scale.map(-1) is None


def test_load_severity_scales_extends_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "scales.yaml",
        """
scales:
  axe:
    labels:
      Serious: high
      moderate: low
    thresholds:
      - {min: 0.5, severity: critical}
      - {min: 0.0, severity: low}
""",
    )

    scales = load_severity_scales(path)

    assert set(scales) == {DEFAULT_SCALE_NAME, "axe"}
    axe = scales["axe"]
    assert axe.map("serious") is Severity.HIGH
    assert axe.map("moderate") is Severity.LOW
    assert axe.map("blocker") is Severity.CRITICAL
    assert axe.map(0.7) is Severity.CRITICAL
    assert scales[DEFAULT_SCALE_NAME].map("moderate") is Severity.MEDIUM


def test_top_level_mapping_is_accepted_for_scales(tmp_path: Path) -> None:
    path = _write(tmp_path / "scales.yaml", "bandit:\n  labels: {undefined: medium}\n")

    scales = load_severity_scales(path)

    assert scales["bandit"].map("UNDEFINED") is Severity.MEDIUM


@pytest.mark.parametrize(
    "text",
    [
        "scales:\n  axe:\n    colours: {}\n",
        "scales:\n  axe:\n    labels: {serious: spicy}\n",
        "scales:\n  axe:\n    thresholds: [{min: high, severity: low}]\n",
        "scales:\n  axe: [1, 2]\n",
        "- not\n- a mapping\n",
        "scales: [unclosed\n",
    ],
)
def test_invalid_scale_files_raise_configuration_error(tmp_path: Path, text: str) -> None:
    path = _write(tmp_path / "scales.yaml", text)

    with pytest.raises(ConfigurationError):
        load_severity_scales(path)


def test_missing_file_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Failed to read"):
        load_weight_profiles(tmp_path / "absent.yaml")


def test_load_weight_profiles(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "weights.yaml",
        """
profiles:
  seo:
    technical: 0.2
    content: 0.2
    schema: 0.15
    performance: 0.15
    images: 0.15
    sitemap: 0.15
  security-only:
    security: 1
""",
    )

    profiles = load_weight_profiles(path)

    assert sorted(profiles) == ["security-only", "seo"]
    assert profiles["security-only"] == {"security": 1.0}
    assert profiles["seo"]["schema"] == 0.15


def test_weight_profile_values_must_be_numbers(tmp_path: Path) -> None:
    path = _write(tmp_path / "weights.yaml", "profiles:\n  seo: {technical: lots}\n")

    with pytest.raises(ConfigurationError, match="technical"):
        load_weight_profiles(path)
