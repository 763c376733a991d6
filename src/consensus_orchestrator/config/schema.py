"""
consensus-orchestrator: configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning with explicit migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Support profile overlays including the built-in strict/lenient profiles.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from consensus_orchestrator.constants import (
    CATEGORY_DEDUCTION_CAP,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_WEIGHT_TOLERANCE,
    DEFAULT_WORKER_TIMEOUT_SECONDS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "lenient")
ROUNDING_MODES: Final[tuple[str, ...]] = ("half_up", "half_even")
EVENT_LOG_BACKENDS: Final[tuple[str, ...]] = ("memory", "sqlite")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_DOMAIN_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "event_log"),
    ("paths", "severity_scales"),
    ("paths", "weight_profiles"),
    ("observability", "log_dir"),
)

_SECTIONS: Final[tuple[str, ...]] = (
    "meta",
    "scheduler",
    "retry",
    "consensus",
    "validation",
    "persistence",
    "paths",
    "observability",
)


class MetaConfig(TypedDict):
    schema_version: int


class SchedulerConfig(TypedDict):
    max_concurrency: int
    worker_timeout_seconds: float
    stop_on_gate_failure: bool


class RetryConfig(TypedDict):
    max_retries: int
    backoff_base_seconds: float
    backoff_multiplier: float
    backoff_max_seconds: float


class ConsensusConfig(TypedDict):
    weight_tolerance: float
    rounding: Literal["half_up", "half_even"]
    category_deduction_cap: int
    default_weight_profile: NotRequired[str]


class ValidationConfig(TypedDict):
    require_validator_pair: bool
    pairs: dict[str, str]


class PersistenceConfig(TypedDict):
    event_log_backend: Literal["memory", "sqlite"]


class PathsConfig(TypedDict):
    event_log: str
    severity_scales: NotRequired[str]
    weight_profiles: NotRequired[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    scheduler: dict[str, object]
    retry: dict[str, object]
    consensus: dict[str, object]
    validation: dict[str, object]
    persistence: dict[str, object]
    paths: dict[str, object]
    observability: dict[str, object]


class OrchestratorConfig(TypedDict):
    meta: MetaConfig
    scheduler: SchedulerConfig
    retry: RetryConfig
    consensus: ConsensusConfig
    validation: ValidationConfig
    persistence: PersistenceConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[OrchestratorConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "scheduler": {
        "max_concurrency": DEFAULT_MAX_CONCURRENCY,
        "worker_timeout_seconds": DEFAULT_WORKER_TIMEOUT_SECONDS,
        "stop_on_gate_failure": False,
    },
    "retry": {
        "max_retries": DEFAULT_MAX_RETRIES,
        "backoff_base_seconds": 0.0,
        "backoff_multiplier": 2.0,
        "backoff_max_seconds": 30.0,
    },
    "consensus": {
        "weight_tolerance": DEFAULT_WEIGHT_TOLERANCE,
        "rounding": "half_up",
        "category_deduction_cap": CATEGORY_DEDUCTION_CAP,
    },
    "validation": {
        "require_validator_pair": False,
        "pairs": {},
    },
    "persistence": {
        "event_log_backend": "memory",
    },
    "paths": {
        "event_log": "state/events.sqlite",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "retry": {"max_retries": 1},
            "validation": {"require_validator_pair": True},
        },
        "lenient": {
            "retry": {"max_retries": 5, "backoff_base_seconds": 0.5},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector, bool], dict[str, Any]]


def default_config() -> OrchestratorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade the config file to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the consensus-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    selected = profile.strip() if isinstance(profile, str) else ""
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    overlay_raw = profiles_raw.get(selected) if isinstance(profiles_raw, Mapping) else None
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    return assert_valid_config(merge_config(materialized, overlay_raw))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {*_SECTIONS, "profiles"}, "", issues)
    _require_keys(payload, set(_SECTIONS), "", issues)

    out: dict[str, Any] = {}
    for section in _SECTIONS:
        raw = payload.get(section)
        if raw is None:
            continue
        section_obj = _as_object(raw, section, issues)
        if section_obj is not None:
            out[section] = _SECTION_VALIDATORS[section](section_obj, section, issues, False)

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles_obj = _as_object(profiles_raw, "profiles", issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, "profiles", issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        version_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], version_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(version_path, migration_guidance(parsed))
    return out


def _validate_scheduler(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"max_concurrency", "worker_timeout_seconds", "stop_on_gate_failure"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_concurrency" in payload:
        parsed = _as_int(payload["max_concurrency"], _join(path, "max_concurrency"), issues, minimum=1)
        if parsed is not None:
            out["max_concurrency"] = parsed
    if "worker_timeout_seconds" in payload:
        timeout_path = _join(path, "worker_timeout_seconds")
        parsed_timeout = _as_float(payload["worker_timeout_seconds"], timeout_path, issues, minimum=0.0)
        if parsed_timeout is not None:
            if parsed_timeout == 0.0:
                issues.add(timeout_path, "must be > 0")
            else:
                out["worker_timeout_seconds"] = parsed_timeout
    if "stop_on_gate_failure" in payload:
        flag = _as_bool(
            payload["stop_on_gate_failure"], _join(path, "stop_on_gate_failure"), issues
        )
        if flag is not None:
            out["stop_on_gate_failure"] = flag
    return out


def _validate_retry(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"max_retries", "backoff_base_seconds", "backoff_multiplier", "backoff_max_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_retries" in payload:
        parsed = _as_int(payload["max_retries"], _join(path, "max_retries"), issues, minimum=0)
        if parsed is not None:
            out["max_retries"] = parsed
    for key, minimum in (
        ("backoff_base_seconds", 0.0),
        ("backoff_multiplier", 1.0),
        ("backoff_max_seconds", 0.0),
    ):
        if key in payload:
            parsed_float = _as_float(payload[key], _join(path, key), issues, minimum=minimum)
            if parsed_float is not None:
                out[key] = parsed_float
    return out


def _validate_consensus(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    required = {"weight_tolerance", "rounding", "category_deduction_cap"}
    _reject_unknown_keys(payload, {*required, "default_weight_profile"}, path, issues)
    if not partial:
        _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    if "weight_tolerance" in payload:
        tolerance_path = _join(path, "weight_tolerance")
        parsed = _as_float(payload["weight_tolerance"], tolerance_path, issues, minimum=0.0)
        if parsed is not None:
            if parsed >= 0.5:
                issues.add(tolerance_path, "must be < 0.5")
            else:
                out["weight_tolerance"] = parsed
    if "rounding" in payload:
        parsed_rounding = _as_enum(
            payload["rounding"], _join(path, "rounding"), issues, allowed_values=ROUNDING_MODES
        )
        if parsed_rounding is not None:
            out["rounding"] = parsed_rounding
    if "category_deduction_cap" in payload:
        parsed_cap = _as_int(
            payload["category_deduction_cap"],
            _join(path, "category_deduction_cap"),
            issues,
            minimum=0,
        )
        if parsed_cap is not None:
            out["category_deduction_cap"] = parsed_cap
    if "default_weight_profile" in payload:
        parsed_profile = _as_str(
            payload["default_weight_profile"], _join(path, "default_weight_profile"), issues
        )
        if parsed_profile is not None:
            out["default_weight_profile"] = parsed_profile
    return out


def _validate_validation(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"require_validator_pair", "pairs"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "require_validator_pair" in payload:
        parsed = _as_bool(
            payload["require_validator_pair"], _join(path, "require_validator_pair"), issues
        )
        if parsed is not None:
            out["require_validator_pair"] = parsed
    if "pairs" in payload:
        pairs_path = _join(path, "pairs")
        pairs_obj = _as_object(payload["pairs"], pairs_path, issues)
        if pairs_obj is not None:
            pairs: dict[str, str] = {}
            for builder_domain in sorted(pairs_obj):
                entry_path = _join(pairs_path, builder_domain)
                if not _DOMAIN_PATTERN.fullmatch(builder_domain):
                    issues.add(entry_path, "builder domain must match ^[A-Za-z0-9][A-Za-z0-9._-]*$")
                    continue
                validator_domain = _as_str(pairs_obj[builder_domain], entry_path, issues)
                if validator_domain is not None:
                    pairs[builder_domain] = validator_domain
            out["pairs"] = pairs
    return out


def _validate_persistence(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"event_log_backend"}, path, issues)
    if not partial:
        _require_keys(payload, {"event_log_backend"}, path, issues)

    out: dict[str, Any] = {}
    if "event_log_backend" in payload:
        parsed = _as_enum(
            payload["event_log_backend"],
            _join(path, "event_log_backend"),
            issues,
            allowed_values=EVENT_LOG_BACKENDS,
        )
        if parsed is not None:
            out["event_log_backend"] = parsed
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"event_log", "severity_scales", "weight_profiles"}, path, issues)
    if not partial:
        _require_keys(payload, {"event_log"}, path, issues)

    out: dict[str, Any] = {}
    for key in ("event_log", "severity_scales", "weight_profiles"):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level
    if "log_dir" in payload:
        parsed_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            out["log_dir"] = parsed_dir
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    return out


_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "meta": _validate_meta,
    "scheduler": _validate_scheduler,
    "retry": _validate_retry,
    "consensus": _validate_consensus,
    "validation": _validate_validation,
    "persistence": _validate_persistence,
    "paths": _validate_paths,
    "observability": _validate_observability,
}


def _validate_profiles(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    overlay_sections = set(_SECTIONS) - {"meta"}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue
        _reject_unknown_keys(profile_obj, overlay_sections, profile_path, issues)
        overlay: dict[str, Any] = {}
        for section in sorted(overlay_sections):
            raw = profile_obj.get(section)
            if raw is None:
                continue
            section_path = _join(profile_path, section)
            section_obj = _as_object(raw, section_path, issues)
            if section_obj is not None:
                overlay[section] = _SECTION_VALIDATORS[section](
                    section_obj, section_path, issues, True
                )
        out[profile_name] = overlay
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is not None and "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "EVENT_LOG_BACKENDS",
    "OrchestratorConfig",
    "PATH_FIELDS",
    "ProfileOverlay",
    "ROUNDING_MODES",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
