"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
EVENT_LOG_SCHEMA_VERSION: Final[int] = 1
TASK_GRAPH_SCHEMA_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# Retry bound shared by task nodes and the retry policy.
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_WORKER_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_MAX_CONCURRENCY: Final[int] = 4

# Canonical severity scale, lowest first.
SEVERITY_LEVELS: Final[tuple[str, ...]] = ("low", "medium", "high", "critical")
SEVERITY_DEDUCTIONS: Final[dict[str, int]] = {
    "critical": 15,
    "high": 8,
    "medium": 4,
    "low": 2,
}
CATEGORY_DEDUCTION_CAP: Final[int] = 25
MAX_CATEGORY_SCORE: Final[int] = 100

DEFAULT_CATEGORY: Final[str] = "uncategorized"
DEFAULT_WEIGHT_TOLERANCE: Final[float] = 1e-6

__all__ = [
    "CATEGORY_DEDUCTION_CAP",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CATEGORY",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_WEIGHT_TOLERANCE",
    "DEFAULT_WORKER_TIMEOUT_SECONDS",
    "EVENT_LOG_SCHEMA_VERSION",
    "MAX_CATEGORY_SCORE",
    "REPORT_SCHEMA_VERSION",
    "SEVERITY_DEDUCTIONS",
    "SEVERITY_LEVELS",
    "TASK_GRAPH_SCHEMA_VERSION",
]
