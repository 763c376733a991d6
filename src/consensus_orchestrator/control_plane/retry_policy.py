"""Bounded retry policy shared by every recoverable failure kind."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from consensus_orchestrator.constants import DEFAULT_MAX_RETRIES, DEFAULT_WORKER_TIMEOUT_SECONDS


class RetryAction(StrEnum):
    RETRY = "retry"
    ESCALATE = "escalate"


@dataclass(frozen=True, slots=True)
class RetryDecision:
    action: RetryAction
    next_retry_count: int
    delay_seconds: float = 0.0

    @property
    def should_retry(self) -> bool:
        return self.action is RetryAction.RETRY


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Decides between re-queueing and escalating after a failed attempt.

    ``retry_count`` is the number of failures already charged to the task. After the
    ``n``-th failure the task retries while ``n <= max_retries`` and escalates on the
    first failure beyond that.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    worker_timeout_seconds: float = DEFAULT_WORKER_TIMEOUT_SECONDS
    backoff_base_seconds: float = 0.0
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 30.0

    def __post_init__(self) -> None:
        if isinstance(self.max_retries, bool) or self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.worker_timeout_seconds <= 0:
            raise ValueError("worker_timeout_seconds must be > 0")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.backoff_max_seconds < 0:
            raise ValueError("backoff_max_seconds must be >= 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> RetryPolicy:
        retry = config.get("retry", {})
        scheduler = config.get("scheduler", {})
        return cls(
            max_retries=int(retry.get("max_retries", DEFAULT_MAX_RETRIES)),
            worker_timeout_seconds=float(
                scheduler.get("worker_timeout_seconds", DEFAULT_WORKER_TIMEOUT_SECONDS)
            ),
            backoff_base_seconds=float(retry.get("backoff_base_seconds", 0.0)),
            backoff_multiplier=float(retry.get("backoff_multiplier", 2.0)),
            backoff_max_seconds=float(retry.get("backoff_max_seconds", 30.0)),
        )

    def decide(self, retry_count: int, *, max_retries: int | None = None) -> RetryDecision:
        """Decision for a task that has just failed with ``retry_count`` prior failures.

        ``max_retries`` overrides the policy bound for nodes that declare their own.
        """
        if retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        bound = self.max_retries if max_retries is None else max_retries
        failures = retry_count + 1
        if failures > bound:
            return RetryDecision(action=RetryAction.ESCALATE, next_retry_count=failures)
        return RetryDecision(
            action=RetryAction.RETRY,
            next_retry_count=failures,
            delay_seconds=self.backoff_for(failures),
        )

    def backoff_for(self, attempt: int) -> float:
        """Exponential delay before re-dispatching after ``attempt`` failures."""
        if self.backoff_base_seconds <= 0 or attempt <= 0:
            return 0.0
        delay = self.backoff_base_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.backoff_max_seconds)


__all__ = ["RetryAction", "RetryDecision", "RetryPolicy"]
