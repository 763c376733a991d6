"""Unit tests for the bounded retry policy."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from consensus_orchestrator.config.schema import default_config
from consensus_orchestrator.control_plane.retry_policy import RetryAction, RetryPolicy


def test_retries_until_bound_then_escalates() -> None:
    policy = RetryPolicy(max_retries=2)

    decisions = [policy.decide(count) for count in range(3)]

    assert [decision.action for decision in decisions] == [
        RetryAction.RETRY,
        RetryAction.RETRY,
        RetryAction.ESCALATE,
    ]
    assert decisions[-1].next_retry_count == 3


def test_zero_retries_escalates_on_first_failure() -> None:
    decision = RetryPolicy(max_retries=0).decide(0)

    assert not decision.should_retry
    assert decision.next_retry_count == 1


def test_node_bound_overrides_policy_bound() -> None:
    policy = RetryPolicy(max_retries=5)

    assert policy.decide(1, max_retries=1).action is RetryAction.ESCALATE


def test_backoff_is_exponential_and_capped() -> None:
    policy = RetryPolicy(backoff_base_seconds=0.5, backoff_multiplier=2.0, backoff_max_seconds=3.0)

    assert [policy.backoff_for(attempt) for attempt in range(1, 5)] == [0.5, 1.0, 2.0, 3.0]
    assert policy.decide(0).delay_seconds == 0.5
    assert RetryPolicy().backoff_for(4) == 0.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1},
        {"worker_timeout_seconds": 0},
        {"backoff_base_seconds": -0.1},
        {"backoff_multiplier": 0.5},
    ],
)
def test_invalid_policy_values_are_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)  # type: ignore[arg-type]


def test_from_config_reads_retry_and_scheduler_sections() -> None:
    config = default_config()
    config["retry"]["max_retries"] = 1
    config["scheduler"]["worker_timeout_seconds"] = 2.5

    policy = RetryPolicy.from_config(config)

    assert policy.max_retries == 1
    assert policy.worker_timeout_seconds == 2.5


@given(
    max_retries=st.integers(min_value=0, max_value=10),
    retry_count=st.integers(min_value=0, max_value=20),
)
def test_decision_follows_failure_count(max_retries: int, retry_count: int) -> None:
    decision = RetryPolicy(max_retries=max_retries).decide(retry_count)

    assert decision.next_retry_count == retry_count + 1
    assert decision.should_retry is (retry_count + 1 <= max_retries)
