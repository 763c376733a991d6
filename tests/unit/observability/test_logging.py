"""Unit tests for queue-backed JSON-lines logging, correlation, and redaction."""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from consensus_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"consensus_orchestrator.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _config(tmp_path: Path, logger_name: str, **overrides: object) -> LoggingConfig:
    fields: dict[str, object] = {
        "run_id": "run-unit",
        "base_log_dir": tmp_path,
        "logger_name": logger_name,
    }
    fields.update(overrides)
    return LoggingConfig(**fields)  # type: ignore[arg-type]


def test_stdlib_records_are_redacted_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_config(tmp_path, logger_name))
    logger = logging.getLogger(logger_name)

    logger.info(
        "calling worker token=tok-FAKE with Bearer abc.def",
        extra={"nested": {"password": "hunter2", "safe": "ok"}, "task_id": "build"},
    )
    shutdown_logging(handle)

    (line,) = _read_json_lines(handle.log_path)
    assert handle.log_path == tmp_path / "run-unit" / "orchestrator.jsonl"
    assert line["run_id"] == "run-unit"
    assert line["task_id"] == "build"
    assert line["level"] == "INFO"
    assert "tok-FAKE" not in str(line["message"])
    assert "abc.def" not in str(line["message"])
    assert line["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}


def test_structlog_events_reach_the_run_sink_with_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_config(tmp_path, logger_name))
    logger = structlog.get_logger(logger_name)

    with correlation_scope(task_id="scan", actor="executor"):
        assert get_correlation_context() == {"task_id": "scan", "actor": "executor"}
        logger.info("control_plane_task_assigned", attempt=2)
    logger.debug("control_plane_filtered_out")
    shutdown_logging(handle)

    (line,) = _read_json_lines(handle.log_path)
    assert line["message"] == "control_plane_task_assigned"
    assert line["task_id"] == "scan"
    assert line["actor"] == "executor"
    assert line["fields"]["attempt"] == 2  # type: ignore[index]
    assert get_correlation_context() == {}


def test_correlation_scopes_nest_and_unset() -> None:
    with correlation_scope(run_id="r1", task_id="a"):
        with correlation_scope(task_id=None, actor="gate"):
            assert get_correlation_context() == {"run_id": "r1", "actor": "gate"}
        assert get_correlation_context() == {"run_id": "r1", "task_id": "a"}

    with pytest.raises(ValueError):
        with correlation_scope(task_id="  "):
            pass


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_config(tmp_path, logger_name, redact_secrets=False))

    logging.getLogger(logger_name).warning("password=plain")
    shutdown_logging(handle)

    (line,) = _read_json_lines(handle.log_path)
    assert line["message"] == "password=plain"


def test_concurrent_logging_keeps_every_line_intact(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(_config(tmp_path, logger_name))
    logger = logging.getLogger(logger_name)

    def _emit(index: int) -> None:
        with correlation_scope(task_id=f"t{index}"):
            for item in range(20):
                logger.info("tick", extra={"item": item})

    threads = [threading.Thread(target=_emit, args=(index,)) for index in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    shutdown_logging(handle)

    lines = _read_json_lines(handle.log_path)
    assert len(lines) + handle.dropped_records == 120
    assert {line["task_id"] for line in lines} <= {f"t{index}" for index in range(6)}


def test_new_setup_replaces_and_shuts_down_previous_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(_config(tmp_path, _logger_name(), run_id="run-a"))
    second = setup_structured_logging(_config(tmp_path, _logger_name(), run_id="run-b"))

    assert first.is_shutdown
    assert get_active_logging_handle() is second

    shutdown_logging()
    shutdown_logging()
    assert second.is_shutdown
    assert get_active_logging_handle() is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"run_id": " "},
        {"log_filename": "../escape.jsonl"},
        {"queue_size": 0},
        {"level": "CHATTY"},
    ],
)
def test_invalid_configs_are_rejected(tmp_path: Path, overrides: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        setup_structured_logging(_config(tmp_path, _logger_name(), **overrides))


def test_from_observability_config() -> None:
    config = LoggingConfig.from_observability_config(
        {"log_level": "DEBUG", "log_dir": "/var/log/consensus", "log_to_stdout": True},
        run_id="run-x",
    )

    assert config.level == "DEBUG"
    assert str(config.base_log_dir) == "/var/log/consensus"
    assert config.log_to_stdout is True
    assert config.redact_secrets is True


def test_default_redactor_is_deep() -> None:
    redacted = default_log_redactor(
        {"headers": {"Authorization": "Bearer x"}, "items": ["api_key=abc123", "fine"]}
    )

    assert redacted == {
        "headers": {"Authorization": "***REDACTED***"},
        "items": ["api_key=***REDACTED***", "fine"],
    }
