"""Unit tests for structured logging, correlation ids and timing."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import patch

import pytest

from neon_client.correlation import (
    correlation_context,
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from neon_client.instrumentation import timed_async
from neon_client.logging_abstraction import HumanReadableFormatter, JSONFormatter, NeonLogger


def _record(message: str = "Connected", extra: dict[str, object] | None = None) -> logging.LogRecord:
    record = logging.LogRecord("neon_client.test", logging.INFO, __file__, 42, message, (), None)
    if extra is not None:
        record.extra_data = extra
    return record


class TestCorrelation:
    """Tests for correlation id scoping."""

    def test_context_sets_and_restores(self):
        set_correlation_id(None)

        with correlation_context(prefix="connect") as outer:
            assert outer.startswith("connect-")
            assert get_correlation_id() == outer
            with correlation_context("fixed-id") as inner:
                assert inner == "fixed-id"
                assert get_correlation_id() == "fixed-id"
            assert get_correlation_id() == outer

        assert get_correlation_id() is None

    def test_generated_ids_are_unique(self):
        assert generate_correlation_id() != generate_correlation_id()

    @pytest.mark.asyncio
    async def test_tasks_inherit_the_scope(self):
        async def read() -> str | None:
            return get_correlation_id()

        with correlation_context("reconnect-1"):
            task = asyncio.create_task(read())

        assert await task == "reconnect-1"

    @pytest.mark.asyncio
    async def test_ensure_creates_once(self):
        async def entry_point() -> tuple[str, str]:
            set_correlation_id(None)
            return ensure_correlation_id("stream"), ensure_correlation_id("stream")

        first, second = await asyncio.create_task(entry_point())

        assert first == second
        assert first.startswith("stream-")


class TestFormatters:
    """Tests for the JSON and human-readable formatters."""

    def test_json_formatter(self):
        with correlation_context("abc12345xyz"):
            line = JSONFormatter().format(_record(extra={"device_id": "d1", "port": 8080}))

        data = json.loads(line)
        assert data["message"] == "Connected"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "abc12345xyz"
        assert data["context"] == {"device_id": "d1", "port": 8080}

    def test_human_formatter(self):
        with correlation_context("abc12345xyz"):
            line = HumanReadableFormatter().format(_record(extra={"device_id": "d1"}))

        assert "[abc12345]" in line
        assert "> Connected | device_id=d1" in line

    def test_human_formatter_without_correlation(self):
        set_correlation_id(None)

        line = HumanReadableFormatter().format(_record())

        assert "[--------]" in line
        assert line.endswith("> Connected")


class TestNeonLogger:
    """Tests for the NeonLogger facade."""

    def test_extra_reaches_records(self, caplog: pytest.LogCaptureFixture):
        log = NeonLogger("neon_client.tests.extra", human_output="stdout")
        log.logger.propagate = True

        with caplog.at_level(logging.INFO, logger="neon_client.tests.extra"):
            log.info("✓ Connected to %s", "device", extra={"port": 8081})

        record = caplog.records[-1]
        assert record.getMessage() == "✓ Connected to device"
        assert record.extra_data == {"port": 8081}

    def test_handlers_are_not_duplicated(self):
        first = NeonLogger("neon_client.tests.dup", human_output="stdout")
        second = NeonLogger("neon_client.tests.dup", human_output="stdout")

        assert first.logger is second.logger
        assert len(second.logger.handlers) == 1

    def test_json_file_output(self, tmp_path):
        path = tmp_path / "logs" / "neon.jsonl"
        log = NeonLogger("neon_client.tests.json", log_format="json", json_file=path)

        log.warning("Stream terminated", extra={"stream": "gaze_{}"})
        for handler in log.logger.handlers:
            handler.flush()

        data = json.loads(path.read_text().splitlines()[-1])
        assert data["level"] == "WARNING"
        assert data["context"] == {"stream": "gaze_{}"}

    def test_invalid_format_falls_back_to_human(self):
        log = NeonLogger("neon_client.tests.fallback", log_format="xml", human_output="stdout")

        assert log.log_format == "human"


class TestTimedAsync:
    """Tests for the timing decorator."""

    @pytest.mark.asyncio
    async def test_logs_slow_operations(self):
        @timed_async("slow_op")
        async def slow() -> str:
            await asyncio.sleep(0.02)
            return "done"

        with (
            patch("neon_client.const.NEON_PERF_TRACKING", True),
            patch("neon_client.const.NEON_PERF_THRESHOLD_MS", 1),
            patch("neon_client.instrumentation.logger") as mock_logger,
        ):
            assert await slow() == "done"

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.kwargs["extra"]["operation"] == "slow_op"

    @pytest.mark.asyncio
    async def test_disabled_by_default(self):
        @timed_async()
        async def quick() -> int:
            return 1

        with (
            patch("neon_client.const.NEON_PERF_TRACKING", False),
            patch("neon_client.instrumentation.logger") as mock_logger,
        ):
            assert await quick() == 1

        mock_logger.debug.assert_not_called()
        mock_logger.warning.assert_not_called()
