# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for logging configuration."""

import io
import json
import logging
from collections.abc import Generator

import pytest
import structlog

from src.core.config.settings import Settings
from src.utils.logging import bind_context, clear_context, setup_logging


@pytest.fixture
def restore_logging() -> Generator[None, None, None]:
    """Put the root logger and structlog back after the test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    clear_context()
    structlog.reset_defaults()


@pytest.mark.usefixtures("restore_logging")
class TestSetupLogging:
    """Test structured output of stdlib loggers."""

    def test_json_output_carries_bound_context(self) -> None:
        """Test that %-style stdlib records render as JSON with job context."""
        stream = io.StringIO()
        setup_logging(Settings(environment="staging", debug=False, log_level="INFO"), stream=stream)

        bind_context(job="sweep_daily_risk", run_id="run-1")
        logging.getLogger("src.core.risk.service").info("Recalculated %d students", 3)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "Recalculated 3 students"
        assert record["level"] == "info"
        assert record["logger"] == "src.core.risk.service"
        assert record["job"] == "sweep_daily_risk"
        assert record["run_id"] == "run-1"

    def test_clear_context(self) -> None:
        """Test that cleared context is not attached to later records."""
        stream = io.StringIO()
        setup_logging(Settings(environment="staging", debug=False, log_level="INFO"), stream=stream)

        bind_context(job="sweep_rapid_increases")
        clear_context()
        logging.getLogger("src.test").warning("Rapid increase check found %d students", 0)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert "job" not in record

    def test_noisy_loggers_are_raised_to_warning(self) -> None:
        """Test third-party logger levels."""
        setup_logging(Settings(environment="staging", debug=False, log_level="DEBUG"), stream=io.StringIO())

        assert logging.getLogger("dramatiq").level == logging.WARNING
        assert logging.getLogger("src").level == logging.DEBUG
