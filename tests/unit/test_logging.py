# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for structured logging setup."""

import logging

import pytest

from src.utils.logging import bind_context, get_logger


@pytest.mark.unit
@pytest.mark.usefixtures("structured_logging")
class TestSetupLogging:
    """Tests for setup_logging."""

    def test_records_carry_logger_name(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that structlog events reach stdlib logging under the module name."""
        with caplog.at_level(logging.INFO, logger="src"):
            get_logger("src.tests.logging").error("Job failed", job_id="j-1")

        record = caplog.records[-1]
        assert record.name == "src.tests.logging"
        assert "Job failed" in record.getMessage()
        assert "j-1" in record.getMessage()

    def test_bound_context_included(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that context variables are merged into every event."""
        bind_context(user_id="u-42")

        with caplog.at_level(logging.INFO, logger="src"):
            get_logger("src.tests.logging").info("Turn analyzed")

        assert "u-42" in caplog.records[-1].getMessage()
