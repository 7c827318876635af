"""
Tests for the graceful_failure context manager.
"""
import logging
from unittest.mock import MagicMock

import pytest

from cbt.core.graceful_failure import graceful_failure


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return MagicMock(spec=logging.Logger)


class TestGracefulFailureContextManager:
    """Tests for the graceful_failure context manager."""

    def test_success_case_no_exception(self, mock_logger):
        """Test that code executes normally when no exception occurs."""
        result = []

        with graceful_failure("test operation", mock_logger) as outcome:
            result.append("executed")

        assert result == ["executed"]
        assert outcome.failed is False
        assert outcome.error is None
        mock_logger.log.assert_not_called()

    def test_exception_is_swallowed_and_tracked(self, mock_logger):
        """Test that exceptions are swallowed and recorded on the tracker."""
        error = ValueError("test error")

        with graceful_failure("failing operation", mock_logger) as outcome:
            raise error

        assert outcome.failed is True
        assert outcome.error is error

    def test_logs_exception_with_default_warning_level(self, mock_logger):
        """Test that exceptions are logged at WARNING level by default."""
        with graceful_failure("record session outcome", mock_logger):
            raise ValueError("something went wrong")

        mock_logger.log.assert_called_once()
        call_args = mock_logger.log.call_args
        assert call_args[0][0] == logging.WARNING
        assert "Failed to record session outcome" in call_args[0][1]
        assert "something went wrong" in call_args[0][1]
        assert call_args[1]["exc_info"] is False

    def test_context_is_included_in_message(self, mock_logger):
        with graceful_failure(
            "expire test session",
            mock_logger,
            log_level=logging.ERROR,
            exc_info=True,
            context={"session_id": "abc"},
        ):
            raise RuntimeError("lock timeout")

        call_args = mock_logger.log.call_args
        assert call_args[0][0] == logging.ERROR
        assert call_args[0][1] == (
            "Failed to expire test session (session_id=abc): lock timeout"
        )
        assert call_args[1]["exc_info"] is True

    def test_base_exceptions_propagate(self, mock_logger):
        """KeyboardInterrupt and friends are not swallowed."""
        with pytest.raises(KeyboardInterrupt):
            with graceful_failure("test operation", mock_logger):
                raise KeyboardInterrupt()
