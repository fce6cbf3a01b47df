"""
Unit tests for logging framework.

This module tests the structured logging system including context injection,
specialized loggers, and performance tracking.
"""

import asyncio
import time
from unittest.mock import Mock, patch

import pytest

from stellar_collab.core.logging import (
    CoordinationEventLogger,
    PerformanceLogger,
    add_context_processor,
    generate_operation_id,
    get_coordination_logger,
    get_logger,
    get_performance_logger,
    log_execution_time,
    operation_context,
    reset_operation_context,
    set_operation_context,
    setup_logging,
)


class TestLoggingSetup:
    """Test logging setup and configuration."""

    def test_setup_logging_development(self):
        """Test logging setup for development environment."""
        setup_logging(log_level="DEBUG", environment="development")

        logger = get_logger("test")
        assert logger is not None
        logger.info("Test message", test_key="test_value")

    def test_setup_logging_production(self):
        """Test logging setup for production environment."""
        setup_logging(log_level="INFO", environment="production")

        logger = get_logger("test")
        assert logger is not None
        logger.info("Test message", test_key="test_value")

        setup_logging(log_level="DEBUG", environment="testing")

    def test_setup_logging_with_file(self, temp_dir):
        """Test a log file handler is created under a missing directory."""
        log_file = temp_dir / "logs" / "engine.log"
        setup_logging(log_level="INFO", environment="testing", log_file=log_file)

        assert log_file.parent.exists()
        setup_logging(log_level="DEBUG", environment="testing")

    def test_get_logger_without_name(self):
        """Test getting logger without name (should use caller's module)."""
        logger = get_logger()
        assert logger is not None


class TestContextManagement:
    """Test logging context management."""

    def test_operation_context_added_to_events(self):
        """Test the context processor injects the operation id."""
        operation_id = generate_operation_id()
        tokens = set_operation_context(operation_id=operation_id, agent_id="atlas-001")
        try:
            event = add_context_processor(None, "info", {"event": "test"})
        finally:
            reset_operation_context(tokens)

        assert event["operation_id"] == operation_id
        assert event["agent_id"] == "atlas-001"
        assert "timestamp" in event

    def test_operation_context_is_reset_after_the_block(self):
        """Test the operation id does not outlive its block."""
        with operation_context(operation_id="op-outer"):
            with operation_context(operation_id="op-inner"):
                assert add_context_processor(None, "info", {})["operation_id"] == "op-inner"
            assert add_context_processor(None, "info", {})["operation_id"] == "op-outer"

        assert "operation_id" not in add_context_processor(None, "info", {})

    def test_generate_operation_id(self):
        """Test operation ID generation."""
        operation_id = generate_operation_id()

        assert isinstance(operation_id, str)
        assert operation_id != generate_operation_id()


class TestPerformanceLogger:
    """Test performance logger."""

    def test_performance_logger_creation(self):
        """Test performance logger creation."""
        assert isinstance(get_performance_logger("test_performance"), PerformanceLogger)

    def test_execution_time_logging(self):
        """Test execution time logging."""
        logger = Mock()
        perf_logger = PerformanceLogger(logger)

        perf_logger.log_execution_time(operation="facilitate_collaboration", duration_ms=150.5, success=True)

        logger.info.assert_called_once()
        call_args = logger.info.call_args
        assert "Operation performance" in call_args[0]
        assert call_args[1]["duration_ms"] == 150.5

    def test_advisor_call_logging(self):
        """Test advisor call logging."""
        logger = Mock()
        perf_logger = PerformanceLogger(logger)

        perf_logger.log_advisor_call(
            request_kind="collaboration_structure",
            duration_ms=1250.0,
            attempts=2,
            success=False,
        )

        logger.info.assert_called_once()
        call_args = logger.info.call_args
        assert "Advisor call performance" in call_args[0]
        assert call_args[1]["attempts"] == 2
        assert call_args[1]["success"] is False


class TestCoordinationEventLogger:
    """Test coordination event logger."""

    def test_coordination_logger_creation(self):
        assert isinstance(get_coordination_logger("test_coordination"), CoordinationEventLogger)

    def test_escalation_logging(self):
        """Test escalations are logged as warnings."""
        logger = Mock()
        events = CoordinationEventLogger(logger)

        events.escalation(
            subject_id="conflict-1",
            subject_type="conflict",
            from_level="agent_level",
            to_level="team_level",
            reason="critical severity",
        )

        logger.warning.assert_called_once()
        call_args = logger.warning.call_args
        assert "Escalation required" in call_args[0]
        assert call_args[1]["to_level"] == "team_level"

    def test_negotiation_outcome_logging(self):
        """Test agreement is info, anything else a warning."""
        logger = Mock()
        events = CoordinationEventLogger(logger)

        events.negotiation_outcome("neg-1", "agreement", rounds=2)
        logger.info.assert_called_once()

        logger.reset_mock()
        events.negotiation_outcome("neg-2", "deadlock", rounds=3)
        logger.warning.assert_called_once()
        assert logger.warning.call_args[1]["outcome"] == "deadlock"

    def test_delivery_failures_logging(self):
        logger = Mock()
        events = CoordinationEventLogger(logger)

        events.delivery_failures(message_id="msg-1", failed_recipients=["recipient_3"])

        call_args = logger.warning.call_args
        assert call_args[1]["failed_count"] == 1


class TestLoggingDecorators:
    """Test logging decorators."""

    def test_log_execution_time_decorator(self):
        """Test execution time logging decorator."""
        @log_execution_time("test_operation")
        def test_function():
            time.sleep(0.01)
            return "test_result"

        with patch('stellar_collab.core.logging.get_performance_logger') as mock_get_logger:
            mock_logger = Mock()
            mock_get_logger.return_value = mock_logger

            result = test_function()

            assert result == "test_result"
            mock_logger.log_execution_time.assert_called_once()

            call_args = mock_logger.log_execution_time.call_args
            assert call_args[0][0] == "test_operation"
            assert call_args[0][1] > 0
            assert call_args[1]["success"] is True

    def test_log_execution_time_decorator_with_exception(self):
        """Test execution time logging decorator with exception."""
        @log_execution_time("test_operation")
        def test_function():
            raise ValueError("Test error")

        with patch('stellar_collab.core.logging.get_performance_logger') as mock_get_logger:
            mock_logger = Mock()
            mock_get_logger.return_value = mock_logger

            with pytest.raises(ValueError):
                test_function()

            call_args = mock_logger.log_execution_time.call_args
            assert call_args[1]["success"] is False
            assert "error" in call_args[1]

    @pytest.mark.asyncio
    async def test_log_execution_time_decorator_async(self):
        """Test the decorator awaits coroutine functions."""
        @log_execution_time()
        async def test_coroutine():
            await asyncio.sleep(0.01)
            return 42

        with patch('stellar_collab.core.logging.get_performance_logger') as mock_get_logger:
            mock_logger = Mock()
            mock_get_logger.return_value = mock_logger

            assert await test_coroutine() == 42

            call_args = mock_logger.log_execution_time.call_args
            assert call_args[0][0].endswith("test_coroutine")
            assert call_args[1]["success"] is True
