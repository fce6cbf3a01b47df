"""
Structured logging for the collaboration engine.

This module provides structured JSON or console output, operation context
injection, performance timing and coordination event logging built on
structlog.
"""

import inspect
import logging
import logging.config
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar, Token
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional
from uuid import uuid4

import structlog
from structlog.types import FilteringBoundLogger

# Context variables for operation tracking
operation_id_context: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)
agent_id_context: ContextVar[Optional[str]] = ContextVar("agent_id", default=None)


class PerformanceLogger:
    """Specialized logger for operation timings."""

    def __init__(self, logger: FilteringBoundLogger):
        self.logger = logger

    def log_execution_time(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        **kwargs: Any
    ) -> None:
        """Log operation execution time."""
        self.logger.info(
            "Operation performance",
            event_type="performance",
            operation=operation,
            duration_ms=duration_ms,
            success=success,
            **kwargs
        )

    def log_advisor_call(
        self,
        request_kind: str,
        duration_ms: float,
        attempts: int,
        success: bool,
        **kwargs: Any
    ) -> None:
        """Log a call to the external advisor."""
        self.logger.info(
            "Advisor call performance",
            event_type="advisor_performance",
            request_kind=request_kind,
            duration_ms=duration_ms,
            attempts=attempts,
            success=success,
            **kwargs
        )


class CoordinationEventLogger:
    """Specialized logger for coordination outcomes that need external handling."""

    def __init__(self, logger: FilteringBoundLogger):
        self.logger = logger

    def escalation(
        self,
        subject_id: str,
        subject_type: str,
        from_level: Optional[str] = None,
        to_level: Optional[str] = None,
        reason: str = "unspecified",
        **kwargs: Any
    ) -> None:
        """Log an escalation to a higher authority level."""
        self.logger.warning(
            "Escalation required",
            event_type="escalation",
            subject_id=subject_id,
            subject_type=subject_type,
            from_level=from_level,
            to_level=to_level,
            reason=reason,
            **kwargs
        )

    def negotiation_outcome(
        self,
        negotiation_id: str,
        outcome: str,
        rounds: int,
        **kwargs: Any
    ) -> None:
        """Log the terminal state of a negotiation."""
        log = self.logger.info if outcome == "agreement" else self.logger.warning
        log(
            "Negotiation finished",
            event_type="negotiation_outcome",
            negotiation_id=negotiation_id,
            outcome=outcome,
            rounds=rounds,
            **kwargs
        )

    def delivery_failures(
        self,
        message_id: str,
        failed_recipients: List[str],
        **kwargs: Any
    ) -> None:
        """Log recipients a broadcast could not confirm."""
        self.logger.warning(
            "Broadcast delivery failures",
            event_type="delivery_failure",
            message_id=message_id,
            failed_recipients=failed_recipients,
            failed_count=len(failed_recipients),
            **kwargs
        )


def add_context_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add operation context to log events."""
    operation_id = operation_id_context.get()
    if operation_id:
        event_dict["operation_id"] = operation_id

    agent_id = agent_id_context.get()
    if agent_id:
        event_dict["agent_id"] = agent_id

    event_dict["timestamp"] = time.time()

    return event_dict


def setup_logging(
    log_level: str = "INFO",
    environment: str = "development",
    log_file: Optional[Path] = None
) -> None:
    """
    Set up structured logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment name (development, staging, production, testing)
        log_file: Optional log file path
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if environment == "production":
        # JSON output for production
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=environment == "development")
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter"
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level.upper(),
                "formatter": "json" if environment == "production" else "standard",
                "stream": sys.stdout
            }
        },
        "root": {
            "level": log_level.upper(),
            "handlers": ["console"]
        }
    }

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level.upper(),
            "formatter": "json",
            "filename": str(log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        logging_config["root"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (defaults to caller's module name)

    Returns:
        FilteringBoundLogger: Configured logger instance
    """
    if name is None:
        frame = inspect.currentframe()
        if frame and frame.f_back:
            name = frame.f_back.f_globals.get("__name__", "stellar_collab")

    return structlog.get_logger(name)


def get_performance_logger(name: Optional[str] = None) -> PerformanceLogger:
    """Get a performance logger."""
    return PerformanceLogger(get_logger(name))


def get_coordination_logger(name: Optional[str] = None) -> CoordinationEventLogger:
    """Get a coordination event logger."""
    return CoordinationEventLogger(get_logger(name))


def set_operation_context(
    operation_id: Optional[str] = None,
    agent_id: Optional[str] = None
) -> List[Token]:
    """Set operation context for logging; returns the tokens needed to undo it."""
    tokens = []
    if operation_id:
        tokens.append(operation_id_context.set(operation_id))
    if agent_id:
        tokens.append(agent_id_context.set(agent_id))
    return tokens


def reset_operation_context(tokens: List[Token]) -> None:
    """Restore the context values that were current before ``set_operation_context``."""
    for token in reversed(tokens):
        token.var.reset(token)


@contextmanager
def operation_context(
    operation_id: Optional[str] = None,
    agent_id: Optional[str] = None
) -> Iterator[None]:
    """Bind operation context for the duration of a block."""
    tokens = set_operation_context(operation_id, agent_id)
    try:
        yield
    finally:
        reset_operation_context(tokens)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    return str(uuid4())


def log_execution_time(operation_name: Optional[str] = None):
    """
    Decorator to log function execution time.

    Works for both plain functions and coroutine functions.

    Args:
        operation_name: Optional operation name (defaults to function name)
    """
    def decorator(func: Callable) -> Callable:
        operation = operation_name or f"{func.__module__}.{func.__name__}"

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                logger = get_performance_logger()
                try:
                    result = await func(*args, **kwargs)
                    duration_ms = (time.time() - start_time) * 1000
                    logger.log_execution_time(operation, duration_ms, success=True)
                    return result
                except Exception as e:
                    duration_ms = (time.time() - start_time) * 1000
                    logger.log_execution_time(operation, duration_ms, success=False, error=str(e))
                    raise

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            logger = get_performance_logger()

            try:
                result = func(*args, **kwargs)
                duration_ms = (time.time() - start_time) * 1000
                logger.log_execution_time(operation, duration_ms, success=True)
                return result
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.log_execution_time(operation, duration_ms, success=False, error=str(e))
                raise

        return wrapper
    return decorator


__all__ = [
    "setup_logging",
    "get_logger",
    "get_performance_logger",
    "get_coordination_logger",
    "set_operation_context",
    "reset_operation_context",
    "operation_context",
    "generate_operation_id",
    "log_execution_time",
    "PerformanceLogger",
    "CoordinationEventLogger",
]
