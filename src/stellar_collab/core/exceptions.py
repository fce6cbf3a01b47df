"""
Core exception classes for the Stellar Collab engine.

This module defines the error taxonomy used throughout the engine.
Structural input errors are raised to the caller; advisor and delivery
errors are internal and absorbed by the component that hit them.
"""

from typing import List, Optional


class CollaborationEngineError(Exception):
    """Base exception for all Stellar Collab errors."""
    pass


class ConfigurationError(CollaborationEngineError):
    """Raised when there's a configuration error."""
    pass


class InvalidInputError(CollaborationEngineError):
    """Raised when a goal, conflict, task, message or negotiation is malformed."""
    pass


class CollaborationFacilitationFailed(InvalidInputError):
    """Raised when a collaboration plan cannot be produced from the input."""
    pass


class InvalidGoalError(CollaborationFacilitationFailed):
    """Raised when a collaboration goal is missing its id, description or objective."""
    pass


class UnassignedAgentMismatchError(InvalidInputError):
    """Raised when a subtask is assigned to an agent the task does not require."""

    def __init__(self, subtask_id: str, agent_id: str) -> None:
        super().__init__(
            f"Subtask {subtask_id!r} is assigned to {agent_id!r}, "
            f"which is not one of the task's required agents"
        )
        self.subtask_id = subtask_id
        self.agent_id = agent_id


class CyclicDependencyError(CollaborationEngineError):
    """Raised when the subtask dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]) -> None:
        super().__init__(f"Cyclic subtask dependency: {' -> '.join(cycle)}")
        self.cycle = cycle


class MessageExpiredError(CollaborationEngineError):
    """Raised when a message is dispatched after its expiration time."""
    pass


class AdvisorUnavailableError(CollaborationEngineError):
    """Raised when the advisor fails or times out."""

    def __init__(self, request_kind: str, reason: Optional[str] = None) -> None:
        message = f"Advisor unavailable for {request_kind!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.request_kind = request_kind
        self.reason = reason


class DeliveryError(CollaborationEngineError):
    """Raised by a transport when a single delivery attempt fails."""

    def __init__(self, recipient_id: str, reason: str) -> None:
        super().__init__(f"Delivery to {recipient_id!r} failed: {reason}")
        self.recipient_id = recipient_id
        self.reason = reason


class OperationTimeoutError(CollaborationEngineError):
    """Raised when a collaboration cannot obtain a concurrency slot in time."""
    pass
