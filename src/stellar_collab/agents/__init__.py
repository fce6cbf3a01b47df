"""
Agent-facing collaborators: profiles, the advisor and the message transport.
"""

from stellar_collab.agents.advisor import (
    AdviceKind,
    Advisor,
    AdvisorClient,
    AlternativeSolution,
    AlternativesHint,
    ConflictActionHint,
    HttpAdvisor,
    StructureHint,
)
from stellar_collab.agents.communication import (
    ALL_AGENTS,
    DeliveryRequirements,
    MessageBus,
    MessagePriority,
    MessageStatus,
    MessageTransport,
    SystemMessage,
)
from stellar_collab.agents.registry import (
    AgentAvailability,
    AgentCapability,
    AgentProfile,
    AgentRegistry,
)

__all__ = [
    "AdviceKind",
    "Advisor",
    "AdvisorClient",
    "AlternativeSolution",
    "AlternativesHint",
    "ConflictActionHint",
    "HttpAdvisor",
    "StructureHint",
    "ALL_AGENTS",
    "DeliveryRequirements",
    "MessageBus",
    "MessagePriority",
    "MessageStatus",
    "MessageTransport",
    "SystemMessage",
    "AgentAvailability",
    "AgentCapability",
    "AgentProfile",
    "AgentRegistry",
]
