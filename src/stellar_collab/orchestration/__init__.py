"""
Orchestration module for multi-agent collaboration and coordination.

This module provides the core coordination capabilities including:
- Collaboration planning with role assignment and protocol design
- Conflict resolution with deterministic escalation
- Dependency-aware task coordination
- Broadcast delivery and bounded negotiation
"""

from stellar_collab.orchestration.broadcast import (
    BroadcastDispatcher,
    BroadcastResult,
    DeliveryStatus,
    FailedDelivery,
    FailureReason,
)
from stellar_collab.orchestration.conflicts import (
    AgentConflict,
    ConflictResolution,
    ConflictResolver,
    ConflictType,
    EscalationLevel,
    ImpactAssessment,
    ResolutionStrategy,
    Severity,
)
from stellar_collab.orchestration.coordination import (
    ComplexTask,
    CoordinationPlan,
    CoordinationStrategy,
    Subtask,
    TaskCoordinator,
)
from stellar_collab.orchestration.engine import CollaborationEngine
from stellar_collab.orchestration.facilitator import CollaborationFacilitator, CollaborationPlan
from stellar_collab.orchestration.goals import (
    CollaborationGoal,
    Constraint,
    ConstraintType,
    Milestone,
    Outcome,
    Priority,
    Timeline,
)
from stellar_collab.orchestration.negotiation import (
    AgentNegotiation,
    InterestBasedParticipant,
    NegotiationContext,
    NegotiationFacilitator,
    NegotiationParameters,
    NegotiationParticipant,
    NegotiationResponse,
    NegotiationResult,
    OutcomeStatus,
    Proposal,
    ProposalRequest,
    Stance,
)
from stellar_collab.orchestration.protocols import ProtocolDesigner, Topology
from stellar_collab.orchestration.roles import RoleAssigner, RoleType

__all__ = [
    # Engine
    "CollaborationEngine",

    # Collaboration planning
    "CollaborationFacilitator",
    "CollaborationPlan",
    "CollaborationGoal",
    "Constraint",
    "ConstraintType",
    "Milestone",
    "Outcome",
    "Priority",
    "Timeline",
    "ProtocolDesigner",
    "Topology",
    "RoleAssigner",
    "RoleType",

    # Conflicts
    "AgentConflict",
    "ConflictResolution",
    "ConflictResolver",
    "ConflictType",
    "EscalationLevel",
    "ImpactAssessment",
    "ResolutionStrategy",
    "Severity",

    # Task coordination
    "ComplexTask",
    "CoordinationPlan",
    "CoordinationStrategy",
    "Subtask",
    "TaskCoordinator",

    # Broadcast
    "BroadcastDispatcher",
    "BroadcastResult",
    "DeliveryStatus",
    "FailedDelivery",
    "FailureReason",

    # Negotiation
    "AgentNegotiation",
    "InterestBasedParticipant",
    "NegotiationContext",
    "NegotiationFacilitator",
    "NegotiationParameters",
    "NegotiationParticipant",
    "NegotiationResponse",
    "NegotiationResult",
    "OutcomeStatus",
    "Proposal",
    "ProposalRequest",
    "Stance",
]
