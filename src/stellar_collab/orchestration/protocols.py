"""
Protocol Designer.

Derives the collaboration topology, communication protocols and
coordination mechanisms from participant count and goal shape.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from stellar_collab.orchestration.goals import CollaborationGoal, ConstraintType

DIRECT_MESSAGING_MAX_PARTICIPANTS = 3
HIERARCHICAL_MAX_PARTICIPANTS = 8


class Topology(str, Enum):
    """Collaboration structure tags."""
    FLAT = "flat"
    HIERARCHICAL = "hierarchical"
    FEDERATED = "federated"


class ProtocolSource(str, Enum):
    POLICY = "policy"
    ADVISOR = "advisor"


class Protocol(BaseModel):
    """A communication protocol the participants follow."""
    model_config = ConfigDict(frozen=True)

    name: str
    frequency: str
    participants: List[str] = Field(default_factory=list)
    description: str = ""
    source: ProtocolSource = ProtocolSource.POLICY


MECHANISM_BY_CONSTRAINT: Dict[ConstraintType, str] = {
    ConstraintType.RESOURCE: "resource_sharing",
    ConstraintType.TIME: "task_dependencies",
    ConstraintType.SKILL: "expertise_routing",
    ConstraintType.REGULATORY: "compliance_review",
    ConstraintType.TECHNICAL: "technical_review",
}

MILESTONE_MECHANISM = "milestone_tracking"


def _dedupe(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


class ProtocolDesigner:
    """Stateless protocol and mechanism derivation."""

    def select_topology(self, participant_count: int, suggested: Optional[str] = None) -> Topology:
        """Use the suggested topology when it is a known tag, else size-based policy."""
        if suggested:
            try:
                return Topology(suggested.strip().lower())
            except ValueError:
                pass

        if participant_count <= DIRECT_MESSAGING_MAX_PARTICIPANTS:
            return Topology.FLAT
        if participant_count <= HIERARCHICAL_MAX_PARTICIPANTS:
            return Topology.HIERARCHICAL
        return Topology.FEDERATED

    def design_protocols(
        self,
        agent_ids: List[str],
        goal: CollaborationGoal,
        suggested: Optional[List[str]] = None,
    ) -> List[Protocol]:
        """
        Lightweight direct messaging for small teams, scheduled syncs and
        milestone reviews for larger ones. Suggested protocol names are
        appended after the policy protocols, skipping duplicates.
        """
        participants = list(agent_ids)

        if len(participants) <= DIRECT_MESSAGING_MAX_PARTICIPANTS:
            protocols = [
                Protocol(
                    name="direct_messaging",
                    frequency="as_needed",
                    participants=participants,
                    description="Participants message each other directly",
                )
            ]
        else:
            protocols = [
                Protocol(
                    name="scheduled_sync",
                    frequency="daily",
                    participants=participants,
                    description="Regular synchronization of progress and blockers",
                ),
                Protocol(
                    name="milestone_review",
                    frequency="per_milestone" if goal.timeline.milestones else "weekly",
                    participants=participants,
                    description="Review deliverables against success criteria",
                ),
            ]

        known = {p.name for p in protocols}
        for name in _dedupe(suggested or []):
            if name in known:
                continue
            known.add(name)
            protocols.append(Protocol(
                name=name,
                frequency="as_agreed",
                participants=participants,
                source=ProtocolSource.ADVISOR,
            ))

        return protocols

    def derive_mechanisms(self, goal: CollaborationGoal, suggested: Optional[List[str]] = None) -> List[str]:
        """Constraint-driven mechanisms first, then suggested ones, without duplicates."""
        mechanisms = [MECHANISM_BY_CONSTRAINT[c.constraint_type] for c in goal.constraints]
        if goal.timeline.milestones:
            mechanisms.append(MILESTONE_MECHANISM)
        mechanisms.extend(suggested or [])
        return _dedupe(mechanisms)
