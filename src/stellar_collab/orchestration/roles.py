"""
Role Assigner.

Maps participating agents to roles and responsibilities by how well their
declared capabilities cover the goal's required skills. Assignment is
deterministic: agents are ranked by skill overlap, then mean proficiency
on the overlapping skills, then agent id.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from stellar_collab.agents.registry import AgentProfile, AgentRegistry
from stellar_collab.core.logging import get_logger
from stellar_collab.orchestration.goals import CollaborationGoal

COORDINATOR_MIN_TEAM_SIZE = 4


class RoleType(str, Enum):
    """Roles an agent can hold within a collaboration."""
    LEADER = "leader"
    COORDINATOR = "coordinator"
    SPECIALIST = "specialist"
    CONTRIBUTOR = "contributor"


class Role(BaseModel):
    model_config = ConfigDict(frozen=True)

    role_type: RoleType
    title: str
    decision_authority: List[str] = Field(default_factory=list)
    reports_to: Optional[str] = None


class Responsibility(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    skill: Optional[str] = None
    delegated: bool = False


class RoleAssignment(BaseModel):
    """Role, responsibilities and skill match for one agent."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    role: Role
    responsibilities: List[Responsibility] = Field(default_factory=list)
    matched_skills: List[str] = Field(default_factory=list)
    capability_match: float = Field(0.0, ge=0.0, le=1.0)


class RoleAssignmentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    assignments: List[RoleAssignment]
    leader_id: str
    covered_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)

    @property
    def quality_score(self) -> float:
        """Fraction of required skills at least one agent declares."""
        required = len(self.covered_skills) + len(self.missing_skills)
        if required == 0:
            return 1.0
        return len(self.covered_skills) / required


_AUTHORITY: Dict[RoleType, List[str]] = {
    RoleType.LEADER: ["final_decisions", "escalation_handling", "scope_changes"],
    RoleType.COORDINATOR: ["scheduling", "progress_tracking"],
    RoleType.SPECIALIST: ["technical_decisions"],
    RoleType.CONTRIBUTOR: [],
}


class RoleAssigner:
    """Deterministic capability-based role assignment."""

    def __init__(self, registry: Optional[AgentRegistry] = None):
        self.registry = registry or AgentRegistry()
        self._logger = get_logger(__name__)

    def assign(self, agent_ids: List[str], goal: CollaborationGoal) -> RoleAssignmentResult:
        """
        Assign exactly one role to every agent.

        Args:
            agent_ids: Participating agents, unique
            goal: Goal whose ``required_skills`` drive the ranking

        Returns:
            RoleAssignmentResult with assignments in the order of ``agent_ids``
        """
        required_skills = list(dict.fromkeys(goal.required_skills))
        profiles = {agent_id: self.registry.get(agent_id) for agent_id in agent_ids}

        scores = {
            agent_id: self._score(profiles[agent_id], required_skills)
            for agent_id in agent_ids
        }
        ranking = sorted(
            agent_ids,
            key=lambda agent_id: (-scores[agent_id][0], -scores[agent_id][1], agent_id),
        )

        leader_id = ranking[0]
        coordinator_id = ranking[1] if len(ranking) >= COORDINATOR_MIN_TEAM_SIZE else None

        roles: Dict[str, Role] = {}
        for agent_id in ranking:
            if agent_id == leader_id:
                role_type = RoleType.LEADER
            elif agent_id == coordinator_id:
                role_type = RoleType.COORDINATOR
            elif scores[agent_id][0] > 0:
                role_type = RoleType.SPECIALIST
            else:
                role_type = RoleType.CONTRIBUTOR
            roles[agent_id] = self._make_role(role_type, leader_id, coordinator_id)

        responsibilities: Dict[str, List[Responsibility]] = {agent_id: [] for agent_id in agent_ids}
        responsibilities[leader_id].append(
            Responsibility(description=f"Own the objective: {goal.objective}")
        )
        if coordinator_id:
            responsibilities[coordinator_id].append(
                Responsibility(description="Coordinate schedules, hand-offs and milestone reviews")
            )

        covered: List[str] = []
        missing: List[str] = []
        for skill in required_skills:
            owner = next((a for a in ranking if skill in profiles[a].capability_names), None)
            if owner is None:
                missing.append(skill)
                responsibilities[leader_id].append(Responsibility(
                    description=f"Source or delegate {skill} capability",
                    skill=skill,
                    delegated=True,
                ))
            else:
                covered.append(skill)
                responsibilities[owner].append(Responsibility(
                    description=f"Deliver {skill} work",
                    skill=skill,
                ))

        for agent_id in agent_ids:
            if not responsibilities[agent_id]:
                responsibilities[agent_id].append(
                    Responsibility(description="Support the team on shared deliverables")
                )

        assignments = []
        for agent_id in agent_ids:
            overlap, _ = scores[agent_id]
            matched = [s for s in required_skills if s in profiles[agent_id].capability_names]
            assignments.append(RoleAssignment(
                agent_id=agent_id,
                role=roles[agent_id],
                responsibilities=responsibilities[agent_id],
                matched_skills=matched,
                capability_match=overlap / len(required_skills) if required_skills else 1.0,
            ))

        if missing:
            self._logger.warning(
                "Required skills not covered by any participant",
                goal_id=goal.id,
                missing_skills=missing,
            )

        return RoleAssignmentResult(
            assignments=assignments,
            leader_id=leader_id,
            covered_skills=covered,
            missing_skills=missing,
        )

    @staticmethod
    def _score(profile: AgentProfile, required_skills: List[str]) -> Tuple[int, float]:
        matched = [profile.proficiency(skill) for skill in required_skills if skill in profile.capability_names]
        if not matched:
            return 0, 0.0
        return len(matched), sum(matched) / len(matched)

    @staticmethod
    def _make_role(
        role_type: RoleType,
        leader_id: str,
        coordinator_id: Optional[str]
    ) -> Role:
        if role_type == RoleType.LEADER:
            reports_to = None
        elif role_type == RoleType.COORDINATOR or coordinator_id is None:
            reports_to = leader_id
        else:
            reports_to = coordinator_id

        return Role(
            role_type=role_type,
            title=role_type.value.replace("_", " ").title(),
            decision_authority=list(_AUTHORITY[role_type]),
            reports_to=reports_to,
        )
