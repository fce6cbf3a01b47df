"""
Collaboration Facilitator.

Composes the advisor's structural recommendation, the Role Assigner and
the Protocol Designer into a ``CollaborationPlan``. The advisor is
optional: when it fails the plan is built from the deterministic
policies alone and ``advisor_used`` is ``False``.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from stellar_collab.agents.advisor import AdvisorClient
from stellar_collab.agents.registry import AgentAvailability, AgentCapability, AgentRegistry
from stellar_collab.config.settings import EngineSettings
from stellar_collab.core.clock import utc_now
from stellar_collab.core.exceptions import InvalidGoalError
from stellar_collab.core.logging import get_logger
from stellar_collab.monitoring.metrics import MetricsAggregator
from stellar_collab.orchestration.conflicts import (
    ConflictType,
    EscalationLevel,
    ResolutionStrategy,
    Severity,
    select_strategy,
)
from stellar_collab.orchestration.goals import CollaborationGoal, Constraint
from stellar_collab.orchestration.protocols import Protocol, ProtocolDesigner, Topology
from stellar_collab.orchestration.roles import (
    Responsibility,
    Role,
    RoleAssigner,
    RoleAssignmentResult,
)


class DecisionModel(str, Enum):
    CONSENSUS = "consensus"
    LEADER_DECIDES = "leader_decides"
    DELEGATED = "delegated"


class MetricSource(str, Enum):
    GOAL = "goal"
    ADVISOR = "advisor"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


DECISION_MODEL_BY_TOPOLOGY: Dict[Topology, DecisionModel] = {
    Topology.FLAT: DecisionModel.CONSENSUS,
    Topology.HIERARCHICAL: DecisionModel.LEADER_DECIDES,
    Topology.FEDERATED: DecisionModel.DELEGATED,
}


class ParticipatingAgent(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: str
    agent_type: str
    role: Role
    responsibilities: List[Responsibility]
    capabilities: List[AgentCapability]
    availability: AgentAvailability


class CollaborationStructure(BaseModel):
    model_config = ConfigDict(frozen=True)

    topology: Topology
    leader_id: str
    decision_model: DecisionModel
    escalation_levels: List[EscalationLevel] = Field(default_factory=lambda: list(EscalationLevel))


class ConflictResolutionProcedure(BaseModel):
    """How a kind of conflict is handled inside this collaboration."""
    model_config = ConfigDict(frozen=True)

    conflict_type: ConflictType
    default_strategy: ResolutionStrategy
    critical_strategy: ResolutionStrategy
    first_level: EscalationLevel = EscalationLevel.AGENT_LEVEL
    timeout_minutes: float


class SuccessMetric(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    target: Optional[str] = None
    source: MetricSource = MetricSource.GOAL


class RiskItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_id: str
    category: str
    description: str
    likelihood: float = Field(ge=0.0, le=1.0)
    impact: float = Field(ge=0.0, le=1.0)
    mitigation_strategies: List[str] = Field(default_factory=list)
    monitoring_indicators: List[str] = Field(default_factory=list)

    @property
    def exposure(self) -> float:
        return self.likelihood * self.impact


class RiskManagement(BaseModel):
    model_config = ConfigDict(frozen=True)

    risks: List[RiskItem] = Field(default_factory=list)
    contingency_plans: List[str] = Field(default_factory=list)
    overall_risk_level: RiskLevel = RiskLevel.LOW


class CollaborationPlan(BaseModel):
    """Immutable plan produced for one ``facilitate_collaboration`` call."""
    model_config = ConfigDict(frozen=True)

    plan_id: str
    creation_timestamp: datetime
    goal_id: str
    participating_agents: List[ParticipatingAgent]
    collaboration_structure: CollaborationStructure
    communication_protocols: List[Protocol]
    coordination_mechanisms: List[str]
    conflict_resolution_procedures: List[ConflictResolutionProcedure]
    success_metrics: List[SuccessMetric]
    risk_management: RiskManagement
    quality_score: float = Field(ge=0.0, le=1.0)
    advisor_used: bool = False


def _risk_level(exposure: float) -> RiskLevel:
    if exposure < 0.25:
        return RiskLevel.LOW
    if exposure < 0.5:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class CollaborationFacilitator:
    """Builds collaboration plans."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        registry: Optional[AgentRegistry] = None,
        metrics: Optional[MetricsAggregator] = None,
        advisor: Optional[AdvisorClient] = None,
    ):
        self.settings = settings or EngineSettings()
        self.registry = registry or AgentRegistry()
        self.metrics = metrics or MetricsAggregator()
        self.advisor = advisor or AdvisorClient()
        self.role_assigner = RoleAssigner(self.registry)
        self.protocol_designer = ProtocolDesigner()
        self._logger = get_logger(__name__)

    @staticmethod
    def validate(agent_ids: List[str], goal: CollaborationGoal) -> None:
        """
        Raises:
            InvalidGoalError: On empty or duplicate agent ids, or a goal without id, description or objective
        """
        if not agent_ids:
            raise InvalidGoalError("At least one agent is required")
        if any(not agent_id or not agent_id.strip() for agent_id in agent_ids):
            raise InvalidGoalError("Agent ids must be non-empty")
        if len(set(agent_ids)) != len(agent_ids):
            duplicates = sorted({a for a in agent_ids if agent_ids.count(a) > 1})
            raise InvalidGoalError(f"Duplicate agent ids: {', '.join(duplicates)}")

        for field_name in ("id", "description", "objective"):
            if not getattr(goal, field_name).strip():
                raise InvalidGoalError(f"Goal {field_name} must be non-empty")

    async def facilitate(
        self,
        agent_ids: List[str],
        goal: CollaborationGoal,
        deadline: Optional[float] = None,
    ) -> CollaborationPlan:
        """
        Produce a collaboration plan for ``agent_ids`` working on ``goal``.

        Args:
            agent_ids: Unique participating agent ids; output order follows this list
            goal: The shared goal
            deadline: Event-loop time bounding the advisor call

        Returns:
            CollaborationPlan with exactly one entry per agent
        """
        self.validate(agent_ids, goal)
        agent_ids = list(agent_ids)

        hint = await self.advisor.structure_hint(
            {
                "goal": goal.model_dump(mode="json"),
                "participant_count": len(agent_ids),
                "agent_types": [self.registry.get(a).agent_type for a in agent_ids],
            },
            deadline=deadline,
        )

        roles = self.role_assigner.assign(agent_ids, goal)
        topology = self.protocol_designer.select_topology(
            len(agent_ids), hint.topology if hint else None
        )
        protocols = self.protocol_designer.design_protocols(
            agent_ids, goal, hint.protocols if hint else None
        )
        mechanisms = self.protocol_designer.derive_mechanisms(
            goal, hint.coordination_mechanisms if hint else None
        )

        quality_score = roles.quality_score
        meets_quality = quality_score >= self.settings.collaboration_quality_threshold

        plan = CollaborationPlan(
            plan_id=str(uuid.uuid4()),
            creation_timestamp=utc_now(),
            goal_id=goal.id,
            participating_agents=self._participants(roles),
            collaboration_structure=CollaborationStructure(
                topology=topology,
                leader_id=roles.leader_id,
                decision_model=DECISION_MODEL_BY_TOPOLOGY[topology],
            ),
            communication_protocols=protocols,
            coordination_mechanisms=mechanisms,
            conflict_resolution_procedures=self._procedures(),
            success_metrics=self._success_metrics(goal, hint.success_metrics if hint else []),
            risk_management=self._risk_management(goal, roles, meets_quality),
            quality_score=quality_score,
            advisor_used=hint is not None,
        )

        self.metrics.record_collaboration(success=meets_quality, quality_score=quality_score)

        self._logger.info(
            "Collaboration plan created",
            plan_id=plan.plan_id,
            goal_id=goal.id,
            participants=len(agent_ids),
            topology=topology.value,
            quality_score=round(quality_score, 3),
            advisor_used=plan.advisor_used,
        )

        return plan

    def _participants(self, roles: RoleAssignmentResult) -> List[ParticipatingAgent]:
        participants = []
        for assignment in roles.assignments:
            profile = self.registry.get(assignment.agent_id)
            participants.append(ParticipatingAgent(
                agent_id=assignment.agent_id,
                agent_type=profile.agent_type,
                role=assignment.role,
                responsibilities=assignment.responsibilities,
                capabilities=profile.capabilities,
                availability=profile.availability,
            ))
        return participants

    def _procedures(self) -> List[ConflictResolutionProcedure]:
        return [
            ConflictResolutionProcedure(
                conflict_type=conflict_type,
                default_strategy=select_strategy(conflict_type, Severity.MEDIUM),
                critical_strategy=select_strategy(conflict_type, Severity.CRITICAL),
                timeout_minutes=self.settings.conflict_resolution_timeout_minutes,
            )
            for conflict_type in ConflictType
        ]

    @staticmethod
    def _success_metrics(goal: CollaborationGoal, suggested: List[str]) -> List[SuccessMetric]:
        metrics = [SuccessMetric(name=criterion) for criterion in goal.success_criteria]
        for outcome in goal.target_outcomes:
            for criteria in outcome.measurable_criteria:
                target = f"{criteria.target_value:g}{(' ' + criteria.unit) if criteria.unit else ''}"
                metrics.append(SuccessMetric(name=criteria.metric, target=target))

        known = {metric.name for metric in metrics}
        for name in suggested:
            if name not in known:
                known.add(name)
                metrics.append(SuccessMetric(name=name, source=MetricSource.ADVISOR))
        return metrics

    def _risk_management(
        self,
        goal: CollaborationGoal,
        roles: RoleAssignmentResult,
        meets_quality: bool,
    ) -> RiskManagement:
        risks = [
            self._constraint_risk(index, constraint)
            for index, constraint in enumerate(goal.constraints, start=1)
        ]

        contingency_plans = []
        if not meets_quality:
            risks.append(RiskItem(
                risk_id="capability_gap",
                category="capability_gap",
                description=(
                    "Required skills not covered by participants: "
                    + (", ".join(roles.missing_skills) or "none")
                ),
                likelihood=1.0,
                impact=1.0 - roles.quality_score,
                mitigation_strategies=["Recruit or train agents for the missing skills"],
                monitoring_indicators=["skill_coverage"],
            ))
            contingency_plans.append("Leader sources the missing capabilities before dependent work starts")

        if goal.timeline.buffer_minutes > 0:
            contingency_plans.append(
                f"Use the {goal.timeline.buffer_minutes:g} minute schedule buffer for slipped milestones"
            )
        contingency_plans.append("Escalate unresolved blockers through the conflict resolution procedures")

        exposure = max((risk.exposure for risk in risks), default=0.0)
        return RiskManagement(
            risks=risks,
            contingency_plans=contingency_plans,
            overall_risk_level=_risk_level(exposure),
        )

    @staticmethod
    def _constraint_risk(index: int, constraint: Constraint) -> RiskItem:
        mitigation = list(constraint.mitigation_strategies) or [
            f"Review the {constraint.constraint_type.value} constraint at each milestone"
        ]
        return RiskItem(
            risk_id=f"constraint_{index}",
            category=constraint.constraint_type.value,
            description=constraint.description or f"{constraint.constraint_type.value} constraint",
            likelihood=1.0 - constraint.flexibility,
            impact=constraint.impact,
            mitigation_strategies=mitigation,
            monitoring_indicators=list(constraint.monitoring_indicators),
        )
