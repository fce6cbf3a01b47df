"""
Conflict Resolver.

Classifies a reported conflict, picks a resolution strategy from a fixed
table, generates resolution actions and decides whether the conflict has
to be escalated. The advisor can only add notes to generated actions; it
never influences the strategy or the escalation decision.
"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stellar_collab.agents.advisor import AdvisorClient
from stellar_collab.config.settings import EngineSettings
from stellar_collab.core.clock import ensure_utc, utc_now
from stellar_collab.core.exceptions import InvalidInputError
from stellar_collab.core.logging import get_coordination_logger, get_logger
from stellar_collab.monitoring.metrics import MetricsAggregator


class ConflictType(str, Enum):
    """Kinds of friction agents can report."""
    RESOURCE_COMPETITION = "resource_competition"
    PRIORITY_DISAGREEMENT = "priority_disagreement"
    METHODOLOGY_DISAGREEMENT = "methodology_disagreement"
    FUNDAMENTAL_DISAGREEMENT = "fundamental_disagreement"
    GOAL_MISALIGNMENT = "goal_misalignment"
    COMMUNICATION_BREAKDOWN = "communication_breakdown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EscalationLevel(str, Enum):
    """Ordinal scope of authority, lowest first."""
    AGENT_LEVEL = "agent_level"
    TEAM_LEVEL = "team_level"
    SYSTEM_LEVEL = "system_level"


class ResolutionStrategy(str, Enum):
    MEDIATION = "mediation"
    ARBITRATION = "arbitration"
    COMPROMISE = "compromise"
    NEGOTIATION = "negotiation"
    ESCALATION = "escalation"


class ConflictState(str, Enum):
    """States a conflict passes through while it is being resolved."""
    REPORTED = "reported"
    CLASSIFIED = "classified"
    STRATEGY_SELECTED = "strategy_selected"
    ACTIONS_GENERATED = "actions_generated"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ImpactAssessment(BaseModel):
    """How much damage the conflict is doing, each score in [0, 1]."""
    model_config = ConfigDict(frozen=True)

    affected_tasks: List[str] = Field(default_factory=list)
    performance_impact: float = Field(0.0, ge=0.0, le=1.0)
    timeline_impact: float = Field(0.0, ge=0.0, le=1.0)
    resource_impact: float = Field(0.0, ge=0.0, le=1.0)
    collaboration_impact: float = Field(0.0, ge=0.0, le=1.0)
    estimated_delay_minutes: float = Field(0.0, ge=0.0)

    @property
    def mean_impact(self) -> float:
        return (
            self.performance_impact
            + self.timeline_impact
            + self.resource_impact
            + self.collaboration_impact
        ) / 4


class AgentConflict(BaseModel):
    """A conflict reported by a caller."""
    model_config = ConfigDict(frozen=True)

    conflict_id: str
    conflict_type: ConflictType
    involved_agents: List[str]
    severity: Severity
    impact_assessment: ImpactAssessment = Field(default_factory=ImpactAssessment)
    description: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
    escalation_level: EscalationLevel = EscalationLevel.AGENT_LEVEL
    reported_at: datetime = Field(default_factory=utc_now)

    @field_validator("reported_at")
    @classmethod
    def validate_reported_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int
    description: str
    responsible: str
    notes: Optional[str] = None


class OutcomeAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    success_probability: float = Field(ge=0.0, le=1.0)
    history_rate: float = Field(ge=0.0, le=1.0)
    expected_benefits: List[str] = Field(default_factory=list)
    potential_risks: List[str] = Field(default_factory=list)


class EscalationPath(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_level: EscalationLevel
    to_level: EscalationLevel
    reason: str


class ConflictResolution(BaseModel):
    """Outcome of resolving one conflict."""
    model_config = ConfigDict(frozen=True)

    resolution_id: str
    conflict_id: str
    resolution_strategy: ResolutionStrategy
    resolution_actions: List[Action]
    outcome_assessment: OutcomeAssessment
    follow_up_requirements: List[str] = Field(default_factory=list)
    escalation_required: bool
    escalation_path: Optional[EscalationPath] = None
    status: ResolutionStatus
    state_trail: List[ConflictState]
    prevention_recommendations: List[str] = Field(default_factory=list)
    resolved_at: datetime


_DEFAULT_ROW = {
    Severity.LOW: ResolutionStrategy.NEGOTIATION,
    Severity.MEDIUM: ResolutionStrategy.MEDIATION,
    Severity.HIGH: ResolutionStrategy.ARBITRATION,
    Severity.CRITICAL: ResolutionStrategy.ESCALATION,
}

STRATEGY_TABLE: Dict[ConflictType, Dict[Severity, ResolutionStrategy]] = {
    ConflictType.RESOURCE_COMPETITION: {
        Severity.LOW: ResolutionStrategy.MEDIATION,
        Severity.MEDIUM: ResolutionStrategy.MEDIATION,
        Severity.HIGH: ResolutionStrategy.ARBITRATION,
        Severity.CRITICAL: ResolutionStrategy.ESCALATION,
    },
    ConflictType.PRIORITY_DISAGREEMENT: {
        severity: ResolutionStrategy.ARBITRATION for severity in Severity
    },
    ConflictType.METHODOLOGY_DISAGREEMENT: {
        Severity.LOW: ResolutionStrategy.COMPROMISE,
        Severity.MEDIUM: ResolutionStrategy.MEDIATION,
        Severity.HIGH: ResolutionStrategy.ARBITRATION,
        Severity.CRITICAL: ResolutionStrategy.ESCALATION,
    },
    ConflictType.FUNDAMENTAL_DISAGREEMENT: {
        Severity.LOW: ResolutionStrategy.MEDIATION,
        Severity.MEDIUM: ResolutionStrategy.MEDIATION,
        Severity.HIGH: ResolutionStrategy.ESCALATION,
        Severity.CRITICAL: ResolutionStrategy.ESCALATION,
    },
    ConflictType.GOAL_MISALIGNMENT: _DEFAULT_ROW,
    ConflictType.COMMUNICATION_BREAKDOWN: _DEFAULT_ROW,
}

BASE_SUCCESS_PROBABILITY: Dict[Severity, float] = {
    Severity.LOW: 0.80,
    Severity.MEDIUM: 0.65,
    Severity.HIGH: 0.45,
    Severity.CRITICAL: 0.30,
}

ESCALATION_PROBABILITY_THRESHOLD = 0.4
DEFAULT_HISTORY_RATE = 0.5

_ACTION_TEMPLATES: Dict[ResolutionStrategy, List[str]] = {
    ResolutionStrategy.MEDIATION: [
        "Appoint a neutral mediator for {agents}",
        "Collect each agent's position and underlying interests",
        "Run a joint session to agree a shared plan",
        "Record the agreement and the owner of each follow-up",
    ],
    ResolutionStrategy.ARBITRATION: [
        "Collect written positions from {agents}",
        "Arbiter at {level} decides against the goal priorities",
        "Communicate the binding decision to all parties",
    ],
    ResolutionStrategy.COMPROMISE: [
        "Identify the negotiable elements of each approach",
        "Propose a combined approach to {agents}",
        "Trial the compromise on the affected tasks",
    ],
    ResolutionStrategy.NEGOTIATION: [
        "Open a structured negotiation between {agents}",
        "Exchange proposals until agreement or the round limit",
        "Formalize the agreed terms",
    ],
    ResolutionStrategy.ESCALATION: [
        "Pause contested work on the affected tasks",
        "Prepare a conflict brief for {target}",
        "Hand the conflict to {target} authority",
    ],
}

PREVENTION_RECOMMENDATIONS: Dict[ConflictType, List[str]] = {
    ConflictType.RESOURCE_COMPETITION: [
        "Introduce a shared resource calendar",
        "Reserve capacity buffers for critical-path tasks",
    ],
    ConflictType.PRIORITY_DISAGREEMENT: [
        "Publish a single ranked priority list per goal",
    ],
    ConflictType.METHODOLOGY_DISAGREEMENT: [
        "Agree on methodology standards before work starts",
    ],
    ConflictType.FUNDAMENTAL_DISAGREEMENT: [
        "Align on objectives and success criteria at kickoff",
        "Document decision rights for each role",
    ],
    ConflictType.GOAL_MISALIGNMENT: [
        "Restate the shared goal at every milestone review",
    ],
    ConflictType.COMMUNICATION_BREAKDOWN: [
        "Schedule regular syncs and record decisions",
    ],
}


def select_strategy(conflict_type: ConflictType, severity: Severity) -> ResolutionStrategy:
    return STRATEGY_TABLE[conflict_type][severity]


def next_escalation_level(level: EscalationLevel) -> EscalationLevel:
    """One step up the authority ladder; system level stays at system level."""
    levels = list(EscalationLevel)
    index = levels.index(level)
    return levels[min(index + 1, len(levels) - 1)]


def compute_success_probability(severity: Severity, history_rate: float, mean_impact: float) -> float:
    """
    Estimate the chance that the selected strategy resolves the conflict.

    Monotonically decreasing in severity and impact, increasing in the
    historical success rate for the conflict type. Clamped to [0.05, 0.95].
    """
    value = BASE_SUCCESS_PROBABILITY[severity] * (0.5 + history_rate) * (1 - 0.25 * mean_impact)
    return max(0.05, min(0.95, value))


class ConflictResolver:
    """Deterministic conflict classification, strategy selection and escalation."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsAggregator] = None,
        advisor: Optional[AdvisorClient] = None,
    ):
        self.settings = settings or EngineSettings()
        self.metrics = metrics or MetricsAggregator()
        self.advisor = advisor or AdvisorClient()
        self._logger = get_logger(__name__)
        self._events = get_coordination_logger(__name__)

    @staticmethod
    def validate(conflict: AgentConflict) -> None:
        """
        Raises:
            InvalidInputError: On a blank conflict id or fewer than two distinct agents
        """
        if not conflict.conflict_id.strip():
            raise InvalidInputError("Conflict must have a non-empty conflict_id")
        agents = {agent.strip() for agent in conflict.involved_agents if agent.strip()}
        if len(agents) < 2:
            raise InvalidInputError(
                f"Conflict {conflict.conflict_id!r} must involve at least two distinct agents"
            )

    async def resolve(self, conflict: AgentConflict, deadline: Optional[float] = None) -> ConflictResolution:
        """
        Resolve one conflict.

        Args:
            conflict: The reported conflict
            deadline: Event-loop time bounding the optional advisor call

        Returns:
            ConflictResolution with ``status`` resolved or escalated
        """
        self.validate(conflict)

        loop = asyncio.get_running_loop()
        started = loop.time()
        trail = [ConflictState.REPORTED, ConflictState.CLASSIFIED]

        history = self.metrics.conflict_success_rate(conflict.conflict_type.value)
        history_rate = DEFAULT_HISTORY_RATE if history is None else history
        mean_impact = conflict.impact_assessment.mean_impact

        strategy = select_strategy(conflict.conflict_type, conflict.severity)
        trail.append(ConflictState.STRATEGY_SELECTED)

        probability = compute_success_probability(conflict.severity, history_rate, mean_impact)

        forced_reasons = []
        if conflict.severity == Severity.CRITICAL:
            forced_reasons.append("critical severity")
        if strategy == ResolutionStrategy.ESCALATION:
            forced_reasons.append("escalation strategy selected")
        if not self.settings.auto_conflict_resolution:
            forced_reasons.append("automatic conflict resolution disabled")

        reasons = list(forced_reasons)
        if probability < ESCALATION_PROBABILITY_THRESHOLD:
            reasons.append(f"success probability {probability:.2f} below {ESCALATION_PROBABILITY_THRESHOLD}")

        escalation_path = None
        if reasons:
            escalation_path = EscalationPath(
                from_level=conflict.escalation_level,
                to_level=next_escalation_level(conflict.escalation_level),
                reason="; ".join(reasons),
            )

        hint = await self.advisor.conflict_hint(
            {
                "conflict": conflict.model_dump(mode="json"),
                "resolution_strategy": strategy.value,
                "escalation_required": escalation_path is not None,
            },
            deadline=deadline,
        )
        notes = hint.action_notes if hint else []

        actions = self._generate_actions(conflict, strategy, escalation_path, notes)
        trail.append(ConflictState.ACTIONS_GENERATED)

        follow_up = self._follow_up(conflict, escalation_path)
        if hint:
            follow_up.extend(item for item in hint.follow_up if item not in follow_up)

        status = ResolutionStatus.ESCALATED if escalation_path else ResolutionStatus.RESOLVED
        trail.append(ConflictState.ESCALATED if escalation_path else ConflictState.RESOLVED)

        resolution = ConflictResolution(
            resolution_id=str(uuid.uuid4()),
            conflict_id=conflict.conflict_id,
            resolution_strategy=strategy,
            resolution_actions=actions,
            outcome_assessment=OutcomeAssessment(
                success_probability=probability,
                history_rate=history_rate,
                expected_benefits=self._expected_benefits(strategy),
                potential_risks=self._potential_risks(conflict, probability),
            ),
            follow_up_requirements=follow_up,
            escalation_required=escalation_path is not None,
            escalation_path=escalation_path,
            status=status,
            state_trail=trail,
            prevention_recommendations=list(PREVENTION_RECOMMENDATIONS[conflict.conflict_type]),
            resolved_at=utc_now(),
        )

        self.metrics.record_conflict(
            conflict.conflict_type.value,
            resolved=status == ResolutionStatus.RESOLVED,
            duration_seconds=loop.time() - started,
            forced=bool(forced_reasons),
        )

        if escalation_path:
            self._events.escalation(
                subject_id=conflict.conflict_id,
                subject_type="conflict",
                from_level=escalation_path.from_level.value,
                to_level=escalation_path.to_level.value,
                reason=escalation_path.reason,
            )

        self._logger.info(
            "Conflict processed",
            conflict_id=conflict.conflict_id,
            conflict_type=conflict.conflict_type.value,
            severity=conflict.severity.value,
            strategy=strategy.value,
            success_probability=round(probability, 3),
            status=status.value,
        )

        return resolution

    def _generate_actions(
        self,
        conflict: AgentConflict,
        strategy: ResolutionStrategy,
        escalation_path: Optional[EscalationPath],
        notes: List[str],
    ) -> List[Action]:
        agents = ", ".join(dict.fromkeys(conflict.involved_agents))
        target = (escalation_path.to_level if escalation_path else
                  next_escalation_level(conflict.escalation_level)).value

        descriptions = [
            template.format(agents=agents, level=conflict.escalation_level.value, target=target)
            for template in _ACTION_TEMPLATES[strategy]
        ]
        if escalation_path and strategy != ResolutionStrategy.ESCALATION:
            descriptions.append(f"Escalate to {target} authority with the {strategy.value} record")

        actions = []
        for index, description in enumerate(descriptions):
            if strategy in (ResolutionStrategy.ARBITRATION, ResolutionStrategy.ESCALATION) and index > 0:
                responsible = target if strategy == ResolutionStrategy.ESCALATION else conflict.escalation_level.value
            else:
                responsible = "all_involved"
            actions.append(Action(
                step=index + 1,
                description=description,
                responsible=responsible,
                notes=notes[index] if index < len(notes) else None,
            ))
        return actions

    def _follow_up(self, conflict: AgentConflict, escalation_path: Optional[EscalationPath]) -> List[str]:
        follow_up = [
            f"Confirm outcome with {', '.join(dict.fromkeys(conflict.involved_agents))} "
            f"within {self.settings.conflict_resolution_timeout_minutes:g} minutes"
        ]
        affected = conflict.impact_assessment.affected_tasks
        if affected:
            follow_up.append(f"Re-check affected tasks: {', '.join(affected)}")
        if escalation_path:
            follow_up.append(f"Await decision from {escalation_path.to_level.value} authority")
        return follow_up

    @staticmethod
    def _expected_benefits(strategy: ResolutionStrategy) -> List[str]:
        if strategy == ResolutionStrategy.ESCALATION:
            return ["Decision taken by an authority able to bind all parties"]
        return ["Restored collaboration between involved agents", "Unblocked affected tasks"]

    @staticmethod
    def _potential_risks(conflict: AgentConflict, probability: float) -> List[str]:
        risks = []
        if probability < 0.5:
            risks.append("Resolution may not hold without follow-up")
        if conflict.impact_assessment.timeline_impact >= 0.5:
            risks.append("Timeline slippage on affected tasks")
        if conflict.impact_assessment.collaboration_impact >= 0.5:
            risks.append("Reduced trust between involved agents")
        return risks
