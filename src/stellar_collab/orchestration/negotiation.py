"""
Negotiation Facilitator.

Runs a bounded, strictly sequential multi-round proposal protocol. Each
round the leading proposal, the standing proposal with the highest mean
satisfaction across all participants, is put to every agent except its
proposer. Agents accept, counter or reject through a
``NegotiationParticipant``. The protocol ends in agreement, deadlock, a
timeout or an escalation; non-agreement outcomes always require
escalation.

This is heuristic bargaining run by a single coordinating authority, not
a fault-tolerant agreement algorithm.
"""

import asyncio
import itertools
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stellar_collab.agents.advisor import AdvisorClient, AlternativeSolution
from stellar_collab.config.settings import EngineSettings
from stellar_collab.core.clock import utc_now
from stellar_collab.core.exceptions import InvalidInputError
from stellar_collab.core.logging import get_coordination_logger, get_logger
from stellar_collab.monitoring.metrics import MetricsAggregator

POSITION_TOLERANCE = 1e-3
DEADLOCK_STALE_ROUNDS = 2
INCOMPATIBLE_REQUIREMENTS = "incompatible_requirements"


class Stance(str, Enum):
    ACCEPT = "accept"
    COUNTER = "counter"
    REJECT = "reject"


class OutcomeStatus(str, Enum):
    AGREEMENT = "agreement"
    DEADLOCK = "deadlock"
    TIMEOUT = "timeout"
    ESCALATED = "escalated"


class Proposal(BaseModel):
    model_config = ConfigDict(frozen=True)

    proposal_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    proposing_agent: str
    terms: Dict[str, Any] = Field(default_factory=dict)
    rationale: str = ""
    round_number: int = 0


class StakeholderInterest(BaseModel):
    """What one agent cares about and how far it is willing to move."""
    model_config = ConfigDict(frozen=True)

    interests: List[str] = Field(default_factory=list)
    preferred_terms: Dict[str, Any] = Field(default_factory=dict)
    flexibility: float = Field(0.5, ge=0.0, le=1.0)


class NegotiationContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    triggering_event: str = ""
    available_resources: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    stakeholder_interests: Dict[str, StakeholderInterest] = Field(default_factory=dict)

    @field_validator("stakeholder_interests", mode="before")
    @classmethod
    def coerce_interest_lists(cls, v: Any) -> Any:
        """Accept a bare list of interests per agent."""
        if isinstance(v, dict):
            return {
                agent_id: {"interests": value} if isinstance(value, list) else value
                for agent_id, value in v.items()
            }
        return v


class NegotiationParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_rounds: int = Field(5, ge=1)
    timeout_minutes: float = Field(30.0, gt=0)
    success_criteria: List[str] = Field(default_factory=list)
    escalation_triggers: List[str] = Field(default_factory=lambda: ["deadlock", "timeout"])


class AgentNegotiation(BaseModel):
    model_config = ConfigDict(frozen=True)

    negotiation_id: str
    participating_agents: List[str]
    negotiation_topic: str = ""
    negotiation_type: str = "resource_allocation"
    negotiation_context: NegotiationContext = Field(default_factory=NegotiationContext)
    negotiation_parameters: NegotiationParameters = Field(default_factory=NegotiationParameters)
    initial_proposals: List[Proposal]


class ProposalRequest(BaseModel):
    """What a participant is asked to answer in one round."""
    model_config = ConfigDict(frozen=True)

    negotiation_id: str
    agent_id: str
    round_number: int
    leading_proposal: Proposal
    own_position: Optional[Proposal] = None
    reference_terms: Optional[Dict[str, Any]] = None


class NegotiationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: str
    stance: Stance
    counter_proposal: Optional[Proposal] = None
    rationale: str = ""


class Round(BaseModel):
    model_config = ConfigDict(frozen=True)

    round_number: int
    leading_proposal: Proposal
    responses: List[NegotiationResponse]
    positions: Dict[str, Optional[Dict[str, Any]]]
    position_changed: bool
    started_at: datetime
    completed_at: datetime


class ImplementationPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: List[str]
    responsible_agents: List[str]
    review_checkpoints: List[str] = Field(default_factory=list)


class NegotiationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    negotiation_id: str
    outcome_status: OutcomeStatus
    final_agreement: Optional[Proposal] = None
    negotiation_history: List[Round] = Field(default_factory=list)
    satisfaction_scores: Dict[str, float] = Field(default_factory=dict)
    escalation_required: bool = False
    alternative_solutions: List[AlternativeSolution] = Field(default_factory=list)
    rounds_completed: int = 0
    completion_timestamp: datetime
    implementation_plan: Optional[ImplementationPlan] = None


@runtime_checkable
class NegotiationParticipant(Protocol):
    """Answers proposals on behalf of one agent."""

    async def respond(self, request: ProposalRequest) -> NegotiationResponse:
        ...


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def terms_distance(reference: Dict[str, Any], terms: Dict[str, Any]) -> float:
    """
    Normalized distance between two term sets, in [0, 1].

    Numeric values contribute their relative difference, other values 0 or
    1 by equality, and a key present on one side only contributes 1.
    """
    keys = set(reference) | set(terms)
    if not keys:
        return 0.0

    total = 0.0
    for key in keys:
        if key not in reference or key not in terms:
            total += 1.0
            continue
        a, b = reference[key], terms[key]
        if _is_number(a) and _is_number(b):
            total += min(1.0, abs(a - b) / max(abs(a), abs(b), 1))
        elif a != b:
            total += 1.0
    return total / len(keys)


def satisfaction(reference: Optional[Dict[str, Any]], terms: Dict[str, Any]) -> float:
    """An agent without reference terms is indifferent and fully satisfied."""
    if reference is None:
        return 1.0
    return 1.0 - terms_distance(reference, terms)


def move_toward(base: Dict[str, Any], target: Dict[str, Any], step: float) -> Dict[str, Any]:
    """Concede ``step`` of the way from ``base`` to ``target``."""
    moved: Dict[str, Any] = {}
    for key in list(base) + [k for k in target if k not in base]:
        if key not in target:
            moved[key] = base[key]
        elif key not in base:
            moved[key] = target[key]
        elif _is_number(base[key]) and _is_number(target[key]):
            moved[key] = base[key] + (target[key] - base[key]) * step
        else:
            moved[key] = target[key] if step >= 0.5 else base[key]
    return moved


class InterestBasedParticipant:
    """
    Default participant driven by an agent's reference terms.

    Accepts proposals it is satisfied enough with, rejects when it has no
    room to concede, and otherwise counters by moving its position toward
    the leading proposal by its flexibility.
    """

    def __init__(self, flexibility: float = 0.5, acceptance_threshold: float = 0.75):
        self.flexibility = flexibility
        self.acceptance_threshold = acceptance_threshold

    async def respond(self, request: ProposalRequest) -> NegotiationResponse:
        leading = request.leading_proposal
        score = satisfaction(request.reference_terms, leading.terms)

        if score >= self.acceptance_threshold:
            return NegotiationResponse(
                agent_id=request.agent_id,
                stance=Stance.ACCEPT,
                rationale=f"satisfaction {score:.2f} meets threshold",
            )

        if self.flexibility <= 0:
            return NegotiationResponse(
                agent_id=request.agent_id,
                stance=Stance.REJECT,
                rationale=f"satisfaction {score:.2f} below threshold and no flexibility",
            )

        if request.own_position is not None:
            base = request.own_position.terms
        else:
            base = request.reference_terms or {}

        return NegotiationResponse(
            agent_id=request.agent_id,
            stance=Stance.COUNTER,
            counter_proposal=Proposal(
                proposing_agent=request.agent_id,
                terms=move_toward(base, leading.terms, self.flexibility),
                rationale=f"concession of {self.flexibility:.2f} toward the leading proposal",
                round_number=request.round_number,
            ),
        )


class _Standing:
    """Mutable bookkeeping for one negotiation run."""

    def __init__(self, negotiation: AgentNegotiation):
        self._sequence = itertools.count()
        self.positions: Dict[str, Optional[Tuple[int, Proposal]]] = {
            agent: None for agent in negotiation.participating_agents
        }
        self.proposed: Dict[str, List[Proposal]] = {agent: [] for agent in negotiation.participating_agents}
        self.stances: Dict[str, Optional[Stance]] = {agent: None for agent in negotiation.participating_agents}

        for proposal in negotiation.initial_proposals:
            self.put(proposal)

    def put(self, proposal: Proposal) -> bool:
        """Make ``proposal`` its agent's position; ``True`` when the position moved."""
        agent = proposal.proposing_agent
        current = self.positions.get(agent)
        self.proposed[agent].append(proposal)
        if current is not None and terms_distance(current[1].terms, proposal.terms) <= POSITION_TOLERANCE:
            return False
        self.positions[agent] = (next(self._sequence), proposal)
        return True

    def position(self, agent: str) -> Optional[Proposal]:
        entry = self.positions.get(agent)
        return entry[1] if entry else None

    def candidates(self) -> List[Tuple[int, Proposal]]:
        return sorted(entry for entry in self.positions.values() if entry is not None)


class NegotiationFacilitator:
    """Runs negotiations to agreement, deadlock, timeout or escalation."""

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
    def validate(negotiation: AgentNegotiation) -> None:
        """
        Raises:
            InvalidInputError: On a blank id, fewer than two distinct agents,
                no initial proposals, or a proposer who is not participating
        """
        if not negotiation.negotiation_id.strip():
            raise InvalidInputError("Negotiation must have a non-empty negotiation_id")

        agents = negotiation.participating_agents
        if len(set(agents)) < 2 or len(set(agents)) != len(agents):
            raise InvalidInputError(
                f"Negotiation {negotiation.negotiation_id!r} needs at least two distinct, unique agents"
            )
        if not negotiation.initial_proposals:
            raise InvalidInputError(f"Negotiation {negotiation.negotiation_id!r} has no initial proposals")

        outsiders = sorted({
            p.proposing_agent for p in negotiation.initial_proposals if p.proposing_agent not in agents
        })
        if outsiders:
            raise InvalidInputError(f"Proposers not participating in the negotiation: {', '.join(outsiders)}")

    def reference_terms(self, negotiation: AgentNegotiation, agent: str) -> Optional[Dict[str, Any]]:
        """An agent's ideal: its first initial proposal, else its preferred terms."""
        for proposal in negotiation.initial_proposals:
            if proposal.proposing_agent == agent:
                return dict(proposal.terms)
        interest = negotiation.negotiation_context.stakeholder_interests.get(agent)
        if interest and interest.preferred_terms:
            return dict(interest.preferred_terms)
        return None

    def default_participant(self, negotiation: AgentNegotiation, agent: str) -> InterestBasedParticipant:
        interest = negotiation.negotiation_context.stakeholder_interests.get(agent)
        return InterestBasedParticipant(
            flexibility=interest.flexibility if interest else 0.5,
            acceptance_threshold=self.settings.consensus_threshold,
        )

    def effective_max_rounds(self, negotiation: AgentNegotiation) -> int:
        return min(negotiation.negotiation_parameters.max_rounds, self.settings.negotiation_rounds_limit)

    async def negotiate(
        self,
        negotiation: AgentNegotiation,
        participants: Optional[Dict[str, NegotiationParticipant]] = None,
        deadline: Optional[float] = None,
    ) -> NegotiationResult:
        """
        Run ``negotiation`` to a terminal outcome.

        Args:
            negotiation: The negotiation definition
            participants: Per-agent participants; agents without one get an ``InterestBasedParticipant``
            deadline: Optional event-loop time that ends the negotiation as a timeout
        """
        self.validate(negotiation)

        loop = asyncio.get_running_loop()
        stop_at = loop.time() + negotiation.negotiation_parameters.timeout_minutes * 60
        if deadline is not None:
            stop_at = min(stop_at, deadline)

        agents = list(negotiation.participating_agents)
        references = {agent: self.reference_terms(negotiation, agent) for agent in agents}
        responders_by_agent: Dict[str, NegotiationParticipant] = {
            agent: (participants or {}).get(agent) or self.default_participant(negotiation, agent)
            for agent in agents
        }

        standing = _Standing(negotiation)
        history: List[Round] = []
        outcome: Optional[OutcomeStatus] = None
        final: Optional[Proposal] = None
        stale_rounds = 0

        for round_number in range(1, self.effective_max_rounds(negotiation) + 1):
            if loop.time() >= stop_at:
                outcome = OutcomeStatus.TIMEOUT
                break

            started_at = utc_now()
            leading = self._leading(standing, references)
            responders = [agent for agent in agents if agent != leading.proposing_agent]

            responses = await asyncio.gather(*[
                self._ask(
                    responders_by_agent[agent],
                    ProposalRequest(
                        negotiation_id=negotiation.negotiation_id,
                        agent_id=agent,
                        round_number=round_number,
                        leading_proposal=leading,
                        own_position=standing.position(agent),
                        reference_terms=references[agent],
                    ),
                    stop_at,
                )
                for agent in responders
            ])

            changed = round_number == 1
            for response in responses:
                if standing.stances[response.agent_id] != response.stance:
                    changed = True
                standing.stances[response.agent_id] = response.stance
                if response.stance == Stance.COUNTER and response.counter_proposal is not None:
                    if standing.put(response.counter_proposal):
                        changed = True

            history.append(Round(
                round_number=round_number,
                leading_proposal=leading,
                responses=list(responses),
                positions={
                    agent: (dict(standing.position(agent).terms) if standing.position(agent) else None)
                    for agent in agents
                },
                position_changed=changed,
                started_at=started_at,
                completed_at=utc_now(),
            ))

            self._logger.debug(
                "Negotiation round completed",
                negotiation_id=negotiation.negotiation_id,
                round_number=round_number,
                leading_agent=leading.proposing_agent,
                stances={r.agent_id: r.stance.value for r in responses},
                position_changed=changed,
            )

            if all(r.stance == Stance.ACCEPT for r in responses):
                outcome, final = OutcomeStatus.AGREEMENT, leading
                break

            if (
                all(r.stance == Stance.REJECT for r in responses)
                and INCOMPATIBLE_REQUIREMENTS in negotiation.negotiation_parameters.escalation_triggers
            ):
                outcome = OutcomeStatus.ESCALATED
                break

            stale_rounds = 0 if changed else stale_rounds + 1
            if stale_rounds >= DEADLOCK_STALE_ROUNDS:
                outcome = OutcomeStatus.DEADLOCK
                break

            if loop.time() >= stop_at:
                outcome = OutcomeStatus.TIMEOUT
                break

        if outcome is None:
            outcome = OutcomeStatus.TIMEOUT

        return await self._finish(negotiation, outcome, final, history, standing, references, deadline)

    async def expire(self, negotiation: AgentNegotiation, deadline: Optional[float] = None) -> NegotiationResult:
        """Terminal timeout result for a negotiation that never got to run a round."""
        self.validate(negotiation)
        references = {
            agent: self.reference_terms(negotiation, agent) for agent in negotiation.participating_agents
        }
        return await self._finish(
            negotiation, OutcomeStatus.TIMEOUT, None, [], _Standing(negotiation), references, deadline
        )

    async def _ask(
        self,
        participant: NegotiationParticipant,
        request: ProposalRequest,
        stop_at: float,
    ) -> NegotiationResponse:
        """One participant's answer; silence, errors and malformed answers count as reject."""
        loop = asyncio.get_running_loop()
        timeout = min(self.settings.negotiation_round_timeout_seconds, stop_at - loop.time())
        if timeout <= 0:
            return NegotiationResponse(agent_id=request.agent_id, stance=Stance.REJECT, rationale="no time left")

        try:
            response = await asyncio.wait_for(participant.respond(request), timeout=timeout)
        except asyncio.TimeoutError:
            return NegotiationResponse(agent_id=request.agent_id, stance=Stance.REJECT, rationale="no response")
        except Exception as e:
            self._logger.warning(
                "Participant failed to respond",
                negotiation_id=request.negotiation_id,
                agent_id=request.agent_id,
                error=str(e),
            )
            return NegotiationResponse(agent_id=request.agent_id, stance=Stance.REJECT, rationale="participant error")

        if response.stance == Stance.COUNTER and response.counter_proposal is None:
            return NegotiationResponse(agent_id=request.agent_id, stance=Stance.REJECT, rationale="empty counter")

        counter = response.counter_proposal
        if counter is not None and counter.proposing_agent != request.agent_id:
            counter = counter.model_copy(update={"proposing_agent": request.agent_id})
        return response.model_copy(update={"agent_id": request.agent_id, "counter_proposal": counter})

    @staticmethod
    def _leading(standing: _Standing, references: Dict[str, Optional[Dict[str, Any]]]) -> Proposal:
        """Highest mean satisfaction over all agents; the oldest wins ties."""
        best: Optional[Proposal] = None
        best_score = -1.0
        for _, proposal in standing.candidates():
            score = sum(satisfaction(ref, proposal.terms) for ref in references.values()) / len(references)
            if score > best_score + 1e-12:
                best, best_score = proposal, score
        return best

    async def _finish(
        self,
        negotiation: AgentNegotiation,
        outcome: OutcomeStatus,
        final: Optional[Proposal],
        history: List[Round],
        standing: _Standing,
        references: Dict[str, Optional[Dict[str, Any]]],
        deadline: Optional[float],
    ) -> NegotiationResult:
        agents = list(negotiation.participating_agents)

        if final is not None:
            scores = {agent: satisfaction(references[agent], final.terms) for agent in agents}
        else:
            fallback = history[-1].leading_proposal if history else self._leading(standing, references)
            scores = {}
            for agent in agents:
                best = self._best_own_proposal(agent, standing, references) or fallback
                scores[agent] = satisfaction(references[agent], best.terms)

        escalation_required = outcome != OutcomeStatus.AGREEMENT
        alternatives: List[AlternativeSolution] = []
        if escalation_required:
            hint = await self.advisor.alternatives_hint(
                {
                    "negotiation": negotiation.model_dump(mode="json"),
                    "outcome_status": outcome.value,
                    "final_positions": {
                        agent: (standing.position(agent).terms if standing.position(agent) else None)
                        for agent in agents
                    },
                },
                deadline=deadline,
            )
            alternatives = hint.alternatives if hint else []

        result = NegotiationResult(
            negotiation_id=negotiation.negotiation_id,
            outcome_status=outcome,
            final_agreement=final,
            negotiation_history=history,
            satisfaction_scores=scores,
            escalation_required=escalation_required,
            alternative_solutions=alternatives,
            rounds_completed=len(history),
            completion_timestamp=utc_now(),
            implementation_plan=self._implementation_plan(negotiation, final) if final else None,
        )

        self.metrics.record_negotiation(outcome.value, len(history))
        self._events.negotiation_outcome(negotiation.negotiation_id, outcome.value, len(history))
        if escalation_required:
            self._events.escalation(
                subject_id=negotiation.negotiation_id,
                subject_type="negotiation",
                reason=outcome.value,
                alternatives=len(alternatives),
            )

        return result

    @staticmethod
    def _best_own_proposal(
        agent: str,
        standing: _Standing,
        references: Dict[str, Optional[Dict[str, Any]]],
    ) -> Optional[Proposal]:
        """The agent's own proposal the other agents find most acceptable."""
        others = [ref for other, ref in references.items() if other != agent]
        best: Optional[Proposal] = None
        best_score = -1.0
        for proposal in standing.proposed.get(agent, []):
            score = sum(satisfaction(ref, proposal.terms) for ref in others) / max(len(others), 1)
            if score > best_score + 1e-12:
                best, best_score = proposal, score
        return best

    @staticmethod
    def _implementation_plan(negotiation: AgentNegotiation, agreement: Proposal) -> ImplementationPlan:
        terms = ", ".join(f"{key}={value}" for key, value in agreement.terms.items()) or "no explicit terms"
        checkpoints = list(negotiation.negotiation_parameters.success_criteria) or ["mutual_agreement"]
        return ImplementationPlan(
            steps=[
                f"Record the agreed terms: {terms}",
                "Each participant confirms its commitments",
                "Apply the agreed allocation and monitor adherence",
            ],
            responsible_agents=list(negotiation.participating_agents),
            review_checkpoints=checkpoints,
        )
