"""
Unit tests for the Conflict Resolver.
"""

import pytest

from stellar_collab.agents.advisor import AdvisorClient
from stellar_collab.config.settings import EngineSettings
from stellar_collab.core.exceptions import InvalidInputError
from stellar_collab.orchestration.conflicts import (
    AgentConflict,
    ConflictResolver,
    ConflictState,
    ConflictType,
    EscalationLevel,
    ImpactAssessment,
    ResolutionStatus,
    ResolutionStrategy,
    Severity,
    compute_success_probability,
    next_escalation_level,
    select_strategy,
)


def _conflict(conflict_type=ConflictType.RESOURCE_COMPETITION, severity=Severity.LOW, **kwargs) -> AgentConflict:
    defaults = dict(
        conflict_id="conflict-001",
        conflict_type=conflict_type,
        involved_agents=["atlas-001", "edison-001"],
        severity=severity,
    )
    defaults.update(kwargs)
    return AgentConflict(**defaults)


def _resolver(metrics, advisor=None, **settings) -> ConflictResolver:
    client = AdvisorClient(advisor, timeout_seconds=0.5, max_retries=0)
    return ConflictResolver(EngineSettings(**settings), metrics, client)


class TestStrategyTable:
    """Test deterministic strategy selection."""

    @pytest.mark.parametrize("conflict_type,severity,expected", [
        (ConflictType.RESOURCE_COMPETITION, Severity.LOW, ResolutionStrategy.MEDIATION),
        (ConflictType.RESOURCE_COMPETITION, Severity.MEDIUM, ResolutionStrategy.MEDIATION),
        (ConflictType.PRIORITY_DISAGREEMENT, Severity.LOW, ResolutionStrategy.ARBITRATION),
        (ConflictType.PRIORITY_DISAGREEMENT, Severity.CRITICAL, ResolutionStrategy.ARBITRATION),
        (ConflictType.METHODOLOGY_DISAGREEMENT, Severity.LOW, ResolutionStrategy.COMPROMISE),
        (ConflictType.FUNDAMENTAL_DISAGREEMENT, Severity.HIGH, ResolutionStrategy.ESCALATION),
        (ConflictType.FUNDAMENTAL_DISAGREEMENT, Severity.CRITICAL, ResolutionStrategy.ESCALATION),
    ])
    def test_table_rows(self, conflict_type, severity, expected):
        assert select_strategy(conflict_type, severity) == expected

    def test_escalation_ladder(self):
        assert next_escalation_level(EscalationLevel.AGENT_LEVEL) == EscalationLevel.TEAM_LEVEL
        assert next_escalation_level(EscalationLevel.TEAM_LEVEL) == EscalationLevel.SYSTEM_LEVEL
        assert next_escalation_level(EscalationLevel.SYSTEM_LEVEL) == EscalationLevel.SYSTEM_LEVEL

    def test_success_probability_monotonic_in_severity(self):
        values = [compute_success_probability(severity, 0.5, 0.0) for severity in Severity]

        assert values == sorted(values, reverse=True)
        assert compute_success_probability(Severity.MEDIUM, 0.9, 0.0) > compute_success_probability(
            Severity.MEDIUM, 0.1, 0.0
        )


class TestResolve:
    """Test conflict resolution and escalation."""

    def test_validation(self):
        with pytest.raises(InvalidInputError):
            ConflictResolver.validate(_conflict(involved_agents=["atlas-001", "atlas-001"]))
        with pytest.raises(InvalidInputError):
            ConflictResolver.validate(_conflict(conflict_id="  "))

    @pytest.mark.asyncio
    async def test_low_resource_conflict_resolved_by_mediation(self, metrics):
        resolution = await _resolver(metrics).resolve(_conflict())

        assert resolution.conflict_id == "conflict-001"
        assert resolution.resolution_strategy == ResolutionStrategy.MEDIATION
        assert resolution.escalation_required is False
        assert resolution.escalation_path is None
        assert resolution.status == ResolutionStatus.RESOLVED
        assert resolution.state_trail == [
            ConflictState.REPORTED,
            ConflictState.CLASSIFIED,
            ConflictState.STRATEGY_SELECTED,
            ConflictState.ACTIONS_GENERATED,
            ConflictState.RESOLVED,
        ]
        assert [a.step for a in resolution.resolution_actions] == [1, 2, 3, 4]
        assert resolution.outcome_assessment.history_rate == 0.5

    @pytest.mark.asyncio
    async def test_critical_fundamental_conflict_escalates(self, metrics):
        resolution = await _resolver(metrics).resolve(
            _conflict(ConflictType.FUNDAMENTAL_DISAGREEMENT, Severity.CRITICAL)
        )

        assert resolution.resolution_strategy == ResolutionStrategy.ESCALATION
        assert resolution.escalation_required is True
        assert resolution.status == ResolutionStatus.ESCALATED
        assert resolution.escalation_path.from_level == EscalationLevel.AGENT_LEVEL
        assert resolution.escalation_path.to_level == EscalationLevel.TEAM_LEVEL
        assert "critical severity" in resolution.escalation_path.reason
        assert resolution.state_trail[-1] == ConflictState.ESCALATED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("conflict_type", list(ConflictType))
    async def test_critical_always_escalates(self, metrics, conflict_type):
        resolution = await _resolver(metrics).resolve(_conflict(conflict_type, Severity.CRITICAL))

        assert resolution.escalation_required is True
        assert resolution.escalation_path is not None

    @pytest.mark.asyncio
    async def test_low_probability_escalates(self, metrics):
        conflict = _conflict(
            ConflictType.RESOURCE_COMPETITION,
            Severity.HIGH,
            impact_assessment=ImpactAssessment(
                performance_impact=1.0,
                timeline_impact=1.0,
                resource_impact=1.0,
                collaboration_impact=1.0,
            ),
            escalation_level=EscalationLevel.TEAM_LEVEL,
        )

        resolution = await _resolver(metrics).resolve(conflict)

        assert resolution.resolution_strategy == ResolutionStrategy.ARBITRATION
        assert resolution.outcome_assessment.success_probability < 0.4
        assert resolution.escalation_required is True
        assert resolution.escalation_path.to_level == EscalationLevel.SYSTEM_LEVEL
        assert resolution.resolution_actions[-1].description.startswith("Escalate to system_level")

    @pytest.mark.asyncio
    async def test_auto_resolution_disabled_escalates(self, metrics):
        resolution = await _resolver(metrics, auto_conflict_resolution=False).resolve(_conflict())

        assert resolution.escalation_required is True
        assert "disabled" in resolution.escalation_path.reason

    @pytest.mark.asyncio
    async def test_history_feeds_success_probability(self, metrics):
        resolver = _resolver(metrics)
        first = await resolver.resolve(_conflict(severity=Severity.MEDIUM))
        second = await resolver.resolve(_conflict(conflict_id="conflict-002", severity=Severity.MEDIUM))

        assert first.outcome_assessment.history_rate == 0.5
        assert second.outcome_assessment.history_rate == 1.0
        assert second.outcome_assessment.success_probability > first.outcome_assessment.success_probability
        assert metrics.snapshot().conflict_success_rates == {"resource_competition": 1.0}

    @pytest.mark.asyncio
    async def test_advisor_only_adds_notes(self, metrics, scripted_advisor):
        plain = await _resolver(metrics).resolve(_conflict())
        advised = await _resolver(metrics, scripted_advisor).resolve(_conflict())

        assert advised.resolution_strategy == plain.resolution_strategy
        assert advised.escalation_required == plain.escalation_required
        assert advised.resolution_actions[0].notes == "Share the GPU calendar"
        assert advised.resolution_actions[2].notes is None
        assert "Review allocation next sprint" in advised.follow_up_requirements

    @pytest.mark.asyncio
    async def test_failing_advisor_is_absorbed(self, metrics, advisor_factory):
        advisor = advisor_factory(error=RuntimeError("boom"))

        resolution = await _resolver(metrics, advisor).resolve(_conflict())

        assert resolution.status == ResolutionStatus.RESOLVED
        assert all(a.notes is None for a in resolution.resolution_actions)

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, metrics):
        resolver = _resolver(metrics)
        await resolver.resolve(_conflict())
        await resolver.resolve(_conflict(ConflictType.FUNDAMENTAL_DISAGREEMENT, Severity.CRITICAL))

        snapshot = metrics.snapshot()
        assert snapshot.conflicts_resolved == 1
        assert snapshot.conflicts_escalated == 1
        assert snapshot.average_conflict_resolution_time >= 0.0

    @pytest.mark.asyncio
    async def test_forced_escalation_stays_out_of_history(self, metrics):
        resolver = _resolver(metrics)
        impact = ImpactAssessment(
            performance_impact=0.2,
            timeline_impact=0.2,
            resource_impact=0.2,
            collaboration_impact=0.2,
        )

        high = await resolver.resolve(_conflict(ConflictType.FUNDAMENTAL_DISAGREEMENT, Severity.HIGH))
        lows = [
            await resolver.resolve(_conflict(
                ConflictType.FUNDAMENTAL_DISAGREEMENT,
                Severity.LOW,
                conflict_id=f"conflict-low-{i}",
                impact_assessment=impact,
            ))
            for i in range(5)
        ]

        assert high.status == ResolutionStatus.ESCALATED
        assert [r.status for r in lows] == [ResolutionStatus.RESOLVED] * 5
        assert lows[0].outcome_assessment.history_rate == 0.5
        assert lows[0].outcome_assessment.success_probability == pytest.approx(0.76)

        snapshot = metrics.snapshot()
        assert snapshot.conflicts_escalated == 1
        assert snapshot.forced_escalations == 1
        assert snapshot.conflict_success_rates == {"fundamental_disagreement": 1.0}

    @pytest.mark.asyncio
    async def test_low_probability_escalation_enters_history(self, metrics):
        conflict = _conflict(
            ConflictType.RESOURCE_COMPETITION,
            Severity.HIGH,
            impact_assessment=ImpactAssessment(timeline_impact=1.0, resource_impact=1.0),
        )

        resolution = await _resolver(metrics).resolve(conflict)

        assert resolution.status == ResolutionStatus.ESCALATED
        assert metrics.snapshot().forced_escalations == 0
        assert metrics.snapshot().conflict_success_rates == {"resource_competition": 0.0}
