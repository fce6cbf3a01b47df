"""
Unit tests for the Task Coordinator.
"""

from datetime import timedelta

import pytest

from stellar_collab.core.clock import utc_now
from stellar_collab.core.exceptions import (
    CyclicDependencyError,
    InvalidInputError,
    UnassignedAgentMismatchError,
)
from stellar_collab.orchestration.coordination import (
    ComplexTask,
    CoordinationRequirements,
    CoordinationStrategy,
    Subtask,
    TaskCoordinator,
    find_cycle,
)


def _task(subtasks, required_agents=("atlas-001", "edison-001"), **kwargs) -> ComplexTask:
    return ComplexTask(
        task_id=kwargs.pop("task_id", "task-001"),
        required_agents=list(required_agents),
        subtasks=subtasks,
        **kwargs,
    )


@pytest.fixture
def diamond() -> ComplexTask:
    return _task([
        Subtask(id="A", assigned_agent="atlas-001", estimated_duration=60),
        Subtask(id="B", assigned_agent="edison-001", dependencies=["A"], estimated_duration=30),
        Subtask(id="C", assigned_agent="atlas-001", dependencies=["A"], estimated_duration=90),
        Subtask(id="D", assigned_agent="edison-001", dependencies=["B", "C"], estimated_duration=60),
    ])


class TestCycleDetection:
    """Test dependency cycle detection."""

    def test_find_cycle(self):
        subtasks = [
            Subtask(id="A", assigned_agent="x", dependencies=["C"]),
            Subtask(id="B", assigned_agent="x", dependencies=["A"]),
            Subtask(id="C", assigned_agent="x", dependencies=["B"]),
        ]

        assert find_cycle(subtasks) == ["A", "C", "B", "A"]

    def test_no_cycle(self, diamond):
        assert find_cycle(diamond.subtasks) is None

    def test_cycle_checked_before_other_validation(self):
        task = _task(
            [
                Subtask(id="A", assigned_agent="stranger", dependencies=["B"]),
                Subtask(id="B", assigned_agent="stranger", dependencies=["A"]),
            ],
            task_id="  ",
        )

        with pytest.raises(CyclicDependencyError) as exc_info:
            TaskCoordinator().coordinate(task)

        assert set(exc_info.value.cycle) == {"A", "B"}

    def test_self_dependency_is_a_cycle(self):
        task = _task([Subtask(id="A", assigned_agent="atlas-001", dependencies=["A"])])

        with pytest.raises(CyclicDependencyError):
            TaskCoordinator().coordinate(task)


class TestValidation:
    """Test structural validation."""

    def test_unassigned_agent(self):
        task = _task([Subtask(id="A", assigned_agent="curie-001")])

        with pytest.raises(UnassignedAgentMismatchError) as exc_info:
            TaskCoordinator().coordinate(task)

        assert exc_info.value.subtask_id == "A"
        assert exc_info.value.agent_id == "curie-001"

    def test_unknown_dependency(self):
        task = _task([Subtask(id="A", assigned_agent="atlas-001", dependencies=["ghost"])])

        with pytest.raises(InvalidInputError, match="unknown subtasks"):
            TaskCoordinator().coordinate(task)

    def test_duplicate_ids(self):
        task = _task([
            Subtask(id="A", assigned_agent="atlas-001"),
            Subtask(id="A", assigned_agent="edison-001"),
        ])

        with pytest.raises(InvalidInputError, match="Duplicate"):
            TaskCoordinator().coordinate(task)

    def test_no_subtasks(self):
        with pytest.raises(InvalidInputError):
            TaskCoordinator().coordinate(_task([]))


class TestCoordinate:
    """Test plan construction."""

    def test_diamond(self, diamond, metrics):
        plan = TaskCoordinator(metrics).coordinate(diamond)
        workflow = plan.workflow_orchestration

        assert workflow.execution_sequence == ["A", "B", "C", "D"]
        assert workflow.synchronization_points == ["A", "D"]
        assert workflow.execution_phases == [["A"], ["B", "C"], ["D"]]
        assert workflow.dependency_management.successors["A"] == ["B", "C"]
        assert plan.coordination_strategy == CoordinationStrategy.HYBRID
        assert plan.critical_path == ["A", "C", "D"]
        assert plan.estimated_total_duration == 210
        assert metrics.snapshot().complex_tasks_coordinated == 1

    def test_stable_order_follows_declaration(self):
        task = _task([
            Subtask(id="late", assigned_agent="atlas-001", dependencies=["root"]),
            Subtask(id="root", assigned_agent="atlas-001"),
            Subtask(id="early", assigned_agent="edison-001"),
        ])

        plan = TaskCoordinator().coordinate(task)

        assert plan.workflow_orchestration.execution_sequence == ["root", "late", "early"]

    def test_every_dependency_precedes_its_dependent(self):
        subtasks = [
            Subtask(id=f"s{i}", assigned_agent="atlas-001", dependencies=[f"s{j}" for j in range(i) if (i + j) % 3 == 0])
            for i in range(10)
        ]

        sequence = TaskCoordinator().coordinate(_task(subtasks)).workflow_orchestration.execution_sequence

        position = {subtask_id: index for index, subtask_id in enumerate(sequence)}
        for subtask in subtasks:
            for dependency in subtask.dependencies:
                assert position[dependency] < position[subtask.id]

    def test_strategies(self):
        chain = _task([
            Subtask(id="A", assigned_agent="atlas-001"),
            Subtask(id="B", assigned_agent="atlas-001", dependencies=["A"]),
        ])
        independent = _task([
            Subtask(id="A", assigned_agent="atlas-001"),
            Subtask(id="B", assigned_agent="edison-001"),
        ])

        assert TaskCoordinator().coordinate(chain).coordination_strategy == CoordinationStrategy.SEQUENTIAL
        assert TaskCoordinator().coordinate(independent).coordination_strategy == CoordinationStrategy.PARALLEL

    def test_assignments_and_handoffs(self, diamond):
        plan = TaskCoordinator().coordinate(diamond)

        assert plan.agent_assignments.by_agent == {"atlas-001": ["A", "C"], "edison-001": ["B", "D"]}
        channels = {c.sync_point: c for c in plan.communication_plan.handoff_channels}
        assert channels["D"].participants == ["edison-001", "atlas-001"]
        assert plan.monitoring_framework.checkpoints == ["sync:A", "sync:D", "complete:D"]

    def test_quality_gates_from_requirements(self, diamond):
        task = diamond.model_copy(update={
            "coordination_requirements": CoordinationRequirements(quality_gates=["code_review"]),
        })

        plan = TaskCoordinator().coordinate(task)

        assert plan.monitoring_framework.quality_gates == ["code_review"]

    def test_deadline_at_risk(self, diamond):
        tight = diamond.model_copy(update={"deadline": utc_now() + timedelta(minutes=30)})
        loose = diamond.model_copy(update={"deadline": utc_now() + timedelta(days=1)})

        assert TaskCoordinator().coordinate(tight).deadline_at_risk is True
        assert TaskCoordinator().coordinate(loose).deadline_at_risk is False
