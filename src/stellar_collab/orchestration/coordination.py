"""
Task Coordinator.

Turns a ``ComplexTask`` into a dependency-respecting ``CoordinationPlan``:
a stable topological execution order, synchronization points at fan-in and
fan-out boundaries, execution phases by dependency depth, the critical
path by estimated duration, and the communication and monitoring
arrangements around them. Coordination is a pure function of the task.
"""

import heapq
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stellar_collab.core.clock import ensure_utc, utc_now
from stellar_collab.core.exceptions import (
    CyclicDependencyError,
    InvalidInputError,
    UnassignedAgentMismatchError,
)
from stellar_collab.core.logging import get_logger
from stellar_collab.monitoring.metrics import MetricsAggregator


class CoordinationStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HYBRID = "hybrid"


class Subtask(BaseModel):
    """One unit of work owned by one agent."""
    model_config = ConfigDict(frozen=True)

    id: str
    assigned_agent: str
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    estimated_duration: float = Field(60.0, ge=0.0, description="Minutes")
    required_skills: List[str] = Field(default_factory=list)
    deliverables: List[str] = Field(default_factory=list)


class CoordinationRequirements(BaseModel):
    model_config = ConfigDict(frozen=True)

    communication_frequency: str = "daily"
    progress_reporting: str = "per_subtask"
    quality_gates: List[str] = Field(default_factory=list)
    shared_resources: List[str] = Field(default_factory=list)


class ComplexTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str
    description: str = ""
    required_agents: List[str]
    subtasks: List[Subtask]
    coordination_requirements: CoordinationRequirements = Field(default_factory=CoordinationRequirements)
    success_criteria: List[str] = Field(default_factory=list)
    deadline: Optional[datetime] = None

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class AgentAssignments(BaseModel):
    model_config = ConfigDict(frozen=True)

    by_subtask: Dict[str, str]
    by_agent: Dict[str, List[str]]


class DependencyManagement(BaseModel):
    model_config = ConfigDict(frozen=True)

    predecessors: Dict[str, List[str]]
    successors: Dict[str, List[str]]


class WorkflowOrchestration(BaseModel):
    model_config = ConfigDict(frozen=True)

    execution_sequence: List[str]
    dependency_management: DependencyManagement
    synchronization_points: List[str]
    execution_phases: List[List[str]]


class HandoffChannel(BaseModel):
    model_config = ConfigDict(frozen=True)

    sync_point: str
    channel: str
    participants: List[str]


class CommunicationPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    coordination_channel: str
    handoff_channels: List[HandoffChannel] = Field(default_factory=list)
    reporting_schedule: str


class MonitoringFramework(BaseModel):
    model_config = ConfigDict(frozen=True)

    checkpoints: List[str] = Field(default_factory=list)
    quality_gates: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)


class CoordinationPlan(BaseModel):
    """Immutable execution plan for one complex task."""
    model_config = ConfigDict(frozen=True)

    coordination_id: str
    task_id: str
    coordination_strategy: CoordinationStrategy
    agent_assignments: AgentAssignments
    workflow_orchestration: WorkflowOrchestration
    communication_plan: CommunicationPlan
    monitoring_framework: MonitoringFramework
    critical_path: List[str]
    estimated_total_duration: float
    deadline_at_risk: bool = False
    created_at: datetime


MONITORING_METRICS = ["subtask_completion_rate", "schedule_variance", "sync_point_wait_minutes"]


def find_cycle(subtasks: List[Subtask]) -> Optional[List[str]]:
    """
    Return the first dependency cycle found, as ``[a, b, ..., a]``.

    Subtasks are visited in declaration order; dependencies on unknown ids
    are ignored here and reported by validation afterwards.
    """
    graph: Dict[str, List[str]] = {}
    for subtask in subtasks:
        graph.setdefault(subtask.id, []).extend(subtask.dependencies)

    visited = set()
    stack: List[str] = []
    on_stack = set()

    def visit(node: str) -> Optional[List[str]]:
        visited.add(node)
        stack.append(node)
        on_stack.add(node)
        for dependency in graph.get(node, []):
            if dependency not in graph:
                continue
            if dependency in on_stack:
                return stack[stack.index(dependency):] + [dependency]
            if dependency not in visited:
                cycle = visit(dependency)
                if cycle:
                    return cycle
        stack.pop()
        on_stack.discard(node)
        return None

    for subtask in subtasks:
        if subtask.id not in visited:
            cycle = visit(subtask.id)
            if cycle:
                return cycle
    return None


class TaskCoordinator:
    """Builds coordination plans for complex multi-agent tasks."""

    def __init__(self, metrics: Optional[MetricsAggregator] = None):
        self.metrics = metrics or MetricsAggregator()
        self._logger = get_logger(__name__)

    def validate(self, task: ComplexTask) -> None:
        """
        Raises:
            CyclicDependencyError: If the dependency graph has a cycle (checked first)
            InvalidInputError: On a blank task id, no subtasks, duplicate ids or unknown dependencies
            UnassignedAgentMismatchError: If a subtask's agent is not a required agent
        """
        cycle = find_cycle(task.subtasks)
        if cycle:
            raise CyclicDependencyError(cycle)

        if not task.task_id.strip():
            raise InvalidInputError("Task must have a non-empty task_id")
        if not task.subtasks:
            raise InvalidInputError(f"Task {task.task_id!r} has no subtasks")

        seen = set()
        for subtask in task.subtasks:
            if subtask.id in seen:
                raise InvalidInputError(f"Duplicate subtask id: {subtask.id!r}")
            seen.add(subtask.id)

        for subtask in task.subtasks:
            unknown = [d for d in subtask.dependencies if d not in seen]
            if unknown:
                raise InvalidInputError(
                    f"Subtask {subtask.id!r} depends on unknown subtasks: {', '.join(unknown)}"
                )

        required = set(task.required_agents)
        for subtask in task.subtasks:
            if subtask.assigned_agent not in required:
                raise UnassignedAgentMismatchError(subtask.id, subtask.assigned_agent)

    def coordinate(self, task: ComplexTask) -> CoordinationPlan:
        """Validate ``task`` and build its coordination plan."""
        self.validate(task)

        index = {subtask.id: position for position, subtask in enumerate(task.subtasks)}
        by_id = {subtask.id: subtask for subtask in task.subtasks}

        predecessors = {s.id: list(dict.fromkeys(s.dependencies)) for s in task.subtasks}
        successors: Dict[str, List[str]] = {s.id: [] for s in task.subtasks}
        for subtask in task.subtasks:
            for dependency in predecessors[subtask.id]:
                successors[dependency].append(subtask.id)

        sequence = self._topological_order(task.subtasks, predecessors, successors, index)

        sync_points = [
            subtask_id for subtask_id in sequence
            if len(predecessors[subtask_id]) > 1 or len(successors[subtask_id]) > 1
        ]

        depth: Dict[str, int] = {}
        for subtask_id in sequence:
            depth[subtask_id] = 1 + max((depth[p] for p in predecessors[subtask_id]), default=-1)
        phases: List[List[str]] = [[] for _ in range(max(depth.values()) + 1)]
        for subtask in task.subtasks:
            phases[depth[subtask.id]].append(subtask.id)

        critical_path, total_duration = self._critical_path(sequence, predecessors, by_id, index)

        by_agent: Dict[str, List[str]] = {agent: [] for agent in task.required_agents}
        for subtask_id in sequence:
            by_agent[by_id[subtask_id].assigned_agent].append(subtask_id)

        deadline_at_risk = bool(
            task.deadline and utc_now() + timedelta(minutes=total_duration) > task.deadline
        )

        plan = CoordinationPlan(
            coordination_id=str(uuid.uuid4()),
            task_id=task.task_id,
            coordination_strategy=self._strategy(phases),
            agent_assignments=AgentAssignments(
                by_subtask={s.id: s.assigned_agent for s in task.subtasks},
                by_agent=by_agent,
            ),
            workflow_orchestration=WorkflowOrchestration(
                execution_sequence=sequence,
                dependency_management=DependencyManagement(
                    predecessors=predecessors,
                    successors=successors,
                ),
                synchronization_points=sync_points,
                execution_phases=phases,
            ),
            communication_plan=self._communication_plan(task, sync_points, predecessors, successors, by_id),
            monitoring_framework=MonitoringFramework(
                checkpoints=[f"sync:{subtask_id}" for subtask_id in sync_points] + [f"complete:{sequence[-1]}"],
                quality_gates=list(task.coordination_requirements.quality_gates or task.success_criteria),
                metrics=list(MONITORING_METRICS),
            ),
            critical_path=critical_path,
            estimated_total_duration=total_duration,
            deadline_at_risk=deadline_at_risk,
            created_at=utc_now(),
        )

        self.metrics.record_task_coordinated()

        self._logger.info(
            "Complex task coordinated",
            task_id=task.task_id,
            subtasks=len(sequence),
            phases=len(phases),
            synchronization_points=len(sync_points),
            strategy=plan.coordination_strategy.value,
            deadline_at_risk=deadline_at_risk,
        )

        return plan

    @staticmethod
    def _topological_order(
        subtasks: List[Subtask],
        predecessors: Dict[str, List[str]],
        successors: Dict[str, List[str]],
        index: Dict[str, int],
    ) -> List[str]:
        """Kahn's algorithm; among ready subtasks the earliest declared goes first."""
        remaining = {subtask_id: len(deps) for subtask_id, deps in predecessors.items()}
        ready = [index[s.id] for s in subtasks if remaining[s.id] == 0]
        heapq.heapify(ready)

        order = []
        while ready:
            subtask_id = subtasks[heapq.heappop(ready)].id
            order.append(subtask_id)
            for successor in successors[subtask_id]:
                remaining[successor] -= 1
                if remaining[successor] == 0:
                    heapq.heappush(ready, index[successor])
        return order

    @staticmethod
    def _critical_path(
        sequence: List[str],
        predecessors: Dict[str, List[str]],
        by_id: Dict[str, Subtask],
        index: Dict[str, int],
    ) -> Tuple[List[str], float]:
        finish: Dict[str, float] = {}
        previous: Dict[str, Optional[str]] = {}
        for subtask_id in sequence:
            best = None
            for predecessor in sorted(predecessors[subtask_id], key=index.__getitem__):
                if best is None or finish[predecessor] > finish[best]:
                    best = predecessor
            previous[subtask_id] = best
            start = finish[best] if best is not None else 0.0
            finish[subtask_id] = start + by_id[subtask_id].estimated_duration

        end = min(sequence, key=lambda s: (-finish[s], index[s]))
        path = []
        node: Optional[str] = end
        while node is not None:
            path.append(node)
            node = previous[node]
        path.reverse()
        return path, finish[end]

    @staticmethod
    def _strategy(phases: List[List[str]]) -> CoordinationStrategy:
        if all(len(phase) == 1 for phase in phases):
            return CoordinationStrategy.SEQUENTIAL
        if len(phases) == 1:
            return CoordinationStrategy.PARALLEL
        return CoordinationStrategy.HYBRID

    @staticmethod
    def _communication_plan(
        task: ComplexTask,
        sync_points: List[str],
        predecessors: Dict[str, List[str]],
        successors: Dict[str, List[str]],
        by_id: Dict[str, Subtask],
    ) -> CommunicationPlan:
        channels = []
        for subtask_id in sync_points:
            involved = predecessors[subtask_id] + [subtask_id] + successors[subtask_id]
            participants = list(dict.fromkeys(by_id[s].assigned_agent for s in involved))
            channels.append(HandoffChannel(
                sync_point=subtask_id,
                channel=f"{task.task_id}.sync.{subtask_id}",
                participants=participants,
            ))

        requirements = task.coordination_requirements
        return CommunicationPlan(
            coordination_channel=f"{task.task_id}.coordination",
            handoff_channels=channels,
            reporting_schedule=f"{requirements.communication_frequency}, {requirements.progress_reporting}",
        )
