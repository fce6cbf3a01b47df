"""
Collaboration Engine.

Façade over the five coordination operations. The engine owns one
``MetricsAggregator`` and one slot semaphore shared by collaborations and
negotiations, the two operations that hold multi-step state over time.
Every operation accepts a timeout in seconds; the defaults come from
``EngineSettings``.
"""

import asyncio
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from stellar_collab.agents.advisor import Advisor, AdvisorClient
from stellar_collab.agents.communication import MessageBus, MessageTransport, SystemMessage
from stellar_collab.agents.registry import AgentRegistry
from stellar_collab.config.settings import EngineSettings, get_settings
from stellar_collab.core.exceptions import OperationTimeoutError
from stellar_collab.core.logging import (
    generate_operation_id,
    get_logger,
    log_execution_time,
    operation_context,
)
from stellar_collab.monitoring.metrics import EngineMetrics, MetricsAggregator
from stellar_collab.orchestration.broadcast import BroadcastDispatcher, BroadcastResult
from stellar_collab.orchestration.conflicts import AgentConflict, ConflictResolution, ConflictResolver
from stellar_collab.orchestration.coordination import ComplexTask, CoordinationPlan, TaskCoordinator
from stellar_collab.orchestration.facilitator import CollaborationFacilitator, CollaborationPlan
from stellar_collab.orchestration.goals import CollaborationGoal
from stellar_collab.orchestration.negotiation import (
    AgentNegotiation,
    NegotiationFacilitator,
    NegotiationParticipant,
    NegotiationResult,
)


class CollaborationEngine:
    """
    Multi-agent collaboration and coordination engine.

    Entry point for orchestrating callers:
    - facilitate_collaboration: goal and agents to a collaboration plan
    - resolve_agent_conflicts: reported conflict to a resolution or escalation
    - coordinate_complex_tasks: dependent subtasks to an execution plan
    - broadcast_message: system message fan-out with acknowledgement tracking
    - facilitate_negotiation: bounded multi-round negotiation
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        registry: Optional[AgentRegistry] = None,
        advisor: Optional[Advisor] = None,
        transport: Optional[MessageTransport] = None,
        metrics: Optional[MetricsAggregator] = None,
    ):
        """
        Initialize the engine.

        Args:
            settings: Engine tuning options (defaults to the process settings)
            registry: Declared agent capabilities
            advisor: Optional external advisor used for elaborating plans and alternatives
            transport: Message transport used for broadcasts (defaults to an in-memory bus)
            metrics: Metrics aggregator (defaults to a fresh one owned by this engine)
        """
        self.settings = settings or get_settings().engine
        self.registry = registry or AgentRegistry()
        self.metrics = metrics or MetricsAggregator()
        self.transport = transport or MessageBus()
        self.advisor = AdvisorClient(
            advisor,
            timeout_seconds=self.settings.advisor_timeout_seconds,
            max_retries=self.settings.advisor_max_retries,
            backoff_seconds=self.settings.advisor_backoff_seconds,
        )

        self.facilitator = CollaborationFacilitator(self.settings, self.registry, self.metrics, self.advisor)
        self.conflict_resolver = ConflictResolver(self.settings, self.metrics, self.advisor)
        self.task_coordinator = TaskCoordinator(self.metrics)
        self.dispatcher = BroadcastDispatcher(self.transport, self.settings, self.metrics)
        self.negotiator = NegotiationFacilitator(self.settings, self.metrics, self.advisor)

        self._slots = asyncio.Semaphore(self.settings.max_concurrent_collaborations)
        self._logger = get_logger(__name__)

    @log_execution_time("facilitate_collaboration")
    async def facilitate_collaboration(
        self,
        agent_ids: List[str],
        goal: CollaborationGoal,
        timeout: Optional[float] = None,
    ) -> CollaborationPlan:
        """
        Build a collaboration plan for ``agent_ids`` working on ``goal``.

        Raises:
            InvalidGoalError: On empty or duplicate agents or an incomplete goal
            OperationTimeoutError: If no collaboration slot frees up before the timeout
        """
        self.facilitator.validate(agent_ids, goal)

        with self._operation("facilitate_collaboration"):
            loop = asyncio.get_running_loop()
            deadline = loop.time() + (
                timeout if timeout is not None else self.settings.collaboration_timeout_seconds
            )

            if not await self._acquire_slot(deadline):
                raise OperationTimeoutError(
                    f"No collaboration slot available for goal {goal.id!r} before the deadline"
                )
            try:
                return await self.facilitator.facilitate(agent_ids, goal, deadline=deadline)
            finally:
                self._slots.release()

    @log_execution_time("resolve_agent_conflicts")
    async def resolve_agent_conflicts(
        self,
        conflict: AgentConflict,
        timeout: Optional[float] = None,
    ) -> ConflictResolution:
        """Resolve ``conflict``, escalating it when it cannot be settled at its level."""
        self.conflict_resolver.validate(conflict)

        with self._operation("resolve_agent_conflicts"):
            loop = asyncio.get_running_loop()
            deadline = loop.time() + (
                timeout if timeout is not None else self.settings.conflict_resolution_timeout_seconds
            )
            return await self.conflict_resolver.resolve(conflict, deadline=deadline)

    @log_execution_time("coordinate_complex_tasks")
    async def coordinate_complex_tasks(self, task: ComplexTask) -> CoordinationPlan:
        """
        Raises:
            CyclicDependencyError: If the subtasks depend on each other in a cycle
            UnassignedAgentMismatchError: If a subtask's agent is not a required agent
        """
        with self._operation("coordinate_complex_tasks"):
            return self.task_coordinator.coordinate(task)

    @log_execution_time("broadcast_message")
    async def broadcast_message(
        self,
        message: SystemMessage,
        timeout: Optional[float] = None,
    ) -> BroadcastResult:
        """
        Deliver ``message`` to its recipients.

        The message expiration always bounds delivery; ``timeout`` can only
        shorten it.
        """
        with self._operation("broadcast_message"):
            deadline = None
            if timeout is not None:
                deadline = asyncio.get_running_loop().time() + timeout
            return await self.dispatcher.dispatch(message, deadline=deadline)

    @log_execution_time("facilitate_negotiation")
    async def facilitate_negotiation(
        self,
        negotiation: AgentNegotiation,
        participants: Optional[Dict[str, NegotiationParticipant]] = None,
        timeout: Optional[float] = None,
    ) -> NegotiationResult:
        """
        Run ``negotiation`` to agreement, deadlock, timeout or escalation.

        A negotiation that cannot get a slot before its deadline ends as a
        timeout without any rounds.
        """
        self.negotiator.validate(negotiation)

        with self._operation("facilitate_negotiation"):
            loop = asyncio.get_running_loop()
            deadline = loop.time() + (
                timeout if timeout is not None else self.settings.negotiation_timeout_seconds
            )

            if not await self._acquire_slot(deadline):
                self._logger.warning(
                    "No negotiation slot available before the deadline",
                    negotiation_id=negotiation.negotiation_id,
                )
                return await self.negotiator.expire(negotiation, deadline=deadline)
            try:
                return await self.negotiator.negotiate(negotiation, participants, deadline=deadline)
            finally:
                self._slots.release()

    def get_metrics(self) -> EngineMetrics:
        """Consistent snapshot of the engine counters."""
        return self.metrics.snapshot()

    def export_metrics(self) -> str:
        """Engine counters in Prometheus exposition format."""
        return self.metrics.export_prometheus()

    async def _acquire_slot(self, deadline: float) -> bool:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return False
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=remaining)
        except asyncio.TimeoutError:
            return False
        return True

    @contextmanager
    def _operation(self, operation: str) -> Iterator[None]:
        operation_id = generate_operation_id()
        with operation_context(operation_id=operation_id):
            self._logger.debug("Operation started", operation=operation, operation_id=operation_id)
            yield
