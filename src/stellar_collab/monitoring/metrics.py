"""
Metrics Aggregator.

One aggregator is owned by each engine and shared by its components.
Counters live behind a single lock so a snapshot never observes a torn
update, and are mirrored into a per-instance Prometheus registry for
export.
"""

import threading
from collections import defaultdict, deque
from typing import Dict, List, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from stellar_collab.core.logging import get_logger

logger = get_logger(__name__)

QUALITY_TREND_LENGTH = 50


class EngineMetrics(BaseModel):
    """Point-in-time view of the engine counters."""
    model_config = ConfigDict(frozen=True)

    total_collaborations_facilitated: int = 0
    successful_collaborations: int = 0
    average_collaboration_success_rate: float = 0.0
    collaboration_quality_trend: List[float] = Field(default_factory=list)

    conflicts_resolved: int = 0
    conflicts_escalated: int = 0
    forced_escalations: int = 0
    average_conflict_resolution_time: float = 0.0
    conflict_success_rates: Dict[str, float] = Field(default_factory=dict)

    negotiations_completed: int = 0
    negotiation_outcomes: Dict[str, int] = Field(default_factory=dict)

    complex_tasks_coordinated: int = 0

    broadcasts_sent: int = 0
    deliveries_confirmed: int = 0
    deliveries_failed: int = 0


class MetricsAggregator:
    """Thread-safe counters for every engine operation."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()

        self._collaborations = 0
        self._successful_collaborations = 0
        self._quality_scores: deque = deque(maxlen=QUALITY_TREND_LENGTH)

        self._conflict_attempts: Dict[str, int] = defaultdict(int)
        self._conflict_successes: Dict[str, int] = defaultdict(int)
        self._conflicts_resolved = 0
        self._conflicts_escalated = 0
        self._forced_escalations = 0
        self._conflict_duration_total = 0.0

        self._negotiation_outcomes: Dict[str, int] = defaultdict(int)
        self._tasks_coordinated = 0

        self._broadcasts = 0
        self._deliveries_confirmed = 0
        self._deliveries_failed = 0

        self._setup_prometheus_metrics()
        logger.debug("MetricsAggregator initialized", trend_length=QUALITY_TREND_LENGTH)

    def _setup_prometheus_metrics(self) -> None:
        """Setup Prometheus metrics collectors."""
        self.collaborations_counter = Counter(
            'stellar_collab_collaborations_total',
            'Collaboration plans produced',
            ['result'],
            registry=self.registry
        )

        self.collaboration_quality = Gauge(
            'stellar_collab_collaboration_quality',
            'Quality score of the most recent collaboration plan',
            registry=self.registry
        )

        self.conflicts_counter = Counter(
            'stellar_collab_conflicts_total',
            'Conflicts handled',
            ['conflict_type', 'status'],
            registry=self.registry
        )

        self.conflict_duration = Histogram(
            'stellar_collab_conflict_resolution_seconds',
            'Time spent producing a conflict resolution',
            buckets=[0.01, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0],
            registry=self.registry
        )

        self.negotiations_counter = Counter(
            'stellar_collab_negotiations_total',
            'Negotiations finished',
            ['outcome'],
            registry=self.registry
        )

        self.negotiation_rounds = Histogram(
            'stellar_collab_negotiation_rounds',
            'Rounds played per negotiation',
            buckets=[1, 2, 3, 5, 8, 13],
            registry=self.registry
        )

        self.tasks_counter = Counter(
            'stellar_collab_tasks_coordinated_total',
            'Complex tasks coordinated',
            registry=self.registry
        )

        self.broadcasts_counter = Counter(
            'stellar_collab_broadcasts_total',
            'Broadcasts dispatched',
            registry=self.registry
        )

        self.deliveries_counter = Counter(
            'stellar_collab_deliveries_total',
            'Per-recipient broadcast outcomes',
            ['status'],
            registry=self.registry
        )

    def record_collaboration(self, success: bool, quality_score: float) -> None:
        with self._lock:
            self._collaborations += 1
            if success:
                self._successful_collaborations += 1
            self._quality_scores.append(quality_score)

        self.collaborations_counter.labels(result="success" if success else "below_quality").inc()
        self.collaboration_quality.set(quality_score)

    def record_conflict(
        self,
        conflict_type: str,
        resolved: bool,
        duration_seconds: float,
        forced: bool = False,
    ) -> None:
        """
        Record one conflict resolution.

        A non-escalated resolution counts as a success for its type. A
        ``forced`` escalation, one the rules demanded whatever the odds, is
        counted as escalated but kept out of the per-type success history.
        """
        with self._lock:
            if forced:
                self._forced_escalations += 1
            else:
                self._conflict_attempts[conflict_type] += 1
            if resolved:
                self._conflict_successes[conflict_type] += 1
                self._conflicts_resolved += 1
            else:
                self._conflicts_escalated += 1
            self._conflict_duration_total += duration_seconds

        if resolved:
            status = "resolved"
        elif forced:
            status = "forced_escalation"
        else:
            status = "escalated"
        self.conflicts_counter.labels(conflict_type=conflict_type, status=status).inc()
        self.conflict_duration.observe(duration_seconds)

    def conflict_success_rate(self, conflict_type: str) -> Optional[float]:
        """Historical success rate for a conflict type, ``None`` without history."""
        with self._lock:
            attempts = self._conflict_attempts.get(conflict_type, 0)
            if attempts == 0:
                return None
            return self._conflict_successes.get(conflict_type, 0) / attempts

    def record_negotiation(self, outcome: str, rounds: int) -> None:
        with self._lock:
            self._negotiation_outcomes[outcome] += 1

        self.negotiations_counter.labels(outcome=outcome).inc()
        self.negotiation_rounds.observe(rounds)

    def record_task_coordinated(self) -> None:
        with self._lock:
            self._tasks_coordinated += 1

        self.tasks_counter.inc()

    def record_broadcast(self, confirmed: int, failed: int) -> None:
        with self._lock:
            self._broadcasts += 1
            self._deliveries_confirmed += confirmed
            self._deliveries_failed += failed

        self.broadcasts_counter.inc()
        if confirmed:
            self.deliveries_counter.labels(status="confirmed").inc(confirmed)
        if failed:
            self.deliveries_counter.labels(status="failed").inc(failed)

    def snapshot(self) -> EngineMetrics:
        """Consistent copy of every counter, taken under the lock."""
        with self._lock:
            handled = self._conflicts_resolved + self._conflicts_escalated
            return EngineMetrics(
                total_collaborations_facilitated=self._collaborations,
                successful_collaborations=self._successful_collaborations,
                average_collaboration_success_rate=(
                    self._successful_collaborations / self._collaborations
                    if self._collaborations else 0.0
                ),
                collaboration_quality_trend=list(self._quality_scores),
                conflicts_resolved=self._conflicts_resolved,
                conflicts_escalated=self._conflicts_escalated,
                forced_escalations=self._forced_escalations,
                average_conflict_resolution_time=(
                    self._conflict_duration_total / handled if handled else 0.0
                ),
                conflict_success_rates={
                    conflict_type: self._conflict_successes.get(conflict_type, 0) / attempts
                    for conflict_type, attempts in sorted(self._conflict_attempts.items())
                },
                negotiations_completed=sum(self._negotiation_outcomes.values()),
                negotiation_outcomes=dict(sorted(self._negotiation_outcomes.items())),
                complex_tasks_coordinated=self._tasks_coordinated,
                broadcasts_sent=self._broadcasts,
                deliveries_confirmed=self._deliveries_confirmed,
                deliveries_failed=self._deliveries_failed,
            )

    def export_prometheus(self) -> str:
        """Get current metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')
