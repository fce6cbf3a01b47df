"""
Unit tests for the metrics aggregator.
"""

import threading

import pytest

from stellar_collab.monitoring.metrics import QUALITY_TREND_LENGTH, MetricsAggregator


class TestMetricsAggregator:
    """Test counters, derived rates and export."""

    def test_empty_snapshot(self, metrics):
        snapshot = metrics.snapshot()

        assert snapshot.total_collaborations_facilitated == 0
        assert snapshot.average_collaboration_success_rate == 0.0
        assert snapshot.average_conflict_resolution_time == 0.0
        assert snapshot.conflict_success_rates == {}
        assert snapshot.negotiations_completed == 0

    def test_snapshot_is_idempotent(self, metrics):
        metrics.record_collaboration(True, 0.9)
        metrics.record_conflict("resource_competition", True, 0.2)

        assert metrics.snapshot() == metrics.snapshot()

    def test_collaboration_rates(self, metrics):
        metrics.record_collaboration(True, 0.9)
        metrics.record_collaboration(False, 0.4)
        metrics.record_collaboration(True, 1.0)

        snapshot = metrics.snapshot()
        assert snapshot.total_collaborations_facilitated == 3
        assert snapshot.successful_collaborations == 2
        assert snapshot.average_collaboration_success_rate == pytest.approx(2 / 3)
        assert snapshot.collaboration_quality_trend == [0.9, 0.4, 1.0]

    def test_quality_trend_is_bounded(self, metrics):
        for index in range(QUALITY_TREND_LENGTH + 10):
            metrics.record_collaboration(True, index / 100)

        trend = metrics.snapshot().collaboration_quality_trend
        assert len(trend) == QUALITY_TREND_LENGTH
        assert trend[0] == pytest.approx(0.10)

    def test_conflict_rates(self, metrics):
        assert metrics.conflict_success_rate("priority_disagreement") is None

        metrics.record_conflict("priority_disagreement", True, 1.0)
        metrics.record_conflict("priority_disagreement", False, 3.0)
        metrics.record_conflict("resource_competition", True, 2.0)

        snapshot = metrics.snapshot()
        assert metrics.conflict_success_rate("priority_disagreement") == 0.5
        assert snapshot.conflict_success_rates == {"priority_disagreement": 0.5, "resource_competition": 1.0}
        assert snapshot.conflicts_resolved == 2
        assert snapshot.conflicts_escalated == 1
        assert snapshot.average_conflict_resolution_time == pytest.approx(2.0)

    def test_forced_escalations_do_not_change_rates(self, metrics):
        metrics.record_conflict("fundamental_disagreement", True, 1.0)
        metrics.record_conflict("fundamental_disagreement", False, 1.0, forced=True)

        snapshot = metrics.snapshot()
        assert metrics.conflict_success_rate("fundamental_disagreement") == 1.0
        assert snapshot.conflicts_escalated == 1
        assert snapshot.forced_escalations == 1
        assert 'status="forced_escalation"' in metrics.export_prometheus()

    def test_negotiation_broadcast_and_task_counters(self, metrics):
        metrics.record_negotiation("agreement", 2)
        metrics.record_negotiation("deadlock", 3)
        metrics.record_negotiation("agreement", 1)
        metrics.record_task_coordinated()
        metrics.record_broadcast(confirmed=4, failed=1)

        snapshot = metrics.snapshot()
        assert snapshot.negotiations_completed == 3
        assert snapshot.negotiation_outcomes == {"agreement": 2, "deadlock": 1}
        assert snapshot.complex_tasks_coordinated == 1
        assert (snapshot.broadcasts_sent, snapshot.deliveries_confirmed, snapshot.deliveries_failed) == (1, 4, 1)

    def test_prometheus_export(self, metrics):
        metrics.record_collaboration(True, 0.85)
        metrics.record_negotiation("timeout", 5)

        exported = metrics.export_prometheus()

        assert 'stellar_collab_collaborations_total{result="success"} 1.0' in exported
        assert "stellar_collab_collaboration_quality 0.85" in exported
        assert 'stellar_collab_negotiations_total{outcome="timeout"} 1.0' in exported

    def test_instances_do_not_share_registries(self):
        first, second = MetricsAggregator(), MetricsAggregator()
        first.record_task_coordinated()

        assert "stellar_collab_tasks_coordinated_total 1.0" in first.export_prometheus()
        assert "stellar_collab_tasks_coordinated_total 0.0" in second.export_prometheus()

    def test_concurrent_updates(self, metrics):
        def worker():
            for _ in range(200):
                metrics.record_conflict("resource_competition", True, 0.01)
                metrics.record_task_coordinated()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = metrics.snapshot()
        assert snapshot.conflicts_resolved == 1600
        assert snapshot.complex_tasks_coordinated == 1600
