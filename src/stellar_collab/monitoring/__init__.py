"""
Monitoring module for engine counters and Prometheus export.
"""

from stellar_collab.monitoring.metrics import EngineMetrics, MetricsAggregator

__all__ = ["EngineMetrics", "MetricsAggregator"]
