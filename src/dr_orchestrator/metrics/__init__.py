"""Metrics sink and health/metrics HTTP endpoint.

Usage:
    from dr_orchestrator.metrics import HealthSummary, MetricsSink
"""

from dr_orchestrator.metrics.sink import HealthSummary, MetricsSink

__all__ = ["HealthSummary", "MetricsSink"]
