"""Observability: in-memory metrics for realtime channels."""
from nobridge.core.observability.metrics import RealtimeMetrics, get_metrics

__all__ = ["RealtimeMetrics", "get_metrics"]
