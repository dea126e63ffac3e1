"""
Simple in-memory metrics for realtime channels: subscriptions, channel churn, reconnects, statuses.
"""
import logging
from typing import Dict

logger = logging.getLogger("nobridge.realtime.metrics")


class RealtimeMetrics:
    """In-memory counters for the channel connection manager."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._subscribes = 0
        self._unsubscribes = 0
        self._channels_opened = 0
        self._channels_closed = 0
        self._reconnects_scheduled = 0
        self._reconnect_attempts = 0
        self._handler_errors = 0
        self._statuses: Dict[str, int] = {}

    def record_subscribe(self) -> None:
        self._subscribes += 1

    def record_unsubscribe(self) -> None:
        self._unsubscribes += 1

    def record_channel_opened(self) -> None:
        self._channels_opened += 1

    def record_channel_closed(self) -> None:
        self._channels_closed += 1

    def record_reconnect_scheduled(self, delay_ms: int) -> None:
        self._reconnects_scheduled += 1
        logger.debug("reconnect_scheduled delay_ms=%s total=%s", delay_ms, self._reconnects_scheduled)

    def record_reconnect_attempt(self) -> None:
        self._reconnect_attempts += 1

    def record_status(self, status: str) -> None:
        self._statuses[status] = self._statuses.get(status, 0) + 1

    def record_handler_error(self) -> None:
        self._handler_errors += 1

    def get_stats(self) -> Dict[str, object]:
        return {
            "subscribes": self._subscribes,
            "unsubscribes": self._unsubscribes,
            "channels_opened": self._channels_opened,
            "channels_closed": self._channels_closed,
            "reconnects_scheduled": self._reconnects_scheduled,
            "reconnect_attempts": self._reconnect_attempts,
            "handler_errors": self._handler_errors,
            "statuses": dict(self._statuses),
        }


_metrics = RealtimeMetrics()


def get_metrics() -> RealtimeMetrics:
    return _metrics
