"""
Exponential reconnect backoff: 1s, 2s, 4s, 8s, 16s, then capped at 30s.
"""
from typing import Optional

from nobridge.core.config import settings


def _cap_exponent(base_ms: int, max_ms: int) -> int:
    """Smallest exponent whose delay already reaches max_ms."""
    exponent = 0
    while base_ms * (2 ** exponent) < max_ms:
        exponent += 1
    return exponent


def compute_backoff_delay(retry_count: int, base_ms: Optional[int] = None, max_ms: Optional[int] = None) -> int:
    """
    Delay in milliseconds before reconnect attempt number retry_count (0-based).

    The exponent is clamped before exponentiation so counters of long-lived
    connections never produce huge intermediate values.
    """
    if retry_count < 0:
        raise ValueError(f"retry_count must be >= 0, got {retry_count}")
    base_ms = settings.realtime_reconnect_base_ms if base_ms is None else base_ms
    max_ms = settings.realtime_reconnect_max_ms if max_ms is None else max_ms
    if base_ms <= 0 or max_ms < base_ms:
        raise ValueError(f"invalid backoff bounds base_ms={base_ms} max_ms={max_ms}")
    exponent = min(retry_count, _cap_exponent(base_ms, max_ms))
    return min(base_ms * (2 ** exponent), max_ms)
