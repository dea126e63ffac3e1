"""
Realtime diagnostics endpoints.

Expose the channel manager's connection state so clients can show a
"reconnecting" indicator, plus in-memory channel metrics.
"""
from fastapi import APIRouter, HTTPException, status

from nobridge.core.observability.metrics import get_metrics
from nobridge.core.realtime.manager import get_channel_manager, is_channel_manager_initialized
from nobridge.core.realtime.models import ManagerSnapshot

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.get("/status", response_model=ManagerSnapshot)
def realtime_status() -> ManagerSnapshot:
    """
    Connection state and per-conversation channel state.

    Returns 503 when realtime is not configured (no Supabase credentials).
    """
    if not is_channel_manager_initialized():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime is not configured",
        )
    return get_channel_manager().snapshot()


@router.get("/metrics")
def realtime_metrics() -> dict:
    """Counters for subscriptions, channel churn, reconnects and statuses."""
    return get_metrics().get_stats()
