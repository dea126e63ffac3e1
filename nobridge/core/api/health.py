"""
Health check endpoint.

Returns service status and whether realtime channels are available.
"""
from fastapi import APIRouter
from datetime import datetime, timezone

from nobridge.core.realtime.manager import is_channel_manager_initialized

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health():
    """
    Health check endpoint.

    Returns:
        Service status and realtime availability
    """
    return {
        "status": "ok",
        "service": "nobridge-realtime",
        "realtime": is_channel_manager_initialized(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
