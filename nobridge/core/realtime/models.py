"""
Realtime channel types: handler set, per-conversation registration, message rows, snapshots.

Contract:
- status: SUBSCRIBED | CHANNEL_ERROR | TIMED_OUT | CLOSED (other values forwarded only)
- connection state: connecting | connected | disconnected
- message: one row of the messages table as carried by an INSERT change event
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel

ConnectionState = Literal["connecting", "connected", "disconnected"]

CONNECTING: ConnectionState = "connecting"
CONNECTED: ConnectionState = "connected"
DISCONNECTED: ConnectionState = "disconnected"

# Statuses reported by the transport for a single channel
SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
TIMED_OUT = "TIMED_OUT"
CLOSED = "CLOSED"

FAILURE_STATUSES = frozenset({CHANNEL_ERROR, TIMED_OUT, CLOSED})

MessageCallback = Callable[[Dict[str, Any]], Any]
PresenceCallback = Callable[[Any], Any]
StatusCallback = Callable[[str], Any]


@dataclass
class ChannelHandlers:
    """Callbacks supplied by the subscriber of one conversation."""
    on_message: MessageCallback
    on_status_change: StatusCallback
    on_presence: Optional[PresenceCallback] = None


@dataclass
class ChannelRegistration:
    """Manager-owned record of a conversation's handlers and retry state."""
    conversation_id: str
    handlers: ChannelHandlers
    retry_count: int = 0
    last_connected_at: float = field(default_factory=time.time)
    state: ConnectionState = CONNECTING


class ConversationMessage(BaseModel):
    """Row inserted into the messages table."""
    id: str
    conversation_id: str
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    content_text: Optional[str] = None
    message_status: Optional[str] = None
    timestamp: Optional[str] = None
    is_system_message: bool = False
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: Optional[str] = None
    model_config = {"extra": "ignore"}


def message_from_payload(payload: Dict[str, Any]) -> ConversationMessage:
    """
    Extract the inserted row from a change payload.

    Accepts the raw row, {"new": row}, or {"data": {"record": row}} (supabase realtime-py shape).
    """
    row = payload
    if isinstance(payload.get("data"), dict):
        row = payload["data"].get("record") or payload["data"]
    elif isinstance(payload.get("new"), dict):
        row = payload["new"]
    elif isinstance(payload.get("record"), dict):
        row = payload["record"]
    return ConversationMessage.model_validate(row)


class ChannelSnapshot(BaseModel):
    """Diagnostics view of one registration."""
    conversation_id: str
    state: ConnectionState
    retry_count: int
    last_connected_at: float
    channel_open: bool
    retry_pending: bool


class ManagerSnapshot(BaseModel):
    """Diagnostics view of the whole manager."""
    connection_state: ConnectionState
    active_channels: int
    channels: List[ChannelSnapshot] = []
