"""
Realtime messaging channels: one supervised subscription per conversation.

Reconnects with exponential backoff (1s doubling, capped at 30s) on
CHANNEL_ERROR, TIMED_OUT or CLOSED; resets on SUBSCRIBED.
"""
from nobridge.core.realtime.manager import (
    ChannelConnectionManager,
    get_channel_manager,
    init_channel_manager,
    is_channel_manager_initialized,
    shutdown_channel_manager,
)
from nobridge.core.realtime.models import ChannelHandlers, ConversationMessage
from nobridge.core.realtime.transport import ChannelHandle, RealtimeTransport, SupabaseRealtimeTransport
from nobridge.core.realtime.validation import ChannelSubscriptionError

__all__ = [
    "ChannelConnectionManager",
    "get_channel_manager",
    "init_channel_manager",
    "is_channel_manager_initialized",
    "shutdown_channel_manager",
    "ChannelHandlers",
    "ConversationMessage",
    "ChannelHandle",
    "RealtimeTransport",
    "SupabaseRealtimeTransport",
    "ChannelSubscriptionError",
]
