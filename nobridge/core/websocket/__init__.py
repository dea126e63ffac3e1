"""
WebSocket layer relaying conversation messages, presence and channel status to browsers.

One realtime channel per conversation, shared by every browser watching it.
"""

from nobridge.core.websocket.hub import conversation_hub

__all__ = ["conversation_hub"]
