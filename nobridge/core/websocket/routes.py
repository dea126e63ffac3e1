"""
WebSocket route: /ws/conversations. Accept, then watch/unwatch conversations until disconnect.

Client frames:
- {"type": "watch", "conversation_id": "..."}
- {"type": "unwatch", "conversation_id": "..."}
- {"type": "ping"}
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from nobridge.core.realtime.manager import is_channel_manager_initialized
from nobridge.core.realtime.validation import ChannelSubscriptionError
from nobridge.core.websocket.hub import MAX_FRAME_SIZE, ConversationHub, conversation_hub

logger = logging.getLogger(__name__)


async def handle_frame(websocket: Any, data: Dict[str, Any], hub: ConversationHub) -> Optional[str]:
    """Apply one client frame. Returns an error string for the client, or None."""
    kind = data.get("type")
    if kind == "ping":
        await websocket.send_json({"type": "pong"})
        return None
    if kind in ("watch", "unwatch"):
        conversation_id = data.get("conversation_id")
        try:
            if kind == "watch":
                await hub.watch(conversation_id, websocket)
            else:
                await hub.unwatch(conversation_id, websocket)
        except ChannelSubscriptionError as e:
            return str(e)
        await websocket.send_json({"type": f"{kind}ed", "conversation_id": conversation_id})
        return None
    return f"Unknown frame type: {kind!r}"


async def websocket_endpoint(websocket: WebSocket) -> None:
    """Accept WebSocket, relay watched conversations, release them on disconnect."""
    if not is_channel_manager_initialized():
        await websocket.close(code=4003, reason="realtime_unavailable")
        return
    await websocket.accept()
    hub = conversation_hub
    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            if len(raw) > MAX_FRAME_SIZE:
                await websocket.send_json({"type": "error", "error": "Frame too large"})
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "error": "Invalid JSON"})
                continue
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "error": "Frame must be a JSON object"})
                continue
            err = await handle_frame(websocket, data, hub)
            if err:
                await websocket.send_json({"type": "error", "error": err})
    finally:
        await hub.unwatch_all(websocket)
        logger.info("WebSocket closed; released conversations")
