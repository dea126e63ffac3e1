"""
Conversation hub: fan out one realtime channel per conversation to every browser WebSocket watching it.

The channel manager keeps exactly one subscription per conversation id, so
browsers never subscribe directly; the hub subscribes on the first watcher and
unsubscribes when the last one leaves.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from nobridge.core.realtime.manager import (
    ChannelConnectionManager,
    get_channel_manager,
    is_channel_manager_initialized,
)
from nobridge.core.realtime.models import ChannelHandlers, message_from_payload
from nobridge.core.realtime.validation import validate_conversation_id

logger = logging.getLogger(__name__)

# Max JSON frame size (bytes)
MAX_FRAME_SIZE = 64 * 1024


class ConversationHub:
    """Maps conversation_id to the set of WebSockets watching it."""

    def __init__(self, manager: Optional[ChannelConnectionManager] = None) -> None:
        self._manager = manager
        self._watchers: Dict[str, Set[Any]] = defaultdict(set)
        self._lock = asyncio.Lock()

    @property
    def manager(self) -> ChannelConnectionManager:
        return self._manager or get_channel_manager()

    def _handlers(self, conversation_id: str) -> ChannelHandlers:
        return ChannelHandlers(
            on_message=lambda payload: self._relay_message(conversation_id, payload),
            on_status_change=lambda status: self._relay_status(conversation_id, status),
            on_presence=lambda payload: self.broadcast(
                conversation_id,
                {"type": "presence", "conversation_id": conversation_id, "presence": payload},
            ),
        )

    async def watch(self, conversation_id: str, websocket: Any) -> None:
        """
        Add websocket as watcher. Subscribes the conversation for the first watcher,
        or again when the current manager has no registration for it (re-initialized).
        """
        validate_conversation_id(conversation_id)
        async with self._lock:
            watchers = self._watchers.get(conversation_id)
            if not watchers or self.manager.get_channel_state(conversation_id) is None:
                self.manager.subscribe(conversation_id, self._handlers(conversation_id))
            self._watchers[conversation_id].add(websocket)
            logger.info(
                "WebSocket watching conversation %s (watchers=%s)",
                conversation_id,
                len(self._watchers[conversation_id]),
            )

    async def unwatch(self, conversation_id: str, websocket: Any) -> None:
        """Remove websocket as watcher; unsubscribes when the last watcher leaves."""
        validate_conversation_id(conversation_id)
        async with self._lock:
            self._discard(conversation_id, websocket)

    async def unwatch_all(self, websocket: Any) -> None:
        """Remove websocket from every conversation it watches."""
        async with self._lock:
            for conversation_id in [cid for cid, ws in self._watchers.items() if websocket in ws]:
                self._discard(conversation_id, websocket)

    def reset(self) -> None:
        """Forget every watcher. Used at shutdown, after the manager has released all channels."""
        self._watchers.clear()

    def _discard(self, conversation_id: str, websocket: Any) -> None:
        watchers = self._watchers.get(conversation_id)
        if not watchers or websocket not in watchers:
            return
        watchers.discard(websocket)
        if not watchers:
            del self._watchers[conversation_id]
            if self._manager is not None or is_channel_manager_initialized():
                self.manager.unsubscribe(conversation_id)
            logger.info("Last watcher left conversation %s", conversation_id)

    def watched_by(self, websocket: Any) -> List[str]:
        return sorted(cid for cid, ws in self._watchers.items() if websocket in ws)

    def watcher_count(self, conversation_id: str) -> int:
        return len(self._watchers.get(conversation_id, ()))

    async def broadcast(self, conversation_id: str, obj: Dict[str, Any]) -> int:
        """Send JSON-serializable object to every watcher. Returns number of successful sends."""
        async with self._lock:
            targets = list(self._watchers.get(conversation_id, ()))
        sent = 0
        for ws in targets:
            try:
                await ws.send_json(obj)
                sent += 1
            except Exception as e:
                logger.warning("Send to watcher of %s failed: %s", conversation_id, e)
                async with self._lock:
                    self._discard(conversation_id, ws)
        return sent

    async def _relay_message(self, conversation_id: str, payload: Dict[str, Any]) -> None:
        try:
            message = message_from_payload(payload).model_dump(mode="json")
        except ValidationError as e:
            logger.warning("Unexpected message payload for %s: %s", conversation_id, e)
            return
        await self.broadcast(conversation_id, {"type": "message", "conversation_id": conversation_id, "message": message})

    async def _relay_status(self, conversation_id: str, status: str) -> None:
        await self.broadcast(
            conversation_id,
            {
                "type": "status",
                "conversation_id": conversation_id,
                "status": status,
                "connection_state": self.manager.get_channel_state(conversation_id) or "disconnected",
            },
        )


conversation_hub = ConversationHub()
