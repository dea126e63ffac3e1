"""
Publish/subscribe transport used by the channel manager.

Defines the minimal channel interface the manager relies on and a Supabase
Realtime implementation of it. The manager's API is synchronous, so the
Supabase adapter schedules the client's coroutines as event-loop tasks and
reports their failures as channel statuses instead of raising.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Set

from nobridge.core.realtime.models import CHANNEL_ERROR

logger = logging.getLogger(__name__)


class ChannelHandle(ABC):
    """Opaque handle to one open realtime subscription."""

    @abstractmethod
    def on_insert(
        self,
        schema: str,
        table: str,
        filter: str,
        callback: Callable[[Dict[str, Any]], None],
    ) -> "ChannelHandle":
        """Deliver row INSERT events matching filter to callback."""
        pass

    @abstractmethod
    def on_presence_sync(self, callback: Callable[[Any], None]) -> "ChannelHandle":
        """Deliver presence sync events to callback."""
        pass

    @abstractmethod
    def subscribe(self, status_callback: Callable[[str], None]) -> "ChannelHandle":
        """
        Start the subscription. Returns immediately; connection progress is
        reported through status_callback (SUBSCRIBED, CHANNEL_ERROR, ...).
        """
        pass


class RealtimeTransport(ABC):
    """Factory and owner of channel handles."""

    @abstractmethod
    def open_channel(self, name: str, config: Dict[str, Any]) -> ChannelHandle:
        pass

    @abstractmethod
    def close_channel(self, handle: ChannelHandle) -> None:
        """Release transport resources for one handle. Must not raise."""
        pass

    async def aclose(self) -> None:
        """Wait for outstanding releases and close the underlying connection. Must not raise."""
        pass


def _status_name(state: Any) -> str:
    """RealtimeSubscribeStates enum or plain string -> status string."""
    value = getattr(state, "value", state)
    return str(value)


class SupabaseChannelHandle(ChannelHandle):
    """Wraps a supabase AsyncRealtimeChannel."""

    def __init__(self, channel: Any, loop: asyncio.AbstractEventLoop) -> None:
        self._channel = channel
        self._loop = loop
        self._subscribe_task: Optional[asyncio.Task] = None

    @property
    def channel(self) -> Any:
        return self._channel

    def on_insert(self, schema, table, filter, callback):
        self._channel.on_postgres_changes(
            "INSERT",
            callback=callback,
            schema=schema,
            table=table,
            filter=filter,
        )
        return self

    def on_presence_sync(self, callback):
        def _sync(*args: Any) -> None:
            state = args[0] if args else None
            if state is None and hasattr(self._channel, "presence_state"):
                state = self._channel.presence_state()
            callback({"event": "sync", "state": state})

        self._channel.on_presence_sync(_sync)
        return self

    def subscribe(self, status_callback):
        def _on_state(state: Any, err: Optional[Exception] = None) -> None:
            if err is not None:
                logger.warning("Realtime channel %s reported error: %s", getattr(self._channel, "topic", "?"), err)
            status_callback(_status_name(state))

        def _done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.warning("Realtime subscribe failed for %s: %s", getattr(self._channel, "topic", "?"), exc)
                status_callback(CHANNEL_ERROR)

        self._subscribe_task = self._loop.create_task(self._channel.subscribe(_on_state))
        self._subscribe_task.add_done_callback(_done)
        return self

    def cancel_pending(self) -> None:
        if self._subscribe_task is not None and not self._subscribe_task.done():
            self._subscribe_task.cancel()


class SupabaseRealtimeTransport(RealtimeTransport):
    """Realtime transport backed by the supabase async client."""

    def __init__(self, client: Any, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._client = client
        self._loop = loop
        self._pending_removals: Set[asyncio.Task] = set()

    @classmethod
    async def create(cls, url: str, key: str) -> "SupabaseRealtimeTransport":
        """Connect an async supabase client for the given project."""
        from supabase import acreate_client

        client = await acreate_client(url, key)
        logger.info("Supabase realtime client created for %s", url)
        return cls(client, loop=asyncio.get_running_loop())

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def open_channel(self, name, config):
        channel = self._client.channel(name, config)
        return SupabaseChannelHandle(channel, self._get_loop())

    def close_channel(self, handle):
        if not isinstance(handle, SupabaseChannelHandle):
            logger.warning("close_channel: unexpected handle type %s", type(handle).__name__)
            return
        handle.cancel_pending()

        def _done(task: asyncio.Task) -> None:
            self._pending_removals.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.warning("Realtime remove_channel failed for %s: %s", getattr(handle.channel, "topic", "?"), exc)

        task = self._get_loop().create_task(self._client.remove_channel(handle.channel))
        self._pending_removals.add(task)
        task.add_done_callback(_done)

    async def aclose(self) -> None:
        """
        Finish every pending channel removal, then drop any channel left on the
        client and close the realtime socket.
        """
        pending = list(self._pending_removals)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        try:
            await self._client.remove_all_channels()
        except Exception as e:
            logger.warning("Realtime remove_all_channels failed: %s", e)
        logger.info("Supabase realtime transport closed (%s channel removals awaited)", len(pending))
