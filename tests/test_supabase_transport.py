"""
Tests for the Supabase realtime adapter using an in-memory stand-in for the async client.
"""
import asyncio
import enum

from conftest import Recorder
from nobridge.core.realtime.manager import init_channel_manager, shutdown_channel_manager
from nobridge.core.realtime.models import CHANNEL_ERROR
from nobridge.core.realtime.transport import SupabaseRealtimeTransport


class SubscribeState(str, enum.Enum):
    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"


class FakeRealtimeChannel:
    def __init__(self, topic, params, fail=False):
        self.topic = f"realtime:{topic}"
        self.params = params
        self.fail = fail
        self.postgres = []
        self.presence_cb = None

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.postgres.append({"event": event, "schema": schema, "table": table, "filter": filter, "callback": callback})
        return self

    def on_presence_sync(self, callback):
        self.presence_cb = callback
        return self

    def presence_state(self):
        return {"buyer-7": [{"online_at": "now"}]}

    async def subscribe(self, callback=None):
        if self.fail:
            raise ConnectionError("websocket handshake failed")
        callback(SubscribeState.SUBSCRIBED, None)
        return self


class FakeAsyncClient:
    def __init__(self, fail=False, remove_delay=0.0):
        self.fail = fail
        self.remove_delay = remove_delay
        self.channels = []
        self.removed = []
        self.socket_closed = False

    def channel(self, topic, params=None):
        ch = FakeRealtimeChannel(topic, params, fail=self.fail)
        self.channels.append(ch)
        return ch

    async def remove_channel(self, channel):
        if self.remove_delay:
            await asyncio.sleep(self.remove_delay)
        self.removed.append(channel)

    async def remove_all_channels(self):
        self.socket_closed = True


async def _drain():
    for _ in range(5):
        await asyncio.sleep(0)


def test_open_subscribe_and_close():
    async def scenario():
        client = FakeAsyncClient()
        transport = SupabaseRealtimeTransport(client)
        handle = transport.open_channel("conversation_c1", {"config": {"presence": {"key": "c1"}}})
        received, statuses, presence = [], [], []
        handle.on_insert("public", "messages", "conversation_id=eq.c1", received.append)
        handle.on_presence_sync(presence.append)
        handle.subscribe(statuses.append)
        await _drain()

        channel = client.channels[0]
        assert channel.params == {"config": {"presence": {"key": "c1"}}}
        binding = channel.postgres[0]
        assert (binding["event"], binding["schema"], binding["table"], binding["filter"]) == (
            "INSERT", "public", "messages", "conversation_id=eq.c1",
        )
        assert statuses == ["SUBSCRIBED"]

        binding["callback"]({"data": {"record": {"id": "m1"}}})
        assert received == [{"data": {"record": {"id": "m1"}}}]
        channel.presence_cb()
        assert presence == [{"event": "sync", "state": {"buyer-7": [{"online_at": "now"}]}}]

        transport.close_channel(handle)
        await _drain()
        assert client.removed == [channel]

    asyncio.run(scenario())


def test_subscribe_failure_becomes_channel_error():
    async def scenario():
        transport = SupabaseRealtimeTransport(FakeAsyncClient(fail=True))
        handle = transport.open_channel("conversation_c1", {})
        statuses = []
        handle.subscribe(statuses.append)
        await _drain()
        assert statuses == [CHANNEL_ERROR]

    asyncio.run(scenario())


def test_shutdown_waits_for_channel_removal():
    async def scenario():
        client = FakeAsyncClient(remove_delay=0.01)
        transport = SupabaseRealtimeTransport(client)
        manager = init_channel_manager(transport)
        for cid in ("conv-1", "conv-2", "conv-3"):
            manager.subscribe(cid, Recorder().handlers)
        await _drain()
        shutdown_channel_manager()
        await transport.aclose()
        assert len(client.removed) == 3
        assert client.socket_closed is True

    asyncio.run(scenario())


def test_aclose_without_channels():
    async def scenario():
        client = FakeAsyncClient()
        transport = SupabaseRealtimeTransport(client)
        await transport.aclose()
        assert client.removed == []
        assert client.socket_closed is True

    asyncio.run(scenario())
