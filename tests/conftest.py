"""
Shared fakes for realtime tests: in-memory transport and a manually advanced clock.
"""
from typing import Any, Callable, List, Optional

import pytest

from nobridge.core.observability.metrics import RealtimeMetrics
from nobridge.core.realtime.manager import ChannelConnectionManager, shutdown_channel_manager
from nobridge.core.realtime.models import CLOSED, ChannelHandlers
from nobridge.core.realtime.transport import ChannelHandle, RealtimeTransport


class FakeChannel(ChannelHandle):
    def __init__(self, name: str, config: dict, transport: "FakeTransport") -> None:
        self.name = name
        self.config = config
        self.transport = transport
        self.insert_bindings: List[dict] = []
        self.presence_callback: Optional[Callable] = None
        self.status_callback: Optional[Callable] = None
        self.closed = False

    def on_insert(self, schema, table, filter, callback):
        self.insert_bindings.append({"schema": schema, "table": table, "filter": filter, "callback": callback})
        return self

    def on_presence_sync(self, callback):
        self.presence_callback = callback
        return self

    def subscribe(self, status_callback):
        if self.transport.fail_subscribe:
            raise ConnectionError("socket refused")
        self.status_callback = status_callback
        return self

    # --- test drivers ---

    def emit_status(self, status: str) -> None:
        self.status_callback(status)

    def emit_insert(self, payload: dict) -> None:
        for binding in self.insert_bindings:
            binding["callback"](payload)

    def emit_presence(self, payload: Any) -> None:
        self.presence_callback(payload)


class FakeTransport(RealtimeTransport):
    def __init__(self, emit_closed_on_close: bool = True) -> None:
        self.opened: List[FakeChannel] = []
        self.closed: List[FakeChannel] = []
        self.emit_closed_on_close = emit_closed_on_close
        self.fail_open = False
        self.fail_subscribe = False

    def open_channel(self, name, config):
        if self.fail_open:
            raise ConnectionError("realtime unreachable")
        channel = FakeChannel(name, config, self)
        self.opened.append(channel)
        return channel

    def close_channel(self, handle):
        handle.closed = True
        self.closed.append(handle)
        # Supabase reports CLOSED to the old channel's listener when it is removed
        if self.emit_closed_on_close and handle.status_callback is not None:
            handle.status_callback(CLOSED)

    def open_channels(self) -> List[FakeChannel]:
        return [c for c in self.opened if not c.closed]

    def last(self) -> FakeChannel:
        return self.opened[-1]


class FakeTimer:
    def __init__(self, due_ms: int, delay_ms: int, callback: Callable[[], Any]) -> None:
        self.due_ms = due_ms
        self.delay_ms = delay_ms
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """call_later on a clock that only moves when advance() is called."""

    def __init__(self) -> None:
        self.now_ms = 0
        self.timers: List[FakeTimer] = []

    def call_later(self, delay, callback):
        delay_ms = int(round(delay * 1000))
        timer = FakeTimer(self.now_ms + delay_ms, delay_ms, callback)
        self.timers.append(timer)
        return timer

    @property
    def scheduled_delays(self) -> List[int]:
        return [t.delay_ms for t in self.timers]

    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, ms: int) -> None:
        target = self.now_ms + ms
        while True:
            due = [t for t in self.pending() if t.due_ms <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due_ms)
            self.now_ms = timer.due_ms
            timer.fired = True
            timer.callback()
        self.now_ms = target


class Recorder:
    """Collects everything delivered to one handler set."""

    def __init__(self, with_presence: bool = False) -> None:
        self.messages: List[dict] = []
        self.statuses: List[str] = []
        self.presence: List[Any] = []
        self.handlers = ChannelHandlers(
            on_message=self.messages.append,
            on_status_change=self.statuses.append,
            on_presence=self.presence.append if with_presence else None,
        )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def metrics():
    return RealtimeMetrics()


@pytest.fixture
def manager(transport, scheduler, metrics):
    mgr = ChannelConnectionManager(
        transport,
        scheduler=scheduler,
        metrics=metrics,
        base_delay_ms=1000,
        max_delay_ms=30000,
        schema="public",
        table="messages",
    )
    yield mgr
    mgr.disconnect_all()


@pytest.fixture(autouse=True)
def reset_singleton():
    yield
    shutdown_channel_manager()
