"""
Channel connection manager: one supervised realtime subscription per conversation.

Owns the process-wide registry (conversation_id -> registration, live channel,
pending retry timer). Transport failures are reported to subscribers only as
status callbacks and recovered by reconnecting with exponential backoff.

Lifecycle: init_channel_manager() at application startup,
get_channel_manager() from callers, shutdown_channel_manager() at shutdown.
"""
import asyncio
import inspect
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from nobridge.core.config import settings
from nobridge.core.observability.metrics import RealtimeMetrics, get_metrics
from nobridge.core.realtime.backoff import compute_backoff_delay
from nobridge.core.realtime.models import (
    CHANNEL_ERROR,
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    FAILURE_STATUSES,
    SUBSCRIBED,
    ChannelHandlers,
    ChannelRegistration,
    ChannelSnapshot,
    ConnectionState,
    ManagerSnapshot,
)
from nobridge.core.realtime.timers import LoopScheduler, Scheduler, TimerHandle
from nobridge.core.realtime.transport import ChannelHandle, RealtimeTransport
from nobridge.core.realtime.validation import validate_conversation_id, validate_handlers

logger = logging.getLogger(__name__)


def channel_name(conversation_id: str) -> str:
    return f"conversation_{conversation_id}"


class ChannelConnectionManager:
    """
    Multiplexes one logical subscription per conversation over a realtime transport.

    Invariant: for a conversation id there is at most one live channel and at
    most one pending retry timer. All registry mutations happen under one
    re-entrant lock, so subscriber callbacks may call back into the manager.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[RealtimeMetrics] = None,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        schema: Optional[str] = None,
        table: Optional[str] = None,
    ) -> None:
        self._transport = transport
        self._scheduler = scheduler or LoopScheduler()
        self._metrics = metrics or get_metrics()
        self._base_delay_ms = base_delay_ms or settings.realtime_reconnect_base_ms
        self._max_delay_ms = max_delay_ms or settings.realtime_reconnect_max_ms
        self._schema = schema or settings.realtime_messages_schema
        self._table = table or settings.realtime_messages_table
        self._registrations: Dict[str, ChannelRegistration] = {}
        self._channels: Dict[str, ChannelHandle] = {}
        self._reconnect_timers: Dict[str, TimerHandle] = {}
        self._connection_state: ConnectionState = DISCONNECTED
        self._lock = threading.RLock()

    # --- public API ---

    def subscribe(self, conversation_id: str, handlers: ChannelHandlers) -> Optional[ChannelHandle]:
        """
        Subscribe to new messages of a conversation, replacing any previous
        subscription for the same id. Returns the channel handle immediately;
        on_status_change("SUBSCRIBED") signals that delivery has started.
        Returns None only when the transport could not open a channel, in
        which case a reconnect is already scheduled.
        """
        validate_conversation_id(conversation_id)
        validate_handlers(handlers)
        logger.info("Subscribing to conversation %s", conversation_id)
        with self._lock:
            self.unsubscribe(conversation_id)
            registration = ChannelRegistration(conversation_id=conversation_id, handlers=handlers)
            self._registrations[conversation_id] = registration
            self._metrics.record_subscribe()
            return self._create_channel(registration)

    def unsubscribe(self, conversation_id: str, clear_registration: bool = True) -> None:
        """
        Cancel the pending retry timer and close the live channel for a
        conversation. With clear_registration=False the handlers and retry
        count are kept for a reconnect. Unknown ids are a no-op.
        """
        with self._lock:
            timer = self._reconnect_timers.pop(conversation_id, None)
            if timer is not None:
                timer.cancel()
            handle = self._channels.pop(conversation_id, None)
            if handle is not None:
                self._close_handle(conversation_id, handle)
            removed = None
            if clear_registration:
                removed = self._registrations.pop(conversation_id, None)
        if removed is not None:
            self._metrics.record_unsubscribe()
            logger.info("Unsubscribed from conversation %s", conversation_id)
        elif handle is not None or timer is not None:
            logger.debug("Released channel for conversation %s (registration kept)", conversation_id)

    def disconnect_all(self) -> None:
        """Cancel every timer, close every channel, forget every registration."""
        with self._lock:
            timers = list(self._reconnect_timers.values())
            self._reconnect_timers.clear()
            channels = list(self._channels.items())
            self._channels.clear()
            count = len(self._registrations)
            self._registrations.clear()
            self._connection_state = DISCONNECTED
            for timer in timers:
                timer.cancel()
            for conversation_id, handle in channels:
                self._close_handle(conversation_id, handle)
        if count or channels or timers:
            logger.info(
                "Disconnected all channels (registrations=%s channels=%s timers=%s)",
                count,
                len(channels),
                len(timers),
            )

    def get_connection_state(self) -> ConnectionState:
        """Last observed state across all channels. Advisory only."""
        return self._connection_state

    def get_channel_state(self, conversation_id: str) -> Optional[ConnectionState]:
        """Per-conversation state, or None when not subscribed."""
        with self._lock:
            registration = self._registrations.get(conversation_id)
            return registration.state if registration else None

    def get_active_channel_count(self) -> int:
        return len(self._channels)

    def get_retry_count(self, conversation_id: str) -> Optional[int]:
        with self._lock:
            registration = self._registrations.get(conversation_id)
            return registration.retry_count if registration else None

    def has_pending_retry(self, conversation_id: str) -> bool:
        return conversation_id in self._reconnect_timers

    def snapshot(self) -> ManagerSnapshot:
        with self._lock:
            channels: List[ChannelSnapshot] = [
                ChannelSnapshot(
                    conversation_id=cid,
                    state=reg.state,
                    retry_count=reg.retry_count,
                    last_connected_at=reg.last_connected_at,
                    channel_open=cid in self._channels,
                    retry_pending=cid in self._reconnect_timers,
                )
                for cid, reg in sorted(self._registrations.items())
            ]
            return ManagerSnapshot(
                connection_state=self._connection_state,
                active_channels=len(self._channels),
                channels=channels,
            )

    # --- channel lifecycle ---

    def _create_channel(self, registration: ChannelRegistration) -> Optional[ChannelHandle]:
        """Open, wire and subscribe a channel for a registration. Caller holds the lock."""
        cid = registration.conversation_id
        try:
            handle = self._transport.open_channel(
                channel_name(cid),
                {"config": {"presence": {"key": cid}}},
            )
        except Exception as e:
            logger.warning("Could not open realtime channel for %s: %s", cid, e)
            self._on_open_failure(registration)
            return None

        def on_message(payload: Dict[str, Any]) -> None:
            self._dispatch(cid, handle, "on_message", payload)

        def on_presence(payload: Any) -> None:
            self._dispatch(cid, handle, "on_presence", payload)

        def on_status(status: Any) -> None:
            self._handle_status_change(cid, handle, str(status))

        # Register before subscribing so a synchronously reported status sees the live channel.
        self._channels[cid] = handle
        registration.state = CONNECTING
        self._connection_state = CONNECTING
        self._metrics.record_channel_opened()
        try:
            handle.on_insert(self._schema, self._table, f"conversation_id=eq.{cid}", on_message)
            if registration.handlers.on_presence is not None:
                handle.on_presence_sync(on_presence)
            handle.subscribe(on_status)
        except Exception as e:
            logger.warning("Realtime subscribe failed for %s: %s", cid, e)
            self._handle_status_change(cid, handle, CHANNEL_ERROR)
        return handle

    def _close_handle(self, conversation_id: str, handle: ChannelHandle) -> None:
        try:
            self._transport.close_channel(handle)
        except Exception as e:
            logger.warning("Closing realtime channel for %s failed: %s", conversation_id, e)
        self._metrics.record_channel_closed()

    def _on_open_failure(self, registration: ChannelRegistration) -> None:
        """No channel could be opened: report CHANNEL_ERROR and retry later."""
        cid = registration.conversation_id
        registration.state = DISCONNECTED
        self._connection_state = DISCONNECTED
        self._metrics.record_status(CHANNEL_ERROR)
        self._invoke(cid, "on_status_change", registration.handlers.on_status_change, CHANNEL_ERROR)
        with self._lock:
            if self._registrations.get(cid) is registration and cid not in self._channels:
                self._schedule_reconnect(registration)

    # --- status handling and reconnection ---

    def _is_live(self, conversation_id: str, handle: ChannelHandle) -> Optional[ChannelRegistration]:
        """Registration if handle is still the live channel for the id, else None."""
        registration = self._registrations.get(conversation_id)
        if registration is None or self._channels.get(conversation_id) is not handle:
            return None
        return registration

    def _handle_status_change(self, conversation_id: str, handle: ChannelHandle, status: str) -> None:
        with self._lock:
            registration = self._is_live(conversation_id, handle)
            if registration is None:
                logger.debug("Ignoring status %s from stale channel for %s", status, conversation_id)
                return
            self._metrics.record_status(status)
            if status == SUBSCRIBED:
                registration.retry_count = 0
                registration.last_connected_at = time.time()
                registration.state = CONNECTED
                self._connection_state = CONNECTED
                logger.info("Connected to conversation %s", conversation_id)
            elif status in FAILURE_STATUSES:
                registration.state = DISCONNECTED
                self._connection_state = DISCONNECTED
                logger.warning("Connection error for conversation %s: %s", conversation_id, status)
            else:
                logger.debug("Channel %s status: %s", conversation_id, status)
            on_status_change = registration.handlers.on_status_change

        self._invoke(conversation_id, "on_status_change", on_status_change, status)

        if status in FAILURE_STATUSES:
            with self._lock:
                # The status handler may have unsubscribed or resubscribed.
                if self._is_live(conversation_id, handle) is registration:
                    self._schedule_reconnect(registration)

    def _schedule_reconnect(self, registration: ChannelRegistration) -> None:
        """Replace any pending timer with one for the next backoff step. Caller holds the lock."""
        cid = registration.conversation_id
        existing = self._reconnect_timers.pop(cid, None)
        if existing is not None:
            existing.cancel()
        delay_ms = compute_backoff_delay(registration.retry_count, self._base_delay_ms, self._max_delay_ms)
        registration.retry_count += 1
        logger.info(
            "Scheduling reconnect for %s in %sms (attempt %s)",
            cid,
            delay_ms,
            registration.retry_count,
        )
        holder: list = []
        timer = self._scheduler.call_later(delay_ms / 1000.0, lambda: self._on_reconnect_timer(registration, holder))
        holder.append(timer)
        self._reconnect_timers[cid] = timer
        self._metrics.record_reconnect_scheduled(delay_ms)

    def _on_reconnect_timer(self, registration: ChannelRegistration, holder: list) -> None:
        cid = registration.conversation_id
        with self._lock:
            if not holder or self._reconnect_timers.get(cid) is not holder[0]:
                return
            del self._reconnect_timers[cid]
            if self._registrations.get(cid) is not registration:
                return
            logger.info("Attempting to reconnect %s (attempt %s)", cid, registration.retry_count)
            self._metrics.record_reconnect_attempt()
            self.unsubscribe(cid, clear_registration=False)
            self._create_channel(registration)

    # --- subscriber callbacks ---

    def _dispatch(self, conversation_id: str, handle: ChannelHandle, handler_name: str, payload: Any) -> None:
        with self._lock:
            registration = self._is_live(conversation_id, handle)
            if registration is None:
                logger.debug("Dropping %s from stale channel for %s", handler_name, conversation_id)
                return
            callback = getattr(registration.handlers, handler_name)
        if callback is None:
            return
        if handler_name == "on_message":
            logger.debug("Message received for %s", conversation_id)
        self._invoke(conversation_id, handler_name, callback, payload)

    def _invoke(self, conversation_id: str, handler_name: str, callback: Callable[[Any], Any], arg: Any) -> None:
        """Run a subscriber callback; its errors are logged, never propagated."""
        try:
            result = callback(arg)
        except Exception:
            self._metrics.record_handler_error()
            logger.exception("%s handler failed for conversation %s", handler_name, conversation_id)
            return
        if inspect.isawaitable(result):
            self._run_async_handler(conversation_id, handler_name, result)

    def _run_async_handler(self, conversation_id: str, handler_name: str, awaitable: Any) -> None:
        try:
            task = asyncio.get_running_loop().create_task(awaitable)
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("No event loop for async %s handler of %s", handler_name, conversation_id)
            return

        def _done(t: "asyncio.Future") -> None:
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._metrics.record_handler_error()
                logger.error(
                    "%s handler failed for conversation %s: %s",
                    handler_name,
                    conversation_id,
                    exc,
                    exc_info=exc,
                )

        task.add_done_callback(_done)


# Process-wide instance, created explicitly at startup
_manager: Optional[ChannelConnectionManager] = None
_manager_lock = threading.Lock()


def init_channel_manager(
    transport: RealtimeTransport,
    scheduler: Optional[Scheduler] = None,
    **kwargs: Any,
) -> ChannelConnectionManager:
    """Create the process-wide manager. A previous instance is disconnected first."""
    global _manager
    with _manager_lock:
        if _manager is not None:
            logger.warning("Channel manager re-initialized; disconnecting previous instance")
            _manager.disconnect_all()
        _manager = ChannelConnectionManager(transport, scheduler=scheduler, **kwargs)
        logger.info("Channel manager initialized")
        return _manager


def get_channel_manager() -> ChannelConnectionManager:
    """Return the process-wide manager. Raises RuntimeError before init_channel_manager()."""
    if _manager is None:
        raise RuntimeError("Channel manager not initialized; call init_channel_manager() at startup")
    return _manager


def is_channel_manager_initialized() -> bool:
    return _manager is not None


def shutdown_channel_manager() -> None:
    """Teardown hook: disconnect everything and drop the instance. No-op if never initialized."""
    global _manager
    with _manager_lock:
        if _manager is None:
            return
        _manager.disconnect_all()
        _manager = None
        logger.info("Channel manager shut down")
