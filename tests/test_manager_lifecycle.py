"""
Tests for the process-wide channel manager lifecycle.
"""
import pytest

from conftest import FakeTransport, ManualScheduler, Recorder
from nobridge.core.realtime.manager import (
    get_channel_manager,
    init_channel_manager,
    is_channel_manager_initialized,
    shutdown_channel_manager,
)


def test_get_before_init_raises():
    assert is_channel_manager_initialized() is False
    with pytest.raises(RuntimeError, match="not initialized"):
        get_channel_manager()


def test_init_get_shutdown():
    transport = FakeTransport()
    mgr = init_channel_manager(transport, scheduler=ManualScheduler())
    assert get_channel_manager() is mgr
    mgr.subscribe("conv-1", Recorder().handlers)
    shutdown_channel_manager()
    assert transport.opened[0].closed
    assert is_channel_manager_initialized() is False


def test_shutdown_without_init_is_noop():
    shutdown_channel_manager()
    shutdown_channel_manager()


def test_reinit_disconnects_previous():
    first_transport = FakeTransport()
    first = init_channel_manager(first_transport, scheduler=ManualScheduler())
    first.subscribe("conv-1", Recorder().handlers)
    second = init_channel_manager(FakeTransport(), scheduler=ManualScheduler())
    assert second is not first
    assert first.get_active_channel_count() == 0
    assert first_transport.opened[0].closed
