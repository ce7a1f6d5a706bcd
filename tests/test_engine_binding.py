"""Tests for starting/stopping the playback engine with the session"""
from unittest.mock import AsyncMock, Mock

from conftest import FakeStore, FakeTransportFactory
from session.coordinator import SessionCoordinator
from session.engine import PlaybackEngine, PlaybackEngineBinding
from session.events import Authenticated, Disconnected, Failed, LifecycleBus, Ready
from session.state import ConnectionState


class RecordingEngine(PlaybackEngine):
    def __init__(self, log):
        self.log = log

    async def start(self, address):
        self.log.append(("start", address))

    async def stop(self):
        self.log.append(("stop",))


async def test_start_on_ready_and_stop_on_disconnect():
    bus = LifecycleBus()
    log = []
    binding = PlaybackEngineBinding(bus, lambda: RecordingEngine(log))

    await bus.publish(Ready("10.0.0.5"))
    assert binding.running
    await bus.publish(Disconnected("10.0.0.5", ConnectionState.CONNECTED))

    assert log == [("start", "10.0.0.5"), ("stop",)]
    assert not binding.running


async def test_stop_only_once_per_transition_out():
    bus = LifecycleBus()
    log = []
    PlaybackEngineBinding(bus, lambda: RecordingEngine(log))

    await bus.publish(Authenticated("10.0.0.5", "Jane"))
    await bus.publish(Disconnected("10.0.0.5", ConnectionState.AUTHENTICATED))
    await bus.publish(Failed("Connection failed"))
    await bus.publish(Disconnected("10.0.0.5", ConnectionState.ERROR))

    assert log == [("start", "10.0.0.5"), ("stop",)]


async def test_new_usable_period_replaces_engine():
    bus = LifecycleBus()
    log = []
    PlaybackEngineBinding(bus, lambda: RecordingEngine(log))

    await bus.publish(Ready("server-a"))
    await bus.publish(Ready("server-b"))

    assert log == [("start", "server-a"), ("stop",), ("start", "server-b")]


async def test_engine_start_failure_is_contained():
    bus = LifecycleBus()
    engine = Mock(spec=PlaybackEngine)
    engine.start = AsyncMock(side_effect=RuntimeError("no audio device"))
    engine.stop = AsyncMock()
    binding = PlaybackEngineBinding(bus, lambda: engine)

    await bus.publish(Ready("10.0.0.5"))

    assert not binding.running
    await bus.publish(Disconnected("10.0.0.5", ConnectionState.CONNECTED))
    engine.stop.assert_not_awaited()


async def test_detach_stops_and_unsubscribes():
    bus = LifecycleBus()
    log = []
    binding = PlaybackEngineBinding(bus, lambda: RecordingEngine(log))
    await bus.publish(Ready("10.0.0.5"))

    await binding.detach()
    await bus.publish(Ready("10.0.0.5"))

    assert log == [("start", "10.0.0.5"), ("stop",)]
    assert bus.handler_count() == 0


async def test_follows_coordinator_through_drop_and_reconnect():
    store = FakeStore(token="good")
    factory = FakeTransportFactory(auth_required=True, valid_tokens={"good"}, user_info={"username": "jdoe"})
    coordinator = SessionCoordinator(store, factory)
    log = []
    PlaybackEngineBinding(coordinator.events, lambda: RecordingEngine(log))

    await coordinator.connect("10.0.0.5")
    await factory.last.drop()
    await coordinator.check_and_reconnect()
    await coordinator.disconnect()

    assert log == [
        ("start", "10.0.0.5"), ("stop",),
        ("start", "10.0.0.5"), ("stop",),
    ]
