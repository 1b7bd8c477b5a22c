"""Test fixtures and in-memory fakes for sonosctrl tests."""

import asyncio
import os
from collections.abc import Callable

import pytest

from sonosctrl.api.protocol import DeviceListener, DiscoveryError, SubscriptionError
from sonosctrl.core.changes import ChangeEvent, ChangeField
from sonosctrl.core.context import SyncContext
from sonosctrl.models.group import Group, GroupMember
from sonosctrl.models.settings import SyncConfig, Timeouts
from sonosctrl.models.snapshot import GroupSnapshot
from sonosctrl.models.track import PlayState, Track

# Qt tests run without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

QUERIES = ("get_current_track", "get_volume", "get_muted", "get_state")


class FakeDevice:
    """In-memory SonosDevice.

    Methods listed in ``fail`` raise ConnectionError, methods listed in
    ``hang`` never return. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        name: str = "Kitchen",
        track: Track | None = None,
        volume: int = 20,
        muted: bool = False,
        state: PlayState = PlayState.PLAYING,
    ) -> None:
        self._name = name
        self.track = track or Track(title="Song", artist="Artist", album="Album", duration=200)
        self.volume = volume
        self.muted = muted
        self.state = state
        self.fail: set[str] = set()
        self.hang: set[str] = set()
        self.calls: list[tuple[object, ...]] = []
        self.listeners: list[DeviceListener] = []

    @property
    def name(self) -> str:
        return self._name

    async def _answer(self, method: str, value: object = None, *args: object) -> object:
        self.calls.append((method, *args))
        if method in self.hang:
            await asyncio.Event().wait()
        if method in self.fail:
            raise ConnectionError(f"{method} failed")
        return value

    def fail_all(self) -> None:
        self.fail.update(QUERIES)

    def called(self, method: str) -> list[tuple[object, ...]]:
        return [call for call in self.calls if call[0] == method]

    async def get_current_track(self) -> Track:
        return await self._answer("get_current_track", self.track)  # type: ignore[return-value]

    async def get_volume(self) -> int:
        return await self._answer("get_volume", self.volume)  # type: ignore[return-value]

    async def get_muted(self) -> bool:
        return await self._answer("get_muted", self.muted)  # type: ignore[return-value]

    async def get_state(self) -> PlayState:
        return await self._answer("get_state", self.state)  # type: ignore[return-value]

    async def toggle_playback(self) -> None:
        await self._answer("toggle_playback")

    async def next(self) -> None:
        await self._answer("next")

    async def set_volume(self, volume: int) -> None:
        await self._answer("set_volume", None, volume)
        self.volume = volume

    def add_listener(self, listener: DeviceListener) -> None:
        self.listeners.append(listener)

    def remove_all_listeners(self) -> None:
        self.listeners.clear()

    def emit_track(self, track: Track) -> None:
        for listener in list(self.listeners):
            listener.on_track_changed(track)

    def emit_volume(self, volume: int) -> None:
        for listener in list(self.listeners):
            listener.on_volume_changed(volume)

    def emit_muted(self, muted: bool) -> None:
        for listener in list(self.listeners):
            listener.on_muted_changed(muted)

    def emit_state(self, state: PlayState) -> None:
        for listener in list(self.listeners):
            listener.on_state_changed(state)


class FakeService:
    """In-memory SonosService.

    ``discover_failures`` and ``topology_failures`` count down: each call
    while positive fails and decrements it.
    """

    def __init__(self, groups: list[Group] | None = None, controller: FakeDevice | None = None) -> None:
        self.controller = controller or FakeDevice("Controller")
        self.groups = list(groups or [])
        self.discover_failures = 0
        self.discover_calls = 0
        self.topology_failures = 0
        self.topology_calls = 0
        self.subscribe_fail: set[str] = set()
        self.renew_fail: set[str] = set()
        self.stop_fail = False
        self.subscribed: list[object] = []
        self.unsubscribed: list[object] = []
        self.renewed: list[object] = []
        self.stop_calls = 0
        self.discard_calls = 0
        self.events: list[str] = []
        self.topology_callback: Callable[[], None] | None = None
        self.error_callback: Callable[[Exception], None] | None = None
        self._listening = False

    async def discover(self) -> FakeDevice:
        self.discover_calls += 1
        if self.discover_failures > 0:
            self.discover_failures -= 1
            raise DiscoveryError("No Sonos speakers found")
        return self.controller

    async def get_all_groups(self, controller: object) -> list[Group]:
        self.topology_calls += 1
        if self.topology_failures > 0:
            self.topology_failures -= 1
            raise ConnectionError("topology unavailable")
        return list(self.groups)

    async def subscribe_to(self, device: FakeDevice) -> None:
        if device.name in self.subscribe_fail:
            raise SubscriptionError(f"cannot subscribe to {device.name}")
        self._listening = True
        self.subscribed.append(device)

    async def unsubscribe_from(self, device: FakeDevice) -> None:
        self.unsubscribed.append(device)

    async def renew_subscriptions(self, device: FakeDevice) -> None:
        self.renewed.append(device)
        if device.name in self.renew_fail:
            raise SubscriptionError(f"cannot renew {device.name}")

    def on_topology_changed(self, callback: Callable[[], None]) -> None:
        self.topology_callback = callback

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        self.error_callback = callback

    @property
    def is_listening(self) -> bool:
        return self._listening

    async def stop_listening(self) -> None:
        self.stop_calls += 1
        self.events.append("stop")
        if self.stop_fail:
            raise ConnectionError("listener refused to stop")
        self._listening = False

    def discard_stale_subscriptions(self) -> None:
        self.discard_calls += 1
        self.events.append("discard")

    def fire_topology(self) -> None:
        assert self.topology_callback is not None
        self.topology_callback()

    def fire_error(self, error: Exception | None = None) -> None:
        assert self.error_callback is not None
        self.error_callback(error or ConnectionError("listener died"))


class RecordingNotifier:
    """ChangeNotifier that records everything it receives."""

    def __init__(self) -> None:
        self.snapshots: list[dict[str, GroupSnapshot]] = []
        self.changes: list[ChangeEvent] = []

    def publish_groups(self, snapshots: dict[str, GroupSnapshot]) -> None:
        self.snapshots.append(dict(snapshots))

    def publish_change(self, event: ChangeEvent) -> None:
        self.changes.append(event)

    def fields(self, group_id: str | None = None) -> list[tuple[ChangeField, object]]:
        return [
            (event.field, event.value)
            for event in self.changes
            if group_id is None or event.group_id == group_id
        ]


def make_group(group_id: str, room: str, device: FakeDevice | None = None) -> Group:
    """Return a single-room group coordinated by ``device``."""
    return Group(
        id=group_id,
        name=room,
        members=(GroupMember(uid=f"RINCON_{room.upper()}", name=room),),
        host="192.168.1.10",
        coordinator=device or FakeDevice(room),
    )


def fast_config(**overrides: object) -> SyncConfig:
    """Return settings with delays short enough for tests.

    Timers that would fire on their own (polling, health checks) are long
    so tests drive them explicitly.
    """
    values: dict[str, object] = {
        "polling_interval_playing": 60.0,
        "polling_interval_idle": 60.0,
        "subscription_check_interval": 60.0,
        "rediscovery_delay": 0.01,
        "discovery_backoff_base": 0.001,
        "discovery_backoff_cap": 0.01,
        "pipeline_retry_delay": 0.01,
        "timeouts": Timeouts(discovery=0.2, subscribe=0.2, api_call=0.2, topology=0.2),
    }
    values.update(overrides)
    return SyncConfig(**values)  # type: ignore[arg-type]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def device() -> FakeDevice:
    """Return a playing fake device."""
    return FakeDevice("Kitchen")


@pytest.fixture
def service() -> FakeService:
    """Return a fake service without groups."""
    return FakeService()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Return a recording notifier."""
    return RecordingNotifier()


@pytest.fixture
def context(service: FakeService, notifier: RecordingNotifier) -> SyncContext:
    """Return a context using the fake service and fast settings."""
    return SyncContext(fast_config(), service, notifier)
