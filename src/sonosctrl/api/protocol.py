"""Interface of the device service used by the synchronization engine.

The engine never talks to the network directly. Everything it needs from
the speakers goes through the two protocols below; every call may fail or
hang, so callers always wrap them with a timeout.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sonosctrl.models.group import Group
from sonosctrl.models.track import PlayState, Track


class SonosError(Exception):
    """Base class for device service errors."""


class OperationTimeoutError(SonosError, TimeoutError):
    """An external call exceeded its deadline."""


class DiscoveryError(SonosError):
    """No controller device could be found."""


class SubscriptionError(SonosError):
    """A push subscription could not be created or renewed."""


class TopologyError(SonosError):
    """The group topology could not be fetched."""


class NoGroupDataError(SonosError):
    """Every group failed to return its initial state."""


@dataclass(frozen=True, slots=True)
class DeviceListener:
    """Callbacks invoked by a device when it pushes an event.

    Each push event carries a single field.
    """

    on_track_changed: Callable[[Track], None]
    on_volume_changed: Callable[[int], None]
    on_muted_changed: Callable[[bool], None]
    on_state_changed: Callable[[PlayState], None]
    on_error: Callable[[Exception], None]


class SonosDevice(Protocol):
    """A controllable player (usually a group coordinator)."""

    @property
    def name(self) -> str:
        """Room name of the player."""
        ...

    async def get_current_track(self) -> Track: ...

    async def get_volume(self) -> int: ...

    async def get_muted(self) -> bool: ...

    async def get_state(self) -> PlayState: ...

    async def toggle_playback(self) -> None: ...

    async def next(self) -> None: ...

    async def set_volume(self, volume: int) -> None: ...

    def add_listener(self, listener: DeviceListener) -> None:
        """Register push-event callbacks."""
        ...

    def remove_all_listeners(self) -> None:
        """Drop every registered push-event callback."""
        ...


class SonosService(Protocol):
    """Network-level operations: discovery, topology and subscriptions."""

    async def discover(self) -> SonosDevice:
        """Find any reachable player to use as topology controller."""
        ...

    async def get_all_groups(self, controller: SonosDevice) -> list[Group]:
        """Fetch the current group topology through ``controller``."""
        ...

    async def subscribe_to(self, device: SonosDevice) -> None:
        """Subscribe ``device`` to push events, starting the listener if needed."""
        ...

    async def unsubscribe_from(self, device: SonosDevice) -> None:
        """Cancel the push subscriptions of ``device`` (no-op if it has none)."""
        ...

    async def renew_subscriptions(self, device: SonosDevice) -> None:
        """Renew every push subscription of ``device``."""
        ...

    def on_topology_changed(self, callback: Callable[[], None]) -> None:
        """Set the callback for topology changes (replaces any previous one)."""
        ...

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        """Set the callback for asynchronous transport errors."""
        ...

    @property
    def is_listening(self) -> bool:
        """Return True while the push-listening service runs."""
        ...

    async def stop_listening(self) -> None:
        """Stop the push-listening service."""
        ...

    def discard_stale_subscriptions(self) -> None:
        """Forget subscription bookkeeping left behind after a stop."""
        ...
