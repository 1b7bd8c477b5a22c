"""Device service backed by SoCo.

SoCo's UPnP calls are blocking, so every query and command runs in a small
thread pool. Push events use SoCo's asyncio event listener (aiohttp based),
which delivers callbacks on the running event loop.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, TypeVar

import soco
from soco import SoCo, events_asyncio

from sonosctrl.api.mdns import SONOS_UPNP_PORT, SpeakerDiscovery
from sonosctrl.api.protocol import (
    DeviceListener,
    DiscoveryError,
    SonosDevice,
    SubscriptionError,
)
from sonosctrl.models.group import Group, GroupMember
from sonosctrl.models.track import PlayState, Track, parse_duration

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Select the asyncio event implementation before any subscription is made
soco.config.EVENTS_MODULE = events_asyncio


# SoCo reports radio streams with this duration and the song in streamContent
STREAM_DURATION = "0:00:00"


def stream_fields(stream_content: str, fallback_title: str) -> tuple[str, str, str]:
    """Resolve (title, artist, album) of a radio stream.

    Mirrors ``SoCo.get_current_track_info()``: tagged content
    (``TYPE=SNG|TITLE ...|ARTIST ...|ALBUM ...``) is split into its tags,
    ``"Artist - Title"`` is split on the dash, anything else becomes the
    title unless the metadata carries one.
    """
    if "TYPE=SNG|" in stream_content:
        tags = dict(part.split(" ", 1) for part in stream_content.split("|") if " " in part)
        return tags.get("TITLE", ""), tags.get("ARTIST", ""), tags.get("ALBUM", "")
    artist, sep, title = stream_content.partition(" - ")
    if sep:
        return title, artist, ""
    return fallback_title or stream_content, "", ""


def _build_track(
    title: object, artist: object, album: object, duration: object, uri: object, art: object
) -> Track:
    return Track(
        title=str(title or ""),
        artist=str(artist or ""),
        album=str(album or ""),
        duration=parse_duration(duration),
        uri=str(uri or ""),
        album_art_uri=str(art or ""),
    )


def track_from_info(info: Mapping[str, Any]) -> Track:
    """Build a Track from ``SoCo.get_current_track_info()``.

    SoCo has already resolved stream content into title and artist.
    """
    return _build_track(
        info.get("title"),
        info.get("artist"),
        info.get("album"),
        info.get("duration"),
        info.get("uri"),
        info.get("album_art"),
    )


def track_from_event(meta: Any, duration: object, uri: object, art: str = "") -> Track:
    """Build a Track from an AVTransport event's DIDL metadata.

    Resolves fields the same way polling does, so a pushed track and a
    polled track of the same item compare equal.
    """
    title = getattr(meta, "title", "") or ""
    artist = getattr(meta, "creator", "") or ""
    album = getattr(meta, "album", "") or ""
    stream_content = str(getattr(meta, "stream_content", "") or "")
    if str(duration) == STREAM_DURATION:
        title, artist, album = stream_fields(stream_content, str(title))
    return _build_track(title, artist, album, duration, uri, art)


def _master_channel(value: object) -> str | None:
    """Return the Master channel of a RenderingControl variable."""
    if isinstance(value, Mapping):
        master = value.get("Master")
        return None if master is None else str(master)
    return None


class SocoDevice:
    """SonosDevice implementation wrapping a ``soco.SoCo`` player.

    Example:
        device = SocoDevice(SoCo("192.168.1.20"), "Kitchen", executor)
        track = await device.get_current_track()
    """

    def __init__(self, speaker: SoCo, name: str, executor: ThreadPoolExecutor) -> None:
        """Initialize the device.

        Args:
            speaker: The SoCo player.
            name: Room name (fetched once, SoCo looks it up over the network).
            executor: Thread pool for blocking SoCo calls.
        """
        self._speaker = speaker
        self._name = name
        self._executor = executor
        self._listeners: list[DeviceListener] = []

    @property
    def name(self) -> str:
        """Return the room name."""
        return self._name

    @property
    def speaker(self) -> SoCo:
        """Return the wrapped SoCo player."""
        return self._speaker

    @property
    def uid(self) -> str:
        """Return the player UID."""
        return str(self._speaker.uid)

    @property
    def ip_address(self) -> str:
        """Return the player address."""
        return str(self._speaker.ip_address)

    async def _call(self, func: Callable[..., T], *args: object) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    async def get_current_track(self) -> Track:
        info = await self._call(self._speaker.get_current_track_info)
        return track_from_info(info)

    async def get_volume(self) -> int:
        return int(await self._call(lambda: self._speaker.volume))

    async def get_muted(self) -> bool:
        return bool(await self._call(lambda: self._speaker.mute))

    async def get_state(self) -> PlayState:
        info = await self._call(self._speaker.get_current_transport_info)
        return PlayState.parse(info.get("current_transport_state"))

    async def toggle_playback(self) -> None:
        if await self.get_state() is PlayState.PLAYING:
            await self._call(self._speaker.pause)
        else:
            await self._call(self._speaker.play)

    async def next(self) -> None:
        await self._call(self._speaker.next)

    async def set_volume(self, volume: int) -> None:
        await self._call(setattr, self._speaker, "volume", volume)

    def add_listener(self, listener: DeviceListener) -> None:
        """Register push-event callbacks."""
        self._listeners.append(listener)

    def remove_all_listeners(self) -> None:
        """Drop every registered push-event callback."""
        self._listeners.clear()

    def dispatch_event(self, event: Any) -> None:
        """Turn a SoCo event into single-field listener callbacks.

        Called by SoCo on the event loop for AVTransport and
        RenderingControl events.
        """
        if not self._listeners:
            return
        try:
            updates = self._parse_event(getattr(event, "variables", {}) or {})
        except Exception as e:  # noqa: BLE001
            logger.debug("Unparseable event from %s: %s", self._name, e)
            for listener in list(self._listeners):
                listener.on_error(e)
            return

        for listener in list(self._listeners):
            for notify in updates:
                notify(listener)

    def _parse_event(
        self, variables: Mapping[str, Any]
    ) -> list[Callable[[DeviceListener], None]]:
        updates: list[Callable[[DeviceListener], None]] = []

        meta = variables.get("current_track_meta_data")
        if meta is not None and hasattr(meta, "title"):
            art = str(getattr(meta, "album_art_uri", "") or "")
            if art.startswith("/"):
                art = f"http://{self.ip_address}:{SONOS_UPNP_PORT}{art}"
            track = track_from_event(
                meta,
                variables.get("current_track_duration"),
                variables.get("current_track_uri"),
                art,
            )
            updates.append(lambda listener: listener.on_track_changed(track))

        volume = _master_channel(variables.get("volume"))
        if volume is not None:
            level = int(volume)
            updates.append(lambda listener: listener.on_volume_changed(level))

        mute = _master_channel(variables.get("mute"))
        if mute is not None:
            muted = mute == "1"
            updates.append(lambda listener: listener.on_muted_changed(muted))

        transport_state = variables.get("transport_state")
        if transport_state is not None:
            state = PlayState.parse(transport_state)
            updates.append(lambda listener: listener.on_state_changed(state))

        return updates


class SocoService:
    """SonosService implementation on top of SoCo.

    Example:
        service = SocoService(host="")  # discover via mDNS
        controller = await service.discover()
        groups = await service.get_all_groups(controller)
    """

    def __init__(
        self, host: str = "", discovery_timeout: float = 5.0, max_workers: int = 4
    ) -> None:
        """Initialize the service.

        Args:
            host: Fixed controller address; empty to discover via mDNS.
            discovery_timeout: How long one mDNS browse waits for a speaker.
            max_workers: Size of the thread pool for blocking SoCo calls.
        """
        self._host = host
        self._discovery_timeout = discovery_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="soco")
        self._devices: dict[str, SocoDevice] = {}
        self._subscriptions: dict[str, list[Any]] = {}
        self._topology_subscription: Any | None = None
        self._topology_callback: Callable[[], None] | None = None
        self._error_callback: Callable[[Exception], None] | None = None

    async def _run(self, func: Callable[..., T], *args: object) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    def _device_for(self, speaker: SoCo, name: str) -> SocoDevice:
        # One device object per player, so listeners survive topology refreshes
        uid = str(speaker.uid)
        device = self._devices.get(uid)
        if device is None or device.speaker is not speaker:
            device = SocoDevice(speaker, name, self._executor)
            self._devices[uid] = device
        return device

    def _as_soco(self, device: SonosDevice) -> SocoDevice:
        if not isinstance(device, SocoDevice):
            raise TypeError(f"Unsupported device type: {type(device).__name__}")
        return device

    async def discover(self) -> SonosDevice:
        """Find a player to use as topology controller.

        Raises:
            DiscoveryError: If no player answered.
        """
        host = self._host
        if not host:
            found = await self._run(SpeakerDiscovery.discover_one, self._discovery_timeout)
            if found is None:
                raise DiscoveryError("No Sonos speakers found via mDNS")
            host = found.host

        speaker = SoCo(host)

        def identify() -> tuple[str, str]:
            return str(speaker.uid), str(speaker.player_name)

        try:
            _, name = await self._run(identify)
        except Exception as e:
            raise DiscoveryError(f"Sonos speaker at {host} did not respond: {e}") from e
        logger.info("Found Sonos speaker %s at %s", name, host)
        return self._device_for(speaker, name)

    async def get_all_groups(self, controller: SonosDevice) -> list[Group]:
        """Fetch the group topology through ``controller``."""
        speaker = self._as_soco(controller).speaker

        def fetch() -> list[tuple[str, str, SoCo, str, tuple[GroupMember, ...]]]:
            rows = []
            for zone_group in speaker.all_groups:
                coordinator = zone_group.coordinator
                if coordinator is None:
                    continue
                members = tuple(
                    GroupMember(uid=str(m.uid), name=str(m.player_name))
                    for m in sorted(zone_group.members, key=lambda m: m.player_name)
                    if m.is_visible
                )
                rows.append(
                    (
                        str(zone_group.uid),
                        str(zone_group.label),
                        coordinator,
                        str(coordinator.player_name),
                        members,
                    )
                )
            return rows

        rows = await self._run(fetch)
        return [
            Group(
                id=uid,
                name=label,
                members=members,
                host=str(coordinator.ip_address),
                coordinator=self._device_for(coordinator, name),
            )
            for uid, label, coordinator, name, members in rows
        ]

    async def subscribe_to(self, device: SonosDevice) -> None:
        """Subscribe a player to AVTransport and RenderingControl events.

        The first subscribed player also carries the topology subscription.

        Raises:
            SubscriptionError: If a subscription could not be created.
        """
        soco_device = self._as_soco(device)
        if soco_device.uid in self._subscriptions:
            logger.debug("%s already subscribed", soco_device.name)
            return

        speaker = soco_device.speaker
        subscriptions: list[Any] = []
        try:
            for upnp_service in (speaker.avTransport, speaker.renderingControl):
                sub = await upnp_service.subscribe(auto_renew=True)
                sub.callback = soco_device.dispatch_event
                sub.auto_renew_fail = self._on_auto_renew_fail
                subscriptions.append(sub)

            if self._topology_subscription is None:
                sub = await speaker.zoneGroupTopology.subscribe(auto_renew=True)
                sub.callback = self._on_topology_event
                sub.auto_renew_fail = self._on_auto_renew_fail
                self._topology_subscription = sub
        except Exception as e:
            await self._unsubscribe_all(subscriptions)
            raise SubscriptionError(f"Failed to subscribe to {soco_device.name}: {e}") from e

        self._subscriptions[soco_device.uid] = subscriptions
        logger.debug("Subscribed to events of %s", soco_device.name)

    async def unsubscribe_from(self, device: SonosDevice) -> None:
        """Cancel the AVTransport and RenderingControl subscriptions of a player.

        Does nothing if the player has none. The topology subscription is
        kept until ``stop_listening``.
        """
        soco_device = self._as_soco(device)
        subscriptions = self._subscriptions.pop(soco_device.uid, None)
        if not subscriptions:
            return
        await self._unsubscribe_all(subscriptions)
        logger.debug("Unsubscribed from events of %s", soco_device.name)

    async def renew_subscriptions(self, device: SonosDevice) -> None:
        """Renew every subscription of ``device``.

        Raises:
            SubscriptionError: If the device has no subscriptions.
        """
        soco_device = self._as_soco(device)
        subscriptions = self._subscriptions.get(soco_device.uid)
        if not subscriptions:
            raise SubscriptionError(f"No active subscriptions for {soco_device.name}")
        for sub in subscriptions:
            await sub.renew()

    def on_topology_changed(self, callback: Callable[[], None]) -> None:
        """Set the callback for topology changes (replaces any previous one)."""
        self._topology_callback = callback

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        """Set the callback for asynchronous transport errors."""
        self._error_callback = callback

    @property
    def is_listening(self) -> bool:
        """Return True while SoCo's event listener runs."""
        return bool(events_asyncio.event_listener.is_running)

    async def stop_listening(self) -> None:
        """Unsubscribe everything and stop SoCo's event listener."""
        subscriptions = [sub for subs in self._subscriptions.values() for sub in subs]
        if self._topology_subscription is not None:
            subscriptions.append(self._topology_subscription)
        self._subscriptions.clear()
        self._topology_subscription = None
        await self._unsubscribe_all(subscriptions)
        await events_asyncio.event_listener.async_stop()

    def discard_stale_subscriptions(self) -> None:
        """Forget subscriptions SoCo still tracks after its listener stopped.

        SoCo keeps stopped subscriptions in its global map, where they
        would receive events meant for the next subscriptions.
        """
        subscriptions_map = events_asyncio.subscriptions_map
        with subscriptions_map.subscriptions_lock:
            stale = len(subscriptions_map.subscriptions)
            subscriptions_map.subscriptions.clear()
        if stale:
            logger.debug("Discarded %d stale subscription(s)", stale)

    def close(self) -> None:
        """Release the thread pool."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _unsubscribe_all(self, subscriptions: list[Any]) -> None:
        results = await asyncio.gather(
            *(sub.unsubscribe() for sub in subscriptions), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.debug("Unsubscribe failed: %s", result)

    def _on_topology_event(self, event: Any) -> None:
        variables = getattr(event, "variables", {}) or {}
        if "zone_group_state" not in variables:
            return
        # The initial event after subscribing only repeats the current topology
        if str(getattr(event, "seq", "")) == "0":
            return
        if self._topology_callback is not None:
            self._topology_callback()

    def _on_auto_renew_fail(self, error: Exception) -> None:
        logger.warning("Automatic subscription renewal failed: %s", error)
        if self._error_callback is not None:
            self._error_callback(SubscriptionError(f"Subscription renewal failed: {error}"))
