"""mDNS/Zeroconf discovery for Sonos speakers.

Sonos players announce ``_sonos._tcp.local.`` with instance names of the
form ``RINCON_000E58A0B1C201400@Living Room``. SoCo only needs an address,
so a single announcement is enough to pick a controller.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from zeroconf import ServiceBrowser, ServiceListener, Zeroconf

logger = logging.getLogger(__name__)

SONOS_SERVICE_TYPE = "_sonos._tcp.local."

# UPnP control port used by SoCo, independent of the advertised port
SONOS_UPNP_PORT = 1400


def _ipv4_addresses(packed: list[bytes]) -> list[str]:
    addresses: list[str] = []
    for addr in packed:
        if len(addr) == 4:  # noqa: PLR2004
            addresses.append(socket.inet_ntoa(addr))
    return addresses


@dataclass(frozen=True)
class DiscoveredSpeaker:
    """A Sonos speaker found via mDNS.

    Attributes:
        name: Full mDNS service name.
        host: First IPv4 address.
        addresses: Every IPv4 address announced.
        hostname: Announced server name without the trailing dot.
    """

    name: str
    host: str
    addresses: list[str] = field(default_factory=list)
    hostname: str = ""

    @classmethod
    def from_service_info(cls, name: str, info: Any) -> DiscoveredSpeaker | None:
        """Build a speaker from zeroconf ServiceInfo.

        Returns:
            The speaker, or None if it announced no IPv4 address (Sonos
            players answer UPnP on IPv4 only).
        """
        addresses = _ipv4_addresses(list(info.addresses))
        if not addresses:
            return None
        hostname = info.server.rstrip(".") if info.server else ""
        return cls(name=name, host=addresses[0], addresses=addresses, hostname=hostname)

    @property
    def instance(self) -> str:
        """Return the instance name without the service type suffix."""
        return self.name.removesuffix(f".{SONOS_SERVICE_TYPE}")

    @property
    def uid(self) -> str:
        """Return the player UID (empty if not part of the name)."""
        uid, sep, _ = self.instance.partition("@")
        return uid if sep else ""

    @property
    def room(self) -> str:
        """Return the room name, falling back to the host."""
        _, sep, room = self.instance.partition("@")
        return room if sep and room else self.host


class SonosServiceListener(ServiceListener):
    """Collects Sonos announcements and signals the first one."""

    def __init__(
        self,
        on_found: Callable[[DiscoveredSpeaker], None] | None = None,
        on_removed: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the listener.

        Args:
            on_found: Called for every new or refreshed speaker.
            on_removed: Called with the service name of a vanished speaker.
        """
        self._on_found = on_found
        self._on_removed = on_removed
        self._speakers: dict[str, DiscoveredSpeaker] = {}
        self.found = threading.Event()

    @property
    def speakers(self) -> list[DiscoveredSpeaker]:
        """Return the speakers seen so far."""
        return list(self._speakers.values())

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        info = zc.get_service_info(type_, name)
        if info is None:
            logger.debug("No service info for %s", name)
            return
        speaker = DiscoveredSpeaker.from_service_info(name, info)
        if speaker is None:
            logger.debug("Ignoring %s: no IPv4 address", name)
            return

        logger.info("Discovered Sonos speaker: %s at %s", speaker.room, speaker.host)
        self._speakers[name] = speaker
        self.found.set()
        if self._on_found is not None:
            self._on_found(speaker)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:  # noqa: ARG002
        if self._speakers.pop(name, None) is None:
            return
        logger.info("Sonos speaker removed: %s", name)
        if self._on_removed is not None:
            self._on_removed(name)


class SpeakerDiscovery:
    """Browses the local network for Sonos speakers.

    Usable as a context manager; the browse runs in zeroconf's own thread.

    Example:
        with SpeakerDiscovery() as discovery:
            if discovery.wait(5.0):
                print(discovery.speakers[0].room)
    """

    def __init__(
        self,
        on_found: Callable[[DiscoveredSpeaker], None] | None = None,
        on_removed: Callable[[str], None] | None = None,
    ) -> None:
        self._listener = SonosServiceListener(on_found=on_found, on_removed=on_removed)
        self._zeroconf: Zeroconf | None = None
        self._browser: ServiceBrowser | None = None

    def __enter__(self) -> SpeakerDiscovery:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        """Return True while browsing."""
        return self._zeroconf is not None

    @property
    def speakers(self) -> list[DiscoveredSpeaker]:
        """Return the speakers seen so far."""
        return self._listener.speakers

    def start(self) -> None:
        """Start browsing (no-op if already running)."""
        if self._zeroconf is not None:
            return
        self._zeroconf = Zeroconf()
        self._browser = ServiceBrowser(self._zeroconf, SONOS_SERVICE_TYPE, self._listener)
        logger.debug("Browsing for %s", SONOS_SERVICE_TYPE)

    def stop(self) -> None:
        """Stop browsing and release the zeroconf sockets."""
        browser, self._browser = self._browser, None
        zeroconf, self._zeroconf = self._zeroconf, None
        if browser is not None:
            browser.cancel()
        if zeroconf is not None:
            zeroconf.close()
            logger.debug("Stopped browsing for Sonos speakers")

    def wait(self, timeout: float) -> bool:
        """Block until a speaker was found or ``timeout`` elapsed."""
        return self._listener.found.wait(timeout)

    @staticmethod
    def discover_one(timeout: float = 5.0) -> DiscoveredSpeaker | None:
        """Return the first speaker that answers within ``timeout`` seconds.

        Blocks the calling thread; run it in an executor from async code.
        """
        with SpeakerDiscovery() as discovery:
            if not discovery.wait(timeout):
                return None
            speakers = discovery.speakers
        return speakers[0] if speakers else None

    @staticmethod
    def discover_all(timeout: float = 5.0) -> list[DiscoveredSpeaker]:
        """Browse for ``timeout`` seconds and return every speaker seen."""
        with SpeakerDiscovery() as discovery:
            threading.Event().wait(timeout)
            return discovery.speakers
