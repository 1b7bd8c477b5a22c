"""Synchronization settings.

All durations are in seconds.
"""

from dataclasses import dataclass, field
from enum import StrEnum


class ListenMode(StrEnum):
    """How live state is kept up to date."""

    HYBRID = "hybrid"  # push events + adaptive backup polling
    POLLING = "polling"  # polling only
    EVENTS = "events"  # push events only

    @classmethod
    def parse(cls, raw: object) -> "ListenMode":
        """Parse a mode name, falling back to HYBRID."""
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.HYBRID


@dataclass(frozen=True, slots=True)
class Timeouts:
    """Deadlines for calls into the device service.

    Attributes:
        discovery: Finding a controller device on the network.
        subscribe: Subscribing a device to push events.
        api_call: Any per-device query or command.
        topology: Fetching the group topology.
    """

    discovery: float = 10.0
    subscribe: float = 5.0
    api_call: float = 5.0
    topology: float = 10.0


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Settings consumed by the synchronization engine.

    Attributes:
        mode: Listening strategy.
        rooms: Room allow-list (empty = all rooms).
        host: Fixed controller address; empty to discover via mDNS.
        polling_interval_playing: Poll delay while any group plays (0 disables polling).
        polling_interval_idle: Poll delay while every group is idle.
        polling_interval: Fixed poll delay in polling-only mode.
        subscription_check_interval: Delay between subscription health checks.
        auto_resubscribe: Enable subscription health checks.
        max_consecutive_failures: Failed poll cycles before rediscovery.
        rediscovery_delay: Pause between teardown and fresh discovery.
        discovery_backoff_base: Base of the quadratic discovery backoff.
        discovery_backoff_cap: Upper bound of the discovery backoff.
        pipeline_retry_delay: Delay before retrying a failed group setup.
        timeouts: Per-call deadlines.
        debug: Enable debug logging.
    """

    mode: ListenMode = ListenMode.HYBRID
    rooms: tuple[str, ...] = ()
    host: str = ""
    polling_interval_playing: float = 15.0
    polling_interval_idle: float = 60.0
    polling_interval: float = 5.0
    subscription_check_interval: float = 300.0
    auto_resubscribe: bool = True
    max_consecutive_failures: int = 3
    rediscovery_delay: float = 2.0
    discovery_backoff_base: float = 1.0
    discovery_backoff_cap: float = 30.0
    pipeline_retry_delay: float = 10.0
    timeouts: Timeouts = field(default_factory=Timeouts)
    debug: bool = False

    @property
    def push_enabled(self) -> bool:
        """Return True if groups subscribe to push events."""
        return self.mode is not ListenMode.POLLING

    @property
    def poll_intervals(self) -> tuple[float, float]:
        """Return the (playing, idle) poll delays for the current mode."""
        if self.mode is ListenMode.POLLING:
            return (self.polling_interval, self.polling_interval)
        return (self.polling_interval_playing, self.polling_interval_idle)

    @property
    def polling_enabled(self) -> bool:
        """Return True if the poll scheduler should run."""
        if self.mode is ListenMode.EVENTS:
            return False
        return self.poll_intervals[0] > 0

    @property
    def health_check_enabled(self) -> bool:
        """Return True if the subscription health checker should run."""
        return (
            self.push_enabled
            and self.auto_resubscribe
            and self.subscription_check_interval > 0
        )

    def backoff_delay(self, attempts: int) -> float:
        """Return the discovery retry delay after ``attempts`` failures."""
        return min(self.discovery_backoff_base * attempts**2, self.discovery_backoff_cap)
