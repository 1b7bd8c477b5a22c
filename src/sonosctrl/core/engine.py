"""Synchronization engine facade.

SonosSync wires the context, poller, health checker, discovery driver and
recovery coordinator together and exposes the inbound API used by the
display layer.
"""

import logging
import math
from collections.abc import Awaitable, Callable

from sonosctrl.api.protocol import SonosDevice, SonosService
from sonosctrl.core.context import ChangeNotifier, SyncContext
from sonosctrl.core.discovery import DiscoveryDriver
from sonosctrl.core.health_check import SubscriptionHealthChecker
from sonosctrl.core.poller import AdaptivePollScheduler
from sonosctrl.core.recovery import RecoveryCoordinator
from sonosctrl.core.timeouts import describe_error, with_timeout
from sonosctrl.models.settings import SyncConfig

logger = logging.getLogger(__name__)

MIN_VOLUME = 0
MAX_VOLUME = 100


def parse_volume(value: object) -> int | None:
    """Convert user input to a volume in 0-100.

    Numbers and numeric strings are rounded and clamped. Booleans,
    non-finite numbers and anything else are rejected.

    Returns:
        The clamped volume, or None if the input is not a number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return max(MIN_VOLUME, min(MAX_VOLUME, round(number)))


def _ignore_error(error: Exception) -> None:
    logger.debug("Ignoring listener error after stop: %s", describe_error(error))


def _ignore_topology() -> None:
    logger.debug("Ignoring topology change after stop")


class SonosSync:
    """Keeps a live model of every Sonos group and publishes its changes.

    Example:
        sync = SonosSync(SocoService(), notifier)
        sync.start(SyncConfig(rooms=("Kitchen",)))
        await sync.set_volume(group_id, 30)
        await sync.stop()
    """

    def __init__(
        self,
        service: SonosService,
        notifier: ChangeNotifier,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            service: Device service used for every network operation.
            notifier: Receiver of group snapshots and field changes.
            config: Initial settings (may be replaced by start()).
        """
        self.context = SyncContext(config or SyncConfig(), service, notifier)
        self.recovery = RecoveryCoordinator(self.context)
        self.poller = AdaptivePollScheduler(self.context, self.recovery.trigger)
        self.health_checker = SubscriptionHealthChecker(self.context, self.recovery.trigger)
        self.driver = DiscoveryDriver(
            self.context,
            self.poller,
            self.health_checker,
            self.recovery.trigger,
            accept_rerun=self._accepts_rerun,
        )
        self.recovery.attach(self.poller, self.health_checker, self.driver)
        self._running = False

    @property
    def is_running(self) -> bool:
        """Return True between start() and stop()."""
        return self._running

    @property
    def config(self) -> SyncConfig:
        """Return the active settings."""
        return self.context.config

    def start(self, config: SyncConfig | None = None) -> None:
        """Start discovery and live synchronization.

        Must be called from within the running event loop.

        Args:
            config: Settings to use; keeps the current ones if None.
        """
        if self._running:
            logger.warning("Sonos sync already started")
            return
        if config is not None:
            self.context.config = config
        self._running = True
        self.context.service.on_error(self._on_service_error)
        logger.info(
            "Starting Sonos sync (mode: %s, rooms: %s)",
            self.config.mode.value,
            ", ".join(self.config.rooms) or "all",
        )
        self.driver.start()

    async def stop(self) -> None:
        """Stop every timer and subscription and forget all groups."""
        if not self._running:
            return
        self._running = False
        ctx = self.context
        ctx.service.on_error(_ignore_error)
        ctx.service.on_topology_changed(_ignore_topology)
        self.recovery.cancel()
        self.driver.cancel()
        self.health_checker.stop()
        self.poller.stop()

        ctx.generation += 1
        ctx.detach_listeners()
        ctx.health.clear_all()
        ctx.groups = {}
        ctx.controller = None

        if ctx.service.is_listening:
            try:
                await with_timeout(
                    ctx.service.stop_listening(),
                    ctx.config.timeouts.subscribe,
                    "Stopping the event listener timed out",
                )
            except Exception as e:  # noqa: BLE001
                logger.error("Failed to stop listener: %s", describe_error(e))
        await ctx.cancel_tasks()
        logger.info("Sonos sync stopped")

    def report_error(self, reason: str) -> bool:
        """Report an external failure and request a rediscovery.

        Returns:
            True if a rediscovery was started.
        """
        if not self._running:
            logger.debug("Ignoring error report while stopped: %s", reason)
            return False
        logger.error("External error reported: %s", reason)
        return self.recovery.trigger(reason)

    async def toggle(self, group_id: str) -> bool:
        """Toggle play/pause of a group."""
        return await self._command(group_id, "toggle", lambda device: device.toggle_playback())

    async def next(self, group_id: str) -> bool:
        """Skip to the next track of a group."""
        return await self._command(group_id, "next", lambda device: device.next())

    async def set_volume(self, group_id: str, value: object) -> bool:
        """Set a group's volume.

        Args:
            group_id: Target group.
            value: Requested volume; clamped to 0-100.

        Returns:
            True if the device accepted the command, False if the value
            was rejected or the call failed.
        """
        volume = parse_volume(value)
        if volume is None:
            logger.error("Invalid volume %r for group %s", value, group_id)
            return False
        return await self._command(
            group_id, "set_volume", lambda device: device.set_volume(volume)
        )

    async def _command(
        self,
        group_id: str,
        action: str,
        call: Callable[[SonosDevice], Awaitable[None]],
    ) -> bool:
        group = self.context.groups.get(group_id)
        if group is None or group.coordinator is None:
            logger.warning("Cannot %s: unknown group %s", action, group_id)
            return False
        try:
            await with_timeout(
                call(group.coordinator),
                self.config.timeouts.api_call,
                f"{action} timed out for {group.display_name}",
            )
        except Exception as e:  # noqa: BLE001
            logger.error("%s failed for %s: %s", action, group.display_name, describe_error(e))
            return False
        logger.debug("%s sent to %s", action, group.display_name)
        return True

    def _accepts_rerun(self) -> bool:
        return self._running and not self.recovery.is_rediscovering

    def _on_service_error(self, error: Exception) -> None:
        if not self._running:
            logger.debug("Ignoring listener error after stop: %s", describe_error(error))
            return
        logger.error("Sonos listener error: %s", describe_error(error))
        self.recovery.trigger(f"listener error: {describe_error(error)}")
