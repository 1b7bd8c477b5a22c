"""Self-healing: tear down all live state and rediscover from scratch.

The recovery coordinator is the only component allowed to reset the
context. Every other component reports failures through ``trigger`` and
never runs discovery on its own. While a rediscovery is pending, further
triggers are ignored, so failures reported by several components at once
cause a single teardown.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

from sonosctrl.core.context import SyncContext
from sonosctrl.core.timeouts import describe_error, with_timeout

if TYPE_CHECKING:
    from sonosctrl.core.discovery import DiscoveryDriver
    from sonosctrl.core.health_check import SubscriptionHealthChecker
    from sonosctrl.core.poller import AdaptivePollScheduler

logger = logging.getLogger(__name__)


class RecoveryState(Enum):
    """State of the recovery state machine."""

    STABLE = "stable"
    REDISCOVERING = "rediscovering"


class RecoveryCoordinator:
    """Guarded Stable -> Rediscovering -> Stable state machine.

    Example:
        recovery = RecoveryCoordinator(context)
        recovery.attach(poller, health_checker, driver)
        service.on_error(lambda e: recovery.trigger(f"listener error: {e}"))
    """

    def __init__(self, context: SyncContext) -> None:
        """Initialize the coordinator in the Stable state.

        Args:
            context: Shared engine state.
        """
        self._ctx = context
        self._state = RecoveryState.STABLE
        self._poller: AdaptivePollScheduler | None = None
        self._health_checker: SubscriptionHealthChecker | None = None
        self._driver: DiscoveryDriver | None = None
        self._restart_handle: asyncio.TimerHandle | None = None
        self._stopping: asyncio.Task[None] | None = None
        self._restarting: asyncio.Task[None] | None = None
        self._count = 0

    def attach(
        self,
        poller: AdaptivePollScheduler,
        health_checker: SubscriptionHealthChecker,
        driver: DiscoveryDriver,
    ) -> None:
        """Give the coordinator the components it stops and restarts."""
        self._poller = poller
        self._health_checker = health_checker
        self._driver = driver

    @property
    def state(self) -> RecoveryState:
        """Return the current state."""
        return self._state

    @property
    def is_rediscovering(self) -> bool:
        """Return True while a teardown/restart is in progress."""
        return self._state is RecoveryState.REDISCOVERING

    @property
    def rediscovery_count(self) -> int:
        """Return how many rediscoveries were started."""
        return self._count

    def trigger(self, reason: str) -> bool:
        """Request a rediscovery.

        Args:
            reason: Why recovery is needed (for logs).

        Returns:
            True if a rediscovery was started, False if one was already
            in progress.
        """
        if self._state is RecoveryState.REDISCOVERING:
            logger.debug("Rediscovery already in progress, skipping (%s)", reason)
            return False

        self._state = RecoveryState.REDISCOVERING
        self._count += 1
        logger.warning("Triggering rediscovery #%d: %s", self._count, reason)

        self._teardown()
        delay = self._ctx.config.rediscovery_delay
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(delay, self._on_restart_timer)
        return True

    def cancel(self) -> None:
        """Abort a pending restart (used on engine shutdown)."""
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._restarting is not None:
            self._restarting.cancel()
            self._restarting = None
        self._state = RecoveryState.STABLE

    def _teardown(self) -> None:
        """Synchronously neutralize all live state."""
        ctx = self._ctx
        if self._health_checker is not None:
            self._health_checker.stop()
        if self._poller is not None:
            self._poller.stop()
        if self._driver is not None:
            self._driver.cancel()

        ctx.generation += 1
        ctx.detach_listeners()
        ctx.health.clear_all()
        ctx.groups = {}
        ctx.controller = None

        if ctx.service.is_listening:
            self._stopping = ctx.spawn(self._release_listener(), name="stop-listener")
        else:
            self._discard_stale_subscriptions()

    async def _release_listener(self) -> None:
        try:
            await with_timeout(
                self._ctx.service.stop_listening(),
                self._ctx.config.timeouts.subscribe,
                "Stopping the event listener timed out",
            )
            logger.debug("Stopped all listeners to Sonos devices")
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Failed to stop listener during rediscovery, connections might be dangling: %s",
                describe_error(e),
            )
        self._discard_stale_subscriptions()

    def _discard_stale_subscriptions(self) -> None:
        # The service leaves subscription bookkeeping behind after a stop
        try:
            self._ctx.service.discard_stale_subscriptions()
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to discard stale subscriptions: %s", describe_error(e))

    def _on_restart_timer(self) -> None:
        self._restart_handle = None
        self._restarting = self._ctx.spawn(self._restart(), name="rediscovery")

    async def _restart(self) -> None:
        stopping, self._stopping = self._stopping, None
        if stopping is not None and not stopping.done():
            await asyncio.wait({stopping})
        self._restarting = None
        self._state = RecoveryState.STABLE
        logger.info("Starting fresh discovery")
        if self._driver is not None:
            self._driver.start()
