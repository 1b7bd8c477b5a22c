"""Adaptive backup polling of all tracked groups.

The poller is a self-rescheduling timer chain: at most one delayed call is
pending and at most one poll cycle is in flight. The delay is recomputed
after every cycle, short while any group plays and long while all are idle.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from sonosctrl.core.changes import FieldChange, Observation
from sonosctrl.core.context import SyncContext
from sonosctrl.core.timeouts import describe_error, gather_settled, with_timeout
from sonosctrl.models.group import Group

logger = logging.getLogger(__name__)

_FIELD_METHODS = ("get_current_track", "get_volume", "get_muted", "get_state")


class PollerState(Enum):
    """State of the poll timer chain."""

    STOPPED = "stopped"
    IDLE_WAITING = "idle_waiting"
    POLLING = "polling"


class AdaptivePollScheduler:
    """Polls every tracked group on an adaptive interval.

    Example:
        poller = AdaptivePollScheduler(context, on_exhausted=recovery.trigger)
        poller.start()
        # ... later, from the recovery coordinator ...
        poller.stop()
    """

    def __init__(
        self,
        context: SyncContext,
        on_exhausted: Callable[[str], object],
    ) -> None:
        """Initialize the poller.

        Args:
            context: Shared engine state.
            on_exhausted: Called with a reason when a group reaches the
                consecutive failure limit.
        """
        self._ctx = context
        self._on_exhausted = on_exhausted
        self._handle: asyncio.TimerHandle | None = None
        self._cycle: object | None = None  # in-flight marker
        self.last_delay: float | None = None

    @property
    def state(self) -> PollerState:
        """Return the current timer chain state."""
        if self._cycle is not None:
            return PollerState.POLLING
        if self._handle is not None:
            return PollerState.IDLE_WAITING
        return PollerState.STOPPED

    @property
    def enabled(self) -> bool:
        """Return True if the current settings allow polling."""
        return self._ctx.config.polling_enabled

    def next_delay(self) -> float:
        """Return the delay before the next cycle."""
        playing, idle = self._ctx.config.poll_intervals
        return playing if self._ctx.health.any_playing() else idle

    def start(self) -> None:
        """Start the timer chain (no-op if polling is disabled)."""
        if not self.enabled:
            logger.info("Polling disabled, relying on push events only")
            return
        self.stop()
        self._schedule()

    def stop(self) -> None:
        """Cancel the pending timer and forget any in-flight cycle."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._cycle = None

    def _schedule(self) -> None:
        delay = self.next_delay()
        self.last_delay = delay
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._on_timer)
        logger.debug("Next poll cycle in %.1fs", delay)

    def _on_timer(self) -> None:
        self._handle = None
        token = object()
        self._cycle = token
        self._ctx.spawn(self._run_cycle(token), name="poll-cycle")

    async def _run_cycle(self, token: object) -> None:
        try:
            await self.poll_all()
        finally:
            # stop() clears the marker; a cancelled chain must not reschedule
            if self._cycle is token:
                self._cycle = None
                self._schedule()

    async def poll_all(self) -> None:
        """Poll every tracked group concurrently."""
        generation = self._ctx.generation
        groups = list(self._ctx.groups.values())
        await gather_settled(*(self.poll_group(g, generation) for g in groups))

    async def poll_group(self, group: Group, generation: int) -> list[FieldChange]:
        """Run one poll cycle for a group.

        Args:
            group: The group to poll.
            generation: Context generation the cycle started in.

        Returns:
            The changes published for this group.
        """
        device = group.coordinator
        if device is None:
            return []
        timeout = self._ctx.config.timeouts.api_call
        results = await gather_settled(
            with_timeout(
                device.get_current_track(), timeout, "get_current_track polling timed out"
            ),
            with_timeout(device.get_volume(), timeout, "get_volume polling timed out"),
            with_timeout(device.get_muted(), timeout, "get_muted polling timed out"),
            with_timeout(device.get_state(), timeout, "get_state polling timed out"),
        )

        if not self._ctx.is_current(generation):
            logger.debug("Discarding stale poll results for %s", group.display_name)
            return []
        record = self._ctx.health.get(group.id)
        if record is None:
            return []

        for method, outcome in zip(_FIELD_METHODS, results, strict=True):
            if not outcome.ok:
                logger.debug(
                    "%s failed for %s: %s",
                    method,
                    group.display_name,
                    describe_error(outcome.error),
                )

        if not any(outcome.ok for outcome in results):
            record.consecutive_failures += 1
            limit = self._ctx.config.max_consecutive_failures
            logger.error(
                "All polling calls failed for %s (%d/%d)",
                group.display_name,
                record.consecutive_failures,
                limit,
            )
            if record.consecutive_failures >= limit:
                logger.error(
                    "Max consecutive failures reached for %s. Triggering rediscovery...",
                    group.display_name,
                )
                self._on_exhausted(f"polling failed {limit} times for {group.display_name}")
            return []

        record.consecutive_failures = 0
        track, volume, muted, state = results
        return self._ctx.observe(group.id, Observation.from_outcomes(track, volume, muted, state))
