"""Periodic validation of push subscriptions.

Subscriptions renew themselves on a long cycle but can die silently. While
something is playing, the checker renews each group's subscriptions and
escalates to recovery as soon as one cannot be renewed. While everything is
idle it does nothing, trading slower recovery for less network chatter.
"""

import asyncio
import logging
from collections.abc import Callable

from sonosctrl.core.context import SyncContext
from sonosctrl.core.timeouts import describe_error, with_timeout

logger = logging.getLogger(__name__)


class SubscriptionHealthChecker:
    """Renews push subscriptions on a fixed interval while playing."""

    def __init__(self, context: SyncContext, escalate: Callable[[str], object]) -> None:
        """Initialize the checker.

        Args:
            context: Shared engine state.
            escalate: Called with a reason when a subscription is broken.
        """
        self._ctx = context
        self._escalate = escalate
        self._handle: asyncio.TimerHandle | None = None
        self._token: object | None = None

    @property
    def is_running(self) -> bool:
        """Return True while the check timer chain is active."""
        return self._token is not None

    def start(self) -> None:
        """Start periodic checks."""
        config = self._ctx.config
        if not config.health_check_enabled:
            logger.debug("Subscription health check disabled")
            return
        self.stop()
        self._token = object()
        self._schedule(self._token)
        logger.info(
            "Subscription health check started (interval: %.0fs)",
            config.subscription_check_interval,
        )

    def stop(self) -> None:
        """Stop periodic checks."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._token = None

    def _schedule(self, token: object) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(
            self._ctx.config.subscription_check_interval, self._on_timer, token
        )

    def _on_timer(self, token: object) -> None:
        self._handle = None
        self._ctx.spawn(self._run(token), name="subscription-check")

    async def _run(self, token: object) -> None:
        try:
            await self.check()
        finally:
            if self._token is token:
                self._schedule(token)

    async def check(self) -> bool:
        """Validate every tracked group's subscription once.

        Returns:
            True if all subscriptions are healthy (or the check was skipped),
            False if recovery was requested.
        """
        ctx = self._ctx
        if not ctx.config.auto_resubscribe:
            return True
        if not ctx.health.any_playing():
            logger.debug("Nothing playing, skipping subscription health check")
            return True

        generation = ctx.generation
        timeout = ctx.config.timeouts.api_call
        for group_id, group in list(ctx.groups.items()):
            record = ctx.health.get(group_id)
            if record is None:
                continue
            if record.device is None:
                logger.warning("No subscribed device for %s", group.display_name)
                self._escalate(f"missing subscription for {group.display_name}")
                return False
            try:
                await with_timeout(
                    ctx.service.renew_subscriptions(record.device),
                    timeout,
                    f"Subscription renewal timed out for {group.display_name}",
                )
            except Exception as e:  # noqa: BLE001
                if not ctx.is_current(generation):
                    return False
                logger.error(
                    "Subscription renewal failed for %s: %s", group.display_name, describe_error(e)
                )
                self._escalate(f"subscription renewal failed for {group.display_name}")
                return False
            if not ctx.is_current(generation):
                return False

        logger.debug("All subscriptions healthy")
        return True
