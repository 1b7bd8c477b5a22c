"""Discovery pipeline: controller -> topology -> groups -> live components.

One run of the pipeline:

1. Discover a controller device (retrying this step alone with a growing
   backoff).
2. Register the topology-change listener and subscribe the controller.
3. Fetch the group topology.
4. Apply the room allow-list.
5. Fetch every group's initial track/state/volume/mute concurrently.
6. Drop groups whose track could not be fetched.
7. Fail the run if every group was dropped.
8. Materialize health records, publish the snapshot, unsubscribe
   coordinators of dropped groups, subscribe push events and start
   polling and subscription health checks.

A failed run is retried as a whole after a fixed delay. If groups were
already live when it failed, recovery takes over instead.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from sonosctrl.api.protocol import (
    DeviceListener,
    NoGroupDataError,
    SonosDevice,
    TopologyError,
)
from sonosctrl.core.changes import Observation, apply_observation
from sonosctrl.core.context import SyncContext
from sonosctrl.core.health_check import SubscriptionHealthChecker
from sonosctrl.core.poller import AdaptivePollScheduler
from sonosctrl.core.timeouts import describe_error, gather_settled, with_timeout
from sonosctrl.models.group import Group
from sonosctrl.models.settings import ListenMode
from sonosctrl.models.snapshot import GroupSnapshot
from sonosctrl.models.track import PlayState

logger = logging.getLogger(__name__)

_SNAPSHOT_METHODS = ("get_current_track", "get_state", "get_volume", "get_muted")


class DiscoveryState(Enum):
    """Lifecycle of the discovery driver."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    RETRY_PENDING = "retry_pending"
    IDLE = "idle"


class DiscoveryDriver:
    """Runs the discovery pipeline and starts the live components.

    Example:
        driver = DiscoveryDriver(context, poller, health_checker, recovery.trigger)
        driver.start()
    """

    def __init__(
        self,
        context: SyncContext,
        poller: AdaptivePollScheduler,
        health_checker: SubscriptionHealthChecker,
        escalate: Callable[[str], object],
        accept_rerun: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            context: Shared engine state.
            poller: Poll scheduler started after a successful run.
            health_checker: Subscription checker started after a successful run.
            escalate: Called with a reason when a run fails while groups are live.
            accept_rerun: Consulted on topology changes; a rerun is skipped
                while it returns False.
        """
        self._ctx = context
        self._poller = poller
        self._health_checker = health_checker
        self._escalate = escalate
        self._accept_rerun = accept_rerun
        self._task: asyncio.Task[None] | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._rerun = False
        self._started = False

    @property
    def state(self) -> DiscoveryState:
        """Return the current lifecycle state."""
        if self._task is not None and not self._task.done():
            return DiscoveryState.RUNNING
        if self._retry_handle is not None:
            return DiscoveryState.RETRY_PENDING
        if not self._started:
            return DiscoveryState.NOT_STARTED
        return DiscoveryState.IDLE

    def start(self) -> None:
        """Start a pipeline run, or queue one if a run is in progress."""
        self._started = True
        if self._task is not None and not self._task.done():
            logger.debug("Discovery already running, queueing another run")
            self._rerun = True
            return
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._task = self._ctx.spawn(self._run_guarded(), name="discovery")

    def cancel(self) -> None:
        """Abort the running pipeline and any pending retry."""
        self._rerun = False
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run_guarded(self) -> None:
        try:
            await self.run()
        except Exception as e:  # noqa: BLE001
            self._on_failure(e)
        if self._rerun:
            self._rerun = False
            self._task = None
            self.start()

    def _on_failure(self, error: Exception) -> None:
        logger.error("Error while setting up groups: %s", describe_error(error))
        if self._ctx.groups:
            self._escalate(f"group setup failed: {describe_error(error)}")
            return
        delay = self._ctx.config.pipeline_retry_delay
        logger.info("Retrying group setup in %.0f seconds ...", delay)
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self.start()

    def _on_topology_changed(self) -> None:
        if self._accept_rerun is not None and not self._accept_rerun():
            logger.debug("Ignoring topology change, engine is stopped or recovering")
            return
        logger.info("Zones have changed. Rediscovering all groups ...")
        self.start()

    async def run(self) -> list[GroupSnapshot]:
        """Run the pipeline once.

        Returns:
            Snapshots of the groups that are now tracked.

        Raises:
            TopologyError: If the topology could not be fetched.
            NoGroupDataError: If every group failed its initial fetch.
        """
        ctx = self._ctx
        controller = await self._ensure_controller()
        groups = await self._fetch_groups(controller)

        allowed = [g for g in groups if g.matches_rooms(ctx.config.rooms)]
        if len(allowed) < len(groups):
            logger.info(
                "Ignoring %d group(s) outside the room filter %s",
                len(groups) - len(allowed),
                list(ctx.config.rooms),
            )

        entries = await self._fetch_snapshots(allowed)
        if allowed and not entries:
            logger.warning("All groups failed to return data, will retry...")
            raise NoGroupDataError("All groups failed to return data")

        await self._install(entries)
        return [snapshot for snapshot, _ in entries]

    async def _ensure_controller(self) -> SonosDevice:
        ctx = self._ctx
        attempts = 0
        while ctx.controller is None:
            timeouts = ctx.config.timeouts
            try:
                device = await with_timeout(
                    ctx.service.discover(), timeouts.discovery, "Sonos device discovery timed out"
                )
                ctx.service.on_topology_changed(self._on_topology_changed)
                await with_timeout(
                    ctx.service.subscribe_to(device),
                    timeouts.subscribe,
                    "Subscription to Sonos listener timed out",
                )
            except Exception as e:  # noqa: BLE001
                attempts += 1
                delay = ctx.config.backoff_delay(attempts)
                logger.error(
                    "Failed to discover Sonos devices: %s. Retrying in %.0f seconds ...",
                    describe_error(e),
                    delay,
                )
                await self._release_listener()
                await asyncio.sleep(delay)
                continue
            logger.info("Using %s as topology controller", device.name)
            ctx.controller = device
            return device
        return ctx.controller

    async def _release_listener(self) -> None:
        service = self._ctx.service
        if not service.is_listening:
            return
        try:
            await with_timeout(
                service.stop_listening(),
                self._ctx.config.timeouts.subscribe,
                "Stopping the event listener timed out",
            )
            logger.debug("Stopped all listeners to Sonos devices")
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Failed to stop listeners to Sonos devices, connections might be dangling: %s",
                describe_error(e),
            )

    async def _fetch_groups(self, controller: SonosDevice) -> list[Group]:
        ctx = self._ctx
        try:
            return await with_timeout(
                ctx.service.get_all_groups(controller),
                ctx.config.timeouts.topology,
                "get_all_groups timed out",
            )
        except Exception as e:
            # The controller may be gone; the next run discovers a new one
            ctx.controller = None
            await self._release_listener()
            raise TopologyError(f"Failed to get groups: {describe_error(e)}") from e

    async def _fetch_snapshots(
        self, groups: list[Group]
    ) -> list[tuple[GroupSnapshot, Observation]]:
        results = await gather_settled(*(self._initial_snapshot(g) for g in groups))
        entries: list[tuple[GroupSnapshot, Observation]] = []
        for group, outcome in zip(groups, results, strict=True):
            entry = outcome.get()
            if entry is None:
                logger.warning("Dropping group %s: no track data", group.display_name)
                continue
            entries.append(entry)
        return entries

    async def _initial_snapshot(self, group: Group) -> tuple[GroupSnapshot, Observation] | None:
        device = group.coordinator
        if device is None:
            return None
        timeout = self._ctx.config.timeouts.api_call
        name = group.display_name
        results = await gather_settled(
            with_timeout(
                device.get_current_track(), timeout, f"get_current_track timed out for {name}"
            ),
            with_timeout(device.get_state(), timeout, f"get_state timed out for {name}"),
            with_timeout(device.get_volume(), timeout, f"get_volume timed out for {name}"),
            with_timeout(device.get_muted(), timeout, f"get_muted timed out for {name}"),
        )
        for method, outcome in zip(_SNAPSHOT_METHODS, results, strict=True):
            if not outcome.ok:
                logger.error("%s failed for %s: %s", method, name, describe_error(outcome.error))

        track, state, volume, muted = results
        if not track.ok:
            return None
        observation = Observation.from_outcomes(track, volume, muted, state)
        snapshot = GroupSnapshot(
            group=group,
            track=observation.track,
            state=observation.state if observation.state is not None else PlayState.UNKNOWN,
            volume=observation.volume if observation.volume is not None else 0,
            muted=bool(observation.muted),
        )
        return snapshot, observation

    async def _install(self, entries: list[tuple[GroupSnapshot, Observation]]) -> None:
        ctx = self._ctx
        self._poller.stop()
        self._health_checker.stop()
        previous = ctx.subscribed_devices
        ctx.detach_listeners()

        # Groups are replaced wholesale; in-flight work for the old set is stale
        ctx.generation += 1
        generation = ctx.generation
        groups = [snapshot.group for snapshot, _ in entries]
        ctx.groups = {g.id: g for g in groups}
        ctx.health.init_all(groups)
        for snapshot, observation in entries:
            record = ctx.health.get(snapshot.group_id)
            if record is not None:
                apply_observation(record, observation)

        logger.info("Groups established: %s", ", ".join(g.display_name for g in groups) or "none")
        ctx.notifier.publish_groups({snapshot.group_id: snapshot for snapshot, _ in entries})
        await self._unsubscribe_stale(previous, groups)
        if not ctx.is_current(generation):
            return

        if not entries:
            logger.warning("No valid groups found after filtering")
            return

        mode = ctx.config.mode
        if mode is ListenMode.POLLING:
            logger.info("Listening with polling mode")
        elif mode is ListenMode.HYBRID:
            logger.info("Listening with hybrid mode (events + backup polling)")
        else:
            logger.info("Listening with events mode")

        if ctx.config.push_enabled:
            await self._subscribe_all(groups, generation)
            if not ctx.is_current(generation):
                return
        self._poller.start()
        self._health_checker.start()

    async def _unsubscribe_stale(self, previous: list[SonosDevice], groups: list[Group]) -> None:
        # Only the controller and current coordinators stay subscribed
        kept: list[SonosDevice | None] = [g.coordinator for g in groups]
        kept.append(self._ctx.controller)
        stale = [d for d in previous if not any(d is k for k in kept)]
        for device in stale:
            try:
                await with_timeout(
                    self._ctx.service.unsubscribe_from(device),
                    self._ctx.config.timeouts.subscribe,
                    f"Unsubscribing from {device.name} timed out",
                )
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to unsubscribe from %s: %s", device.name, describe_error(e))
            else:
                logger.info("Unsubscribed from %s, no longer a group coordinator", device.name)

    async def _subscribe_all(self, groups: list[Group], generation: int) -> None:
        results = await gather_settled(*(self._subscribe_group(g, generation) for g in groups))
        for group, outcome in zip(groups, results, strict=True):
            if not outcome.ok:
                logger.error(
                    "Failed to subscribe to %s: %s",
                    group.display_name,
                    describe_error(outcome.error),
                )

    async def _subscribe_group(self, group: Group, generation: int) -> None:
        ctx = self._ctx
        device = group.coordinator
        if device is None:
            return
        logger.info("Registering listeners for group %s (host %s)", group.display_name, group.host)
        device.add_listener(self._listener_for(group))
        ctx.subscribed_devices.append(device)
        await with_timeout(
            ctx.service.subscribe_to(device),
            ctx.config.timeouts.subscribe,
            f"Subscription timed out for {group.display_name}",
        )
        record = ctx.health.get(group.id)
        if ctx.is_current(generation) and record is not None:
            record.device = device

    def _listener_for(self, group: Group) -> DeviceListener:
        ctx = self._ctx

        def push(observation: Observation) -> None:
            ctx.observe(group.id, observation)

        def on_error(error: Exception) -> None:
            logger.error(
                "[Group %s - %s] Device error: %s",
                group.display_name,
                group.host,
                describe_error(error),
            )

        return DeviceListener(
            on_track_changed=lambda track: push(Observation(track=track)),
            on_volume_changed=lambda volume: push(Observation(volume=volume)),
            on_muted_changed=lambda muted: push(Observation(muted=muted)),
            on_state_changed=lambda state: push(Observation(state=state)),
            on_error=on_error,
        )
