"""Shared state owned by the synchronization components.

One SyncContext is created per engine and handed to every component at
construction. Components read it freely; only the recovery coordinator
tears it down.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, Protocol

from sonosctrl.api.protocol import SonosDevice, SonosService
from sonosctrl.core.changes import ChangeEvent, FieldChange, Observation, apply_observation
from sonosctrl.core.health import HealthStore
from sonosctrl.models.group import Group
from sonosctrl.models.settings import SyncConfig
from sonosctrl.models.snapshot import GroupSnapshot

logger = logging.getLogger(__name__)


class ChangeNotifier(Protocol):
    """Receiver of outbound change notifications (the display layer)."""

    def publish_groups(self, snapshots: dict[str, GroupSnapshot]) -> None:
        """Groups were (re)established; replaces everything shown before."""
        ...

    def publish_change(self, event: ChangeEvent) -> None:
        """A single field of a group changed."""
        ...


class SyncContext:
    """Live state of one synchronization engine.

    Attributes:
        config: Current settings.
        service: Device service.
        notifier: Receiver of change notifications.
        health: Health records of tracked groups.
        groups: Tracked groups by ID.
        controller: Device used for topology queries, None until discovered.
        subscribed_devices: Devices carrying our push listeners.
        generation: Bumped on every teardown; older work is discarded.
    """

    def __init__(
        self,
        config: SyncConfig,
        service: SonosService,
        notifier: ChangeNotifier,
    ) -> None:
        """Initialize an empty context.

        Args:
            config: Settings for the engine.
            service: Device service.
            notifier: Receiver of change notifications.
        """
        self.config = config
        self.service = service
        self.notifier = notifier
        self.health = HealthStore()
        self.groups: dict[str, Group] = {}
        self.controller: SonosDevice | None = None
        self.subscribed_devices: list[SonosDevice] = []
        self.generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()

    def is_current(self, generation: int) -> bool:
        """Return True if no teardown happened since ``generation``."""
        return self.generation == generation

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Run a coroutine as a task, keeping a reference until it finishes."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Task %s failed: %s", task.get_name(), error, exc_info=error)

    def observe(self, group_id: str, observation: Observation) -> list[FieldChange]:
        """Feed an observation through the change detector and publish changes.

        Observations for groups that are no longer tracked are dropped.

        Args:
            group_id: The observed group.
            observation: The observed fields.

        Returns:
            The changes that were published.
        """
        record = self.health.get(group_id)
        group = self.groups.get(group_id)
        if record is None or group is None:
            logger.debug("Dropping observation for untracked group %s", group_id)
            return []

        changes = apply_observation(record, observation)
        for change in changes:
            logger.info(
                "[Group %s - %s] %s changed to %s",
                group.display_name,
                group.host,
                change.field.value.capitalize(),
                change.value,
            )
            self.notifier.publish_change(
                ChangeEvent(
                    group_id=group_id,
                    group=group,
                    field=change.field,
                    value=change.value,
                )
            )
        return changes

    def detach_listeners(self) -> None:
        """Remove our push listeners from every subscribed device."""
        for device in self.subscribed_devices:
            try:
                device.remove_all_listeners()
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to remove listeners from %s: %s", device.name, e)
        self.subscribed_devices = []

    async def cancel_tasks(self) -> None:
        """Cancel every task spawned through this context and wait for them."""
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
