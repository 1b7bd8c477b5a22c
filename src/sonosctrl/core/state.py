"""Display-side mirror of the published group snapshots.

The StateStore receives the engine's bulk snapshots and single-field
changes (delivered through the worker's Qt signals) and keeps the latest
GroupSnapshot per group. Widgets connect to its signals to refresh.
"""

import logging
from dataclasses import replace

from PySide6.QtCore import QObject, Signal

from sonosctrl.core.changes import ChangeEvent, ChangeField
from sonosctrl.models.snapshot import GroupSnapshot

logger = logging.getLogger(__name__)

_SNAPSHOT_FIELDS = {
    ChangeField.TRACK: "track",
    ChangeField.VOLUME: "volume",
    ChangeField.MUTED: "muted",
    ChangeField.STATE: "state",
}


class StateStore(QObject):
    """Latest snapshot of every group, with Qt change signals.

    Example:
        state = StateStore()
        worker.groups_established.connect(state.set_groups)
        state.group_updated.connect(lambda snap: print(snap.track))
    """

    # Note: Using object for complex types (PySide6 limitation)
    groups_changed = Signal(object)  # list[GroupSnapshot]
    group_updated = Signal(object)  # GroupSnapshot

    def __init__(self) -> None:
        """Initialize an empty store."""
        super().__init__()
        self._groups: dict[str, GroupSnapshot] = {}
        self._groups_cache: list[GroupSnapshot] | None = None

    @property
    def groups(self) -> list[GroupSnapshot]:
        """Return all group snapshots (cached)."""
        if self._groups_cache is None:
            self._groups_cache = list(self._groups.values())
        return self._groups_cache

    def get_group(self, group_id: str) -> GroupSnapshot | None:
        """Get a group snapshot by ID.

        Args:
            group_id: The group ID to look up.

        Returns:
            The snapshot if found, else None.
        """
        return self._groups.get(group_id)

    def set_groups(self, snapshots: dict[str, GroupSnapshot]) -> None:
        """Replace every group with a freshly published set.

        Args:
            snapshots: Snapshots keyed by group ID.
        """
        self._groups = dict(snapshots)
        self._groups_cache = None
        logger.debug("State store holds %d group(s)", len(self._groups))
        self.groups_changed.emit(self.groups)

    def apply_change(self, event: ChangeEvent) -> None:
        """Apply a single-field change to the matching snapshot.

        Changes for groups not in the store are ignored.

        Args:
            event: The published change.
        """
        snapshot = self._groups.get(event.group_id)
        if snapshot is None:
            logger.debug("Ignoring change for unknown group %s", event.group_id)
            return
        updated = replace(snapshot, **{_SNAPSHOT_FIELDS[event.field]: event.value})
        if updated == snapshot:
            return
        self._groups[event.group_id] = updated
        self._groups_cache = None
        self.group_updated.emit(updated)

    def clear(self) -> None:
        """Forget every group."""
        had_groups = bool(self._groups)
        self._groups.clear()
        self._groups_cache = None
        if had_groups:
            self.groups_changed.emit([])
