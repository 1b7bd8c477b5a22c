"""Per-group health records: last observed values and failure counters."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sonosctrl.models.track import PlayState, Track

if TYPE_CHECKING:
    from sonosctrl.api.protocol import SonosDevice
    from sonosctrl.models.group import Group


@dataclass(slots=True)
class HealthRecord:
    """Last-known state of one tracked group.

    Attributes:
        group_id: The group this record belongs to.
        device: Subscribed device handle, None until the push subscription succeeded.
        play_state: Last observed play state.
        last_track: Last observed track.
        last_volume: Last observed volume 0-100.
        last_muted: Last observed mute state.
        consecutive_failures: Poll cycles in a row where every fetch failed.
    """

    group_id: str
    device: SonosDevice | None = None
    play_state: PlayState = PlayState.UNKNOWN
    last_track: Track | None = None
    last_volume: int | None = None
    last_muted: bool | None = None
    consecutive_failures: int = 0

    @property
    def is_playing(self) -> bool:
        """Return True if the group was last seen playing."""
        return self.play_state is PlayState.PLAYING


class HealthStore:
    """Health records keyed by group ID.

    A record exists exactly while its group is tracked. The whole set is
    created by ``init_all`` and destroyed by ``clear_all``; records are
    never shared between two sets of groups.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._records: dict[str, HealthRecord] = {}

    def get(self, group_id: str) -> HealthRecord | None:
        """Return the record for a group, or None if it is not tracked."""
        return self._records.get(group_id)

    def init_all(self, groups: Iterable[Group]) -> None:
        """Replace all records with fresh ones for ``groups``."""
        self._records = {g.id: HealthRecord(group_id=g.id) for g in groups}

    def clear_all(self) -> None:
        """Destroy every record."""
        self._records = {}

    def any_playing(self) -> bool:
        """Return True if any tracked group is playing."""
        return any(r.is_playing for r in self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._records

    def __iter__(self) -> Iterator[HealthRecord]:
        return iter(list(self._records.values()))
