"""Change detection shared by push events and poll cycles.

Push events arrive one field at a time while a poll cycle delivers four
independently settled results, so each field is reconciled on its own:
a missing field never touches the stored value and never emits.
"""

from dataclasses import dataclass
from enum import StrEnum

from sonosctrl.core.health import HealthRecord
from sonosctrl.core.timeouts import Outcome
from sonosctrl.models.group import Group
from sonosctrl.models.track import PlayState, Track


class ChangeField(StrEnum):
    """Field of a group's live state."""

    TRACK = "track"
    VOLUME = "volume"
    MUTED = "muted"
    STATE = "state"


FieldValue = Track | int | bool | PlayState


@dataclass(frozen=True, slots=True)
class Observation:
    """A snapshot of zero to four fields; None means the fetch failed.

    Attributes:
        track: Observed track.
        volume: Observed volume 0-100.
        muted: Observed mute state.
        state: Observed play state.
    """

    track: Track | None = None
    volume: int | None = None
    muted: bool | None = None
    state: PlayState | None = None

    @property
    def is_empty(self) -> bool:
        """Return True if no field is present."""
        return (
            self.track is None
            and self.volume is None
            and self.muted is None
            and self.state is None
        )

    @classmethod
    def from_outcomes(
        cls,
        track: Outcome[Track],
        volume: Outcome[int],
        muted: Outcome[bool],
        state: Outcome[PlayState],
    ) -> "Observation":
        """Build an observation from settled fetches, keeping only successes."""
        return cls(
            track=track.get(),
            volume=volume.get(),
            muted=muted.get(),
            state=state.get(),
        )


@dataclass(frozen=True, slots=True)
class FieldChange:
    """One field whose value changed."""

    field: ChangeField
    value: FieldValue


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Change notification published to the display layer.

    Attributes:
        group_id: The changed group.
        group: Topology snapshot of the group.
        field: Which field changed.
        value: The new value.
    """

    group_id: str
    group: Group
    field: ChangeField
    value: FieldValue


def apply_observation(record: HealthRecord, observation: Observation) -> list[FieldChange]:
    """Reconcile an observation with a health record.

    Fields are handled in the order track, volume, muted, state. A present
    field that differs from the stored value updates the record and yields
    one change. Tracks compare by (title, artist, album, duration).

    Args:
        record: The group's health record (mutated in place).
        observation: The new observation.

    Returns:
        The changes, one per changed field.
    """
    changes: list[FieldChange] = []

    track = observation.track
    if track is not None and (record.last_track is None or record.last_track != track):
        record.last_track = track
        changes.append(FieldChange(ChangeField.TRACK, track))

    volume = observation.volume
    if volume is not None and record.last_volume != volume:
        record.last_volume = volume
        changes.append(FieldChange(ChangeField.VOLUME, volume))

    muted = observation.muted
    if muted is not None and record.last_muted != muted:
        record.last_muted = muted
        changes.append(FieldChange(ChangeField.MUTED, muted))

    state = observation.state
    if state is not None and record.play_state != state:
        record.play_state = state
        changes.append(FieldChange(ChangeField.STATE, state))

    return changes
