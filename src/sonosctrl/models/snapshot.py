"""Full per-group state published to the display layer."""

from dataclasses import dataclass

from sonosctrl.models.group import Group
from sonosctrl.models.track import PlayState, Track


@dataclass(frozen=True, slots=True)
class GroupSnapshot:
    """Everything the display layer needs to render one group.

    Attributes:
        group: The group topology snapshot.
        track: Current track, or None if unknown.
        state: Current play state.
        volume: Group volume 0-100.
        muted: Whether the group is muted.
    """

    group: Group
    track: Track | None = None
    state: PlayState = PlayState.UNKNOWN
    volume: int = 0
    muted: bool = False

    @property
    def group_id(self) -> str:
        """Alias for group.id."""
        return self.group.id

    @property
    def is_playing(self) -> bool:
        """Return True if the group is playing."""
        return self.state is PlayState.PLAYING
