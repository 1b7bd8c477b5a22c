"""Group model for Sonos players playing in sync."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sonosctrl.api.protocol import SonosDevice


@dataclass(frozen=True, slots=True)
class GroupMember:
    """A player (room) belonging to a group.

    Attributes:
        uid: Stable player identifier.
        name: Room name shown to the user.
    """

    uid: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class Group:
    """A coordinated set of players acting as one playback unit.

    Attributes:
        id: Stable group identifier.
        name: Human-readable group name.
        members: Players in this group.
        host: Address of the group coordinator.
        coordinator: Device handle that controls the group.
    """

    id: str
    name: str = ""
    members: tuple[GroupMember, ...] = ()
    host: str = ""
    coordinator: SonosDevice | None = field(default=None, compare=False, repr=False)

    @property
    def member_names(self) -> list[str]:
        """Return the room names of all members."""
        return [m.name for m in self.members if m.name]

    @property
    def display_name(self) -> str:
        """Return the group name, falling back to the member names."""
        return self.name or " + ".join(self.member_names) or self.id

    def matches_rooms(self, rooms: Sequence[object]) -> bool:
        """Check the group against a room allow-list.

        Matching is case-insensitive against any member's room name.
        Non-string entries are ignored. An empty allow-list includes
        every group.

        Args:
            rooms: Allowed room names.

        Returns:
            True if the group should be tracked.
        """
        if not rooms:
            return True
        allowed = {r.lower() for r in rooms if isinstance(r, str)}
        return any(name.lower() in allowed for name in self.member_names)
