"""Data models for Sonos groups, tracks, snapshots and settings."""

from sonosctrl.models.group import Group, GroupMember
from sonosctrl.models.settings import ListenMode, SyncConfig, Timeouts
from sonosctrl.models.snapshot import GroupSnapshot
from sonosctrl.models.track import PlayState, Track

__all__ = [
    "Group",
    "GroupMember",
    "GroupSnapshot",
    "ListenMode",
    "PlayState",
    "SyncConfig",
    "Timeouts",
    "Track",
]
