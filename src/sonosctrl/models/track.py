"""Track identity and play state models."""

from dataclasses import dataclass, field
from enum import StrEnum


class PlayState(StrEnum):
    """Playback state of a group."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> "PlayState":
        """Map a device transport state to a PlayState.

        Accepts UPnP transport states ("PLAYING", "PAUSED_PLAYBACK",
        "STOPPED") as well as the lowercase names. Anything else,
        including "TRANSITIONING", maps to UNKNOWN.
        """
        if isinstance(raw, PlayState):
            return raw
        value = str(raw or "").strip().lower()
        if value == "playing":
            return cls.PLAYING
        if value in ("paused", "paused_playback"):
            return cls.PAUSED
        if value == "stopped":
            return cls.STOPPED
        return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class Track:
    """Currently playing track.

    Equality only considers title, artist, album and duration. Streaming
    sources reuse one stream URI for many tracks, so ``uri`` and
    ``album_art_uri`` are carried along but never compared.

    Attributes:
        title: Track title.
        artist: Artist name.
        album: Album name.
        duration: Track duration in seconds (0 for streams).
        uri: Device-reported source URI.
        album_art_uri: Absolute album art URL, if any.
    """

    title: str = ""
    artist: str = ""
    album: str = ""
    duration: int = 0
    uri: str = field(default="", compare=False)
    album_art_uri: str = field(default="", compare=False)

    @property
    def identity(self) -> tuple[str, str, str, int]:
        """Return the (title, artist, album, duration) identity tuple."""
        return (self.title, self.artist, self.album, self.duration)

    @property
    def has_metadata(self) -> bool:
        """Return True if track has title or artist metadata."""
        return bool(self.title or self.artist)

    def __str__(self) -> str:
        if self.artist:
            return f'"{self.title}" by "{self.artist}"'
        return f'"{self.title}"'


def parse_duration(value: object) -> int:
    """Parse a "H:MM:SS" duration string into whole seconds.

    Returns 0 for empty, "NOT_IMPLEMENTED" or malformed values.
    """
    if isinstance(value, int | float):
        return max(0, int(value))
    text = str(value or "").strip()
    if not text:
        return 0
    seconds = 0
    try:
        for part in text.split(":"):
            seconds = seconds * 60 + int(float(part))
    except ValueError:
        return 0
    return max(0, seconds)
