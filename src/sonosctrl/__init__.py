"""SonosCTRL - live playback state synchronization for Sonos groups."""

__version__ = "0.1.0"
