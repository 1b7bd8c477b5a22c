"""Core synchronization engine.

This module contains the asyncio engine that keeps group state live and
the Qt objects that bridge it to the display layer.

Classes:
    SonosSync: Engine facade (discovery, polling, health checks, recovery).
    SonosWorker: QThread hosting the engine's event loop.
    StateStore: Display-side mirror of the published snapshots.
    ConfigManager: QSettings wrapper for configuration.
"""

from sonosctrl.core.config import ConfigManager
from sonosctrl.core.engine import SonosSync
from sonosctrl.core.state import StateStore
from sonosctrl.core.worker import SonosWorker

__all__ = ["ConfigManager", "SonosSync", "SonosWorker", "StateStore"]
