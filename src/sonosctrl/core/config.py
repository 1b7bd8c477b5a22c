"""Configuration manager using QSettings for persistent storage."""

import logging
from typing import cast

from PySide6.QtCore import QSettings

from sonosctrl.models.settings import ListenMode, SyncConfig, Timeouts

logger = logging.getLogger(__name__)

# General
_KEY_MODE = "mode"
_KEY_ROOMS = "rooms"
_KEY_HOST = "host"
_KEY_DEBUG = "debug"

# Polling
_KEY_POLL_PLAYING = "polling/interval_playing"
_KEY_POLL_IDLE = "polling/interval_idle"
_KEY_POLL_FIXED = "polling/interval"
_KEY_MAX_FAILURES = "polling/max_consecutive_failures"

# Subscriptions
_KEY_CHECK_INTERVAL = "subscriptions/check_interval"
_KEY_AUTO_RESUBSCRIBE = "subscriptions/auto_resubscribe"

# Recovery
_KEY_REDISCOVERY_DELAY = "recovery/rediscovery_delay"
_KEY_BACKOFF_BASE = "recovery/backoff_base"
_KEY_BACKOFF_CAP = "recovery/backoff_cap"
_KEY_PIPELINE_RETRY = "recovery/pipeline_retry_delay"

# Timeouts
_KEY_TIMEOUT_DISCOVERY = "timeouts/discovery"
_KEY_TIMEOUT_SUBSCRIBE = "timeouts/subscribe"
_KEY_TIMEOUT_API_CALL = "timeouts/api_call"
_KEY_TIMEOUT_TOPOLOGY = "timeouts/topology"

# (key, attribute, minimum, maximum)
_FLOAT_SETTINGS = (
    (_KEY_POLL_PLAYING, "polling_interval_playing", 0.0, 3600.0),
    (_KEY_POLL_IDLE, "polling_interval_idle", 1.0, 3600.0),
    (_KEY_POLL_FIXED, "polling_interval", 1.0, 3600.0),
    (_KEY_CHECK_INTERVAL, "subscription_check_interval", 0.0, 86400.0),
    (_KEY_REDISCOVERY_DELAY, "rediscovery_delay", 0.0, 300.0),
    (_KEY_BACKOFF_BASE, "discovery_backoff_base", 0.1, 60.0),
    (_KEY_BACKOFF_CAP, "discovery_backoff_cap", 1.0, 3600.0),
    (_KEY_PIPELINE_RETRY, "pipeline_retry_delay", 1.0, 3600.0),
)

_TIMEOUT_SETTINGS = (
    (_KEY_TIMEOUT_DISCOVERY, "discovery"),
    (_KEY_TIMEOUT_SUBSCRIBE, "subscribe"),
    (_KEY_TIMEOUT_API_CALL, "api_call"),
    (_KEY_TIMEOUT_TOPOLOGY, "topology"),
)
_TIMEOUT_MIN = 1.0
_TIMEOUT_MAX = 120.0


def parse_rooms(raw: object) -> tuple[str, ...]:
    """Normalize a room allow-list from settings or the command line.

    Accepts a comma-separated string or a list; blank entries and
    non-strings are dropped.
    """
    if isinstance(raw, str):
        items: list[object] = list(raw.split(","))
    elif isinstance(raw, list | tuple):
        items = list(cast(list[object], raw))
    else:
        return ()
    return tuple(item.strip() for item in items if isinstance(item, str) and item.strip())


class ConfigManager:
    """Wrapper around QSettings mapping stored values to SyncConfig.

    QSettings stores config in platform-specific locations:
    - Windows: HKEY_CURRENT_USER\\Software\\SonosCTRL\\SonosCTRL
    - macOS: ~/Library/Preferences/com.SonosCTRL.SonosCTRL.plist
    - Linux: ~/.config/SonosCTRL/SonosCTRL.conf

    Example:
        config = ConfigManager()
        settings = config.load()
        config.save(replace(settings, rooms=("Kitchen",)))
    """

    def __init__(self, organization: str = "SonosCTRL", application: str = "SonosCTRL") -> None:
        """Initialize the config manager.

        Args:
            organization: Organization name for QSettings.
            application: Application name for QSettings.
        """
        self._settings = QSettings(organization, application)

    @property
    def settings(self) -> QSettings:
        """Return the underlying QSettings instance."""
        return self._settings

    def load(self) -> SyncConfig:
        """Load the stored settings, clamping every value into range.

        Returns:
            A SyncConfig; missing keys take their defaults.
        """
        defaults = SyncConfig()
        values: dict[str, object] = {}
        for key, attribute, low, high in _FLOAT_SETTINGS:
            values[attribute] = self._get_float(key, getattr(defaults, attribute), low, high)

        timeouts = {
            attribute: self._get_float(
                key, getattr(defaults.timeouts, attribute), _TIMEOUT_MIN, _TIMEOUT_MAX
            )
            for key, attribute in _TIMEOUT_SETTINGS
        }

        host = self._settings.value(_KEY_HOST, "", str)
        config = SyncConfig(
            mode=ListenMode.parse(self._settings.value(_KEY_MODE, defaults.mode.value, str)),
            rooms=parse_rooms(self._settings.value(_KEY_ROOMS, [])),
            host=str(host).strip() if host else "",
            max_consecutive_failures=self._get_int(
                _KEY_MAX_FAILURES, defaults.max_consecutive_failures, 1, 100
            ),
            auto_resubscribe=bool(
                self._settings.value(_KEY_AUTO_RESUBSCRIBE, defaults.auto_resubscribe, bool)
            ),
            debug=bool(self._settings.value(_KEY_DEBUG, defaults.debug, bool)),
            timeouts=Timeouts(**timeouts),
            **values,  # type: ignore[arg-type]
        )
        logger.debug("Loaded settings: %s", config)
        return config

    def save(self, config: SyncConfig) -> None:
        """Persist a SyncConfig.

        Args:
            config: Settings to store.
        """
        self._settings.setValue(_KEY_MODE, config.mode.value)
        self._settings.setValue(_KEY_ROOMS, list(config.rooms))
        self._settings.setValue(_KEY_HOST, config.host)
        self._settings.setValue(_KEY_DEBUG, config.debug)
        self._settings.setValue(_KEY_MAX_FAILURES, config.max_consecutive_failures)
        self._settings.setValue(_KEY_AUTO_RESUBSCRIBE, config.auto_resubscribe)
        for key, attribute, _, _ in _FLOAT_SETTINGS:
            self._settings.setValue(key, float(getattr(config, attribute)))
        for key, attribute in _TIMEOUT_SETTINGS:
            self._settings.setValue(key, float(getattr(config.timeouts, attribute)))

    def _get_float(self, key: str, default: float, low: float, high: float) -> float:
        try:
            value = float(self._settings.value(key, default))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Invalid value for %s, using default %s", key, default)
            return default
        return max(low, min(high, value))

    def _get_int(self, key: str, default: int, low: int, high: int) -> int:
        try:
            value = int(self._settings.value(key, default))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Invalid value for %s, using default %s", key, default)
            return default
        return max(low, min(high, value))

    def clear(self) -> None:
        """Clear all settings (useful for testing or reset)."""
        self._settings.clear()

    def sync(self) -> None:
        """Force settings to be written to disk."""
        self._settings.sync()
