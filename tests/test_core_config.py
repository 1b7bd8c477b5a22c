"""Tests for ConfigManager using QSettings."""

from dataclasses import replace

import pytest

from sonosctrl.core.config import ConfigManager, parse_rooms
from sonosctrl.models.settings import ListenMode, SyncConfig, Timeouts


@pytest.fixture
def config() -> ConfigManager:
    """Return a fresh ConfigManager for each test."""
    # Use unique organization/app to avoid test interference
    config = ConfigManager("SonosCTRLTest", "TestConfig")
    config.clear()
    return config


class TestParseRooms:
    """Tests for room list normalization."""

    def test_comma_string(self) -> None:
        """Test comma-separated strings are split and stripped."""
        assert parse_rooms(" Kitchen, Den ,,") == ("Kitchen", "Den")

    def test_list(self) -> None:
        """Test lists keep only non-blank strings."""
        assert parse_rooms(["Kitchen", 3, " ", "Den"]) == ("Kitchen", "Den")

    def test_other_types(self) -> None:
        """Test unsupported values give an empty allow-list."""
        assert parse_rooms(None) == ()
        assert parse_rooms(42) == ()


class TestConfigManager:
    """Test loading and saving settings."""

    def test_defaults(self, config: ConfigManager) -> None:
        """Test an empty store loads the defaults."""
        assert config.load() == SyncConfig()

    def test_round_trip(self, config: ConfigManager) -> None:
        """Test saved settings load back unchanged."""
        saved = SyncConfig(
            mode=ListenMode.POLLING,
            rooms=("Kitchen", "Den"),
            host="192.168.1.20",
            polling_interval=7.5,
            max_consecutive_failures=5,
            auto_resubscribe=False,
            timeouts=Timeouts(discovery=20.0, subscribe=3.0, api_call=4.0, topology=8.0),
            debug=True,
        )
        config.save(saved)

        assert config.load() == saved

    def test_single_room(self, config: ConfigManager) -> None:
        """Test a one-room allow-list survives storage."""
        config.save(replace(SyncConfig(), rooms=("Kitchen",)))
        assert config.load().rooms == ("Kitchen",)

    def test_rooms_as_string(self, config: ConfigManager) -> None:
        """Test a hand-edited comma list is accepted."""
        config.settings.setValue("rooms", "Kitchen, Den")
        assert config.load().rooms == ("Kitchen", "Den")

    def test_values_clamped(self, config: ConfigManager) -> None:
        """Test out-of-range values are clamped."""
        config.settings.setValue("polling/interval_idle", 0)
        config.settings.setValue("recovery/backoff_cap", 99999)
        config.settings.setValue("polling/max_consecutive_failures", 0)
        config.settings.setValue("timeouts/api_call", 500)

        loaded = config.load()

        assert loaded.polling_interval_idle == 1.0
        assert loaded.discovery_backoff_cap == 3600.0
        assert loaded.max_consecutive_failures == 1
        assert loaded.timeouts.api_call == 120.0

    def test_invalid_number_uses_default(self, config: ConfigManager) -> None:
        """Test unparsable numbers fall back to defaults."""
        config.settings.setValue("polling/interval_playing", "fast")
        config.settings.setValue("polling/max_consecutive_failures", "many")

        loaded = config.load()

        assert loaded.polling_interval_playing == SyncConfig().polling_interval_playing
        assert loaded.max_consecutive_failures == SyncConfig().max_consecutive_failures

    def test_invalid_mode(self, config: ConfigManager) -> None:
        """Test an unknown mode falls back to hybrid."""
        config.settings.setValue("mode", "telepathy")
        assert config.load().mode is ListenMode.HYBRID

    def test_zero_playing_interval_allowed(self, config: ConfigManager) -> None:
        """Test polling can be disabled through the playing interval."""
        config.settings.setValue("polling/interval_playing", 0)

        loaded = config.load()

        assert loaded.polling_interval_playing == 0.0
        assert not loaded.polling_enabled
