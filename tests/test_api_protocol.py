"""Tests for the device service interface types."""

import pytest

from sonosctrl.api.protocol import (
    DeviceListener,
    DiscoveryError,
    NoGroupDataError,
    OperationTimeoutError,
    SonosError,
    SubscriptionError,
    TopologyError,
)
from sonosctrl.models.track import PlayState


class TestErrors:
    """Tests for the error hierarchy."""

    @pytest.mark.parametrize(
        "error_cls",
        [OperationTimeoutError, DiscoveryError, SubscriptionError, TopologyError, NoGroupDataError],
    )
    def test_all_are_sonos_errors(self, error_cls: type[SonosError]) -> None:
        """Test every service error derives from SonosError."""
        assert issubclass(error_cls, SonosError)

    def test_timeout_is_builtin_timeout(self) -> None:
        """Test timeouts can be caught as TimeoutError."""
        with pytest.raises(TimeoutError, match="too slow"):
            raise OperationTimeoutError("too slow")


class TestDeviceListener:
    """Tests for the push callback bundle."""

    def test_callbacks_invoked(self) -> None:
        """Test each callback receives its own field."""
        received: list[object] = []
        listener = DeviceListener(
            on_track_changed=received.append,
            on_volume_changed=received.append,
            on_muted_changed=received.append,
            on_state_changed=received.append,
            on_error=received.append,
        )

        listener.on_volume_changed(12)
        listener.on_state_changed(PlayState.STOPPED)

        assert received == [12, PlayState.STOPPED]

    def test_frozen(self) -> None:
        """Test listeners cannot be rewired after creation."""
        listener = DeviceListener(*(lambda _: None for _ in range(5)))
        with pytest.raises(AttributeError):
            listener.on_error = print  # type: ignore[misc]
