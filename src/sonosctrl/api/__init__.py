"""Device service interface and its SoCo/mDNS implementation."""

from sonosctrl.api.protocol import (
    DeviceListener,
    DiscoveryError,
    NoGroupDataError,
    OperationTimeoutError,
    SonosDevice,
    SonosError,
    SonosService,
    SubscriptionError,
    TopologyError,
)

__all__ = [
    "DeviceListener",
    "DiscoveryError",
    "NoGroupDataError",
    "OperationTimeoutError",
    "SonosDevice",
    "SonosError",
    "SonosService",
    "SubscriptionError",
    "TopologyError",
]
