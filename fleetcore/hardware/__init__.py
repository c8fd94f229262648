"""Capability providers that implement hardware access behind connections and devices."""

from fleetcore.hardware.base import Adaptor, CapabilityProvider, Driver
from fleetcore.hardware.builtin import LoopbackAdaptor, PingDriver, TestAdaptor, TestDriver
from fleetcore.hardware.registry import ProviderRegistry, default_registry

__all__ = [
    "Adaptor",
    "CapabilityProvider",
    "Driver",
    "LoopbackAdaptor",
    "PingDriver",
    "TestAdaptor",
    "TestDriver",
    "ProviderRegistry",
    "default_registry",
]
