"""
fleetcore - robot orchestration core with an HTTPS control API
"""

from fleetcore.errors import ConfigurationError, FleetError, UnknownCommand
from fleetcore.events import EventPublisher
from fleetcore.hardware import Adaptor, Driver, ProviderRegistry, default_registry
from fleetcore.runtime import Connection, Device, Master, Robot

__version__ = "0.1.0"

__all__ = [
    "Adaptor",
    "ConfigurationError",
    "Connection",
    "Device",
    "Driver",
    "EventPublisher",
    "FleetError",
    "Master",
    "ProviderRegistry",
    "Robot",
    "UnknownCommand",
    "default_registry",
]
