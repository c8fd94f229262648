"""Runtime graph: master registry, robots, connections and devices."""

from fleetcore.runtime.connection import Connection
from fleetcore.runtime.device import Device
from fleetcore.runtime.master import Master
from fleetcore.runtime.robot import RESERVED_NAMES, Robot, RobotState, random_name
from fleetcore.runtime.specs import ConnectionSpec, DeviceSpec, normalize_specs

__all__ = [
    "Connection",
    "ConnectionSpec",
    "Device",
    "DeviceSpec",
    "Master",
    "RESERVED_NAMES",
    "Robot",
    "RobotState",
    "normalize_specs",
    "random_name",
]
