"""Device handle binding a robot to one driver instance."""

from __future__ import annotations

import random
from collections.abc import Callable
from typing import Any

from loguru import logger

from fleetcore.errors import UnknownCommand
from fleetcore.events import EventPublisher
from fleetcore.hardware.base import Callback, Driver
from fleetcore.hardware.registry import ProviderRegistry
from fleetcore.runtime.connection import Connection
from fleetcore.runtime.specs import DeviceSpec


def random_device_id() -> int:
    return random.randint(0, 9999)


class Device:
    """One logical piece of hardware (a motor, an LED, a Sphero body).

    Driver events are republished on ``events`` so subscribers only need the
    device.
    """

    def __init__(
        self,
        spec: DeviceSpec | dict[str, Any],
        *,
        robot: Any = None,
        connection: Connection | None = None,
        registry: ProviderRegistry,
        id_factory: Callable[[], Any] | None = None,
    ) -> None:
        if isinstance(spec, dict):
            spec = DeviceSpec.from_dict(spec)
        self.robot = robot
        self.name = spec.name
        self.pin = spec.pin
        self.connection = connection
        self.device_id = spec.id if spec.id is not None else (id_factory or random_device_id)()
        self.events = EventPublisher(owner=self)
        logger.debug(f"Loading driver '{spec.driver}'")
        driver_cls = registry.driver(spec.driver)
        self._driver: Driver = driver_cls(
            device=self,
            name=spec.name,
            pin=spec.pin,
            **spec.options,
        )
        self._driver.events.subscribe_any(self.events.publish)

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def commands(self) -> list[str]:
        return self._driver.list_commands()

    def invoke(self, command: str, *args: Any, **kwargs: Any) -> Any:
        if command not in self._driver.list_commands():
            raise UnknownCommand(command, self)
        return self._driver.invoke(command, *args, **kwargs)

    def start(self, callback: Callback | None = None) -> Any:
        msg = f"Starting device {self.name}"
        if self.pin is not None:
            msg += f" on pin {self.pin}"
        logger.info(msg)
        return self._driver.start(callback)

    def halt(self) -> Any:
        logger.info(f"Halting device {self.name}")
        return self._driver.halt()

    def data(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "driver": self._driver.implementation,
            "pin": self.pin,
            "connection": self.connection.data() if self.connection is not None else None,
            "commands": self.commands,
        }

    def __getattr__(self, item: str) -> Any:
        driver = self.__dict__.get("_driver")
        if driver is not None and item in driver.commands:
            def _proxy(*args: Any, **kwargs: Any) -> Any:
                return self.invoke(item, *args, **kwargs)

            _proxy.__name__ = item
            return _proxy
        raise AttributeError(f"{type(self).__name__!s} has no attribute or command '{item}'")

    def __str__(self) -> str:
        return f"[Device name='{self.name}']"
