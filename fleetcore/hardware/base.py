"""Capability provider contracts for adaptors and drivers."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger

from fleetcore.errors import UnknownCommand
from fleetcore.events import EventPublisher

Callback = Callable[[Any], Any]


class CapabilityProvider:
    """Unit implementing a named hardware capability.

    Subclasses list their invocable methods in ``commands``; only listed names
    are reachable through :meth:`invoke`.
    """

    name: str = "base"
    commands: list[str] = []

    def __init__(self, *, name: str | None = None, **options: Any) -> None:
        if name:
            self.name = str(name)
        self.commands = list(type(self).commands)
        self.options = dict(options)
        self.events = EventPublisher(owner=self)

    def list_commands(self) -> list[str]:
        return list(self.commands)

    def invoke(self, command: str, *args: Any, **kwargs: Any) -> Any:
        """Call a listed command with the given arguments."""
        if command not in self.commands:
            raise UnknownCommand(command, self)
        method = getattr(self, command, None)
        if not callable(method):
            raise UnknownCommand(command, self)
        return method(*args, **kwargs)

    def emit(self, event: str, payload: Any = None) -> int:
        return self.events.publish(event, payload)

    @property
    def implementation(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return f"[{type(self).__name__} name='{self.name}']"


class Adaptor(CapabilityProvider):
    """Low-level transport to one physical connection (serial, radio, loopback)."""

    def __init__(self, *, connection: Any = None, **options: Any) -> None:
        super().__init__(**options)
        self.connection = connection
        self.connected = False

    def connect(self, callback: Callback | None = None) -> Any:
        logger.info(f"Connecting to adaptor '{self.name}'")
        self.connected = True
        if callback is not None:
            callback(None)
        self.emit("connect")
        return True

    def disconnect(self) -> Any:
        logger.info(f"Disconnecting from adaptor '{self.name}'")
        was_connected = self.connected
        self.connected = False
        if was_connected:
            self.emit("disconnect")
        return True


class Driver(CapabilityProvider):
    """Device-specific protocol layered atop a connection."""

    def __init__(self, *, device: Any = None, **options: Any) -> None:
        super().__init__(**options)
        self.device = device
        self.connection = getattr(device, "connection", None)

    def start(self, callback: Callback | None = None) -> Any:
        logger.info(f"Driver {self.name} started")
        if callback is not None:
            callback(None)
        self.emit("start")
        return True

    def halt(self) -> Any:
        logger.info(f"Driver {self.name} halted")
        return True
