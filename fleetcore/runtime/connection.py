"""Connection handle binding a robot to one adaptor instance."""

from __future__ import annotations

import random
from collections.abc import Callable
from typing import Any

from loguru import logger

from fleetcore.errors import UnknownCommand
from fleetcore.events import EventPublisher
from fleetcore.hardware.base import Adaptor, Callback
from fleetcore.hardware.registry import ProviderRegistry
from fleetcore.runtime.specs import ConnectionSpec


def random_connection_id() -> int:
    return random.randint(0, 9999)


class Connection:
    """Interface to a group of hardware devices (an Arduino, a Sphero, a serial port)."""

    def __init__(
        self,
        spec: ConnectionSpec | dict[str, Any],
        *,
        robot: Any = None,
        registry: ProviderRegistry,
        id_factory: Callable[[], Any] | None = None,
    ) -> None:
        if isinstance(spec, dict):
            spec = ConnectionSpec.from_dict(spec)
        self.robot = robot
        self.name = spec.name
        self.port = spec.port
        self.connection_id = spec.id if spec.id is not None else (id_factory or random_connection_id)()
        self.events = EventPublisher(owner=self)
        logger.debug(f"Loading adaptor '{spec.adaptor}'")
        adaptor_cls = registry.adaptor(spec.adaptor)
        self._adaptor: Adaptor = adaptor_cls(
            connection=self,
            name=spec.name,
            port=spec.port,
            **spec.options,
        )
        self._adaptor.events.subscribe_any(self.events.publish)
        self._halted = False

    @property
    def adaptor(self) -> Adaptor:
        return self._adaptor

    @property
    def commands(self) -> list[str]:
        return self._adaptor.list_commands()

    def invoke(self, command: str, *args: Any, **kwargs: Any) -> Any:
        if command not in self._adaptor.list_commands():
            raise UnknownCommand(command, self)
        return self._adaptor.invoke(command, *args, **kwargs)

    def connect(self, callback: Callback | None = None) -> Any:
        logger.info(self._message("Connecting to"))
        self._halted = False
        return self._adaptor.connect(callback)

    def disconnect(self) -> Any:
        logger.info(self._message("Disconnecting from"))
        return self._adaptor.disconnect()

    def halt(self) -> Any:
        """Disconnect; repeat calls and never-connected connections are no-ops."""
        if self._halted:
            return None
        logger.info(self._message("Halting adaptor"))
        self._halted = True
        return self.disconnect()

    def data(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "port": self.port,
            "adaptor": self._adaptor.implementation,
            "connection_id": self.connection_id,
        }

    def __getattr__(self, item: str) -> Any:
        adaptor = self.__dict__.get("_adaptor")
        if adaptor is not None and item in adaptor.commands:
            def _proxy(*args: Any, **kwargs: Any) -> Any:
                return self.invoke(item, *args, **kwargs)

            _proxy.__name__ = item
            return _proxy
        raise AttributeError(f"{type(self).__name__!s} has no attribute or command '{item}'")

    def _message(self, verb: str) -> str:
        msg = f"{verb} {self.name}"
        if self.port is not None:
            msg += f" on port {self.port}"
        return msg

    def __str__(self) -> str:
        return f"[Connection name='{self.name}']"
