"""Name -> implementation registry for adaptors and drivers."""

from __future__ import annotations

import threading

from loguru import logger

from fleetcore.errors import ConfigurationError
from fleetcore.hardware.base import Adaptor, Driver
from fleetcore.hardware.builtin import LoopbackAdaptor, PingDriver, TestAdaptor, TestDriver


class ProviderRegistry:
    """Resolves adaptor/driver names given in robot configurations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._adaptors: dict[str, type[Adaptor]] = {}
        self._drivers: dict[str, type[Driver]] = {}

    @property
    def adaptors(self) -> dict[str, type[Adaptor]]:
        with self._lock:
            return dict(self._adaptors)

    @property
    def drivers(self) -> dict[str, type[Driver]]:
        with self._lock:
            return dict(self._drivers)

    def register_adaptor(self, name: str, cls: type[Adaptor]) -> None:
        if not (isinstance(cls, type) and issubclass(cls, Adaptor)):
            raise TypeError(f"adaptor '{name}' must subclass Adaptor")
        with self._lock:
            self._adaptors[str(name)] = cls
        logger.debug(f"Registered adaptor '{name}'")

    def register_driver(self, name: str, cls: type[Driver]) -> None:
        if not (isinstance(cls, type) and issubclass(cls, Driver)):
            raise TypeError(f"driver '{name}' must subclass Driver")
        with self._lock:
            self._drivers[str(name)] = cls
        logger.debug(f"Registered driver '{name}'")

    def adaptor(self, name: str | None) -> type[Adaptor]:
        with self._lock:
            cls = self._adaptors.get(str(name or ""))
        if cls is None:
            raise ConfigurationError(f"Unable to load adaptor '{name}'")
        return cls

    def driver(self, name: str | None) -> type[Driver]:
        with self._lock:
            cls = self._drivers.get(str(name or ""))
        if cls is None:
            raise ConfigurationError(f"Unable to load driver '{name}'")
        return cls

    def copy(self) -> "ProviderRegistry":
        clone = ProviderRegistry()
        clone._adaptors = self.adaptors
        clone._drivers = self.drivers
        return clone


def default_registry() -> ProviderRegistry:
    """Fresh registry preloaded with the built-in providers."""
    registry = ProviderRegistry()
    registry.register_adaptor("loopback", LoopbackAdaptor)
    registry.register_adaptor("test", TestAdaptor)
    registry.register_driver("ping", PingDriver)
    registry.register_driver("test", TestDriver)
    return registry
