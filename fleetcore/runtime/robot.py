"""Robot aggregate: named connections, named devices and a work callback."""

from __future__ import annotations

import random
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from loguru import logger

from fleetcore.errors import ConfigurationError, UnknownCommand
from fleetcore.events import EventPublisher
from fleetcore.hardware.registry import ProviderRegistry, default_registry
from fleetcore.runtime.connection import Connection
from fleetcore.runtime.device import Device
from fleetcore.runtime.specs import ConnectionSpec, DeviceSpec, normalize_specs

WorkCallback = Callable[["Robot"], Any]
Failure = tuple[str, str, Any]


def random_name() -> str:
    return f"Robot {random.randint(0, 100000)}"


class RobotState(StrEnum):
    """Lifecycle position of one robot."""

    CONSTRUCTED = "constructed"
    STARTING_CONNECTIONS = "starting_connections"
    STARTING_DEVICES = "starting_devices"
    WORKING = "working"
    HALTED = "halted"


class Robot:
    """A named aggregate of connections and devices driven as one unit.

    Device and connection commands are proxied onto the robot: they appear in
    ``commands`` and can be called through :meth:`invoke` or as attributes.
    Devices are also reachable as attributes by name so work callbacks can
    write ``my.sphero.roll(60, 90)``. When a device shares its name with a
    command, the attribute is the command; the device stays in ``devices``.
    """

    def __init__(
        self,
        name: str | None = None,
        *,
        connection: Any = None,
        connections: Any = None,
        device: Any = None,
        devices: Any = None,
        work: WorkCallback | None = None,
        commands: dict[str, Callable[..., Any]] | None = None,
        master: Any = None,
        registry: ProviderRegistry | None = None,
        name_factory: Callable[[], str] | None = None,
        id_factory: Callable[[], Any] | None = None,
        **extras: Any,
    ) -> None:
        self._lock = threading.RLock()
        self._name = str(name) if name else (name_factory or random_name)()
        self._work = work
        self._connections: dict[str, Connection] = {}
        self._devices: dict[str, Device] = {}
        self._command_owners: dict[str, Connection | Device] = {}
        self._commands: list[str] = []
        self._state = RobotState.CONSTRUCTED
        self._failures: list[Failure] = []
        self._id_factory = id_factory
        self.master = master
        self.registry = registry if registry is not None else default_registry()
        self.events = EventPublisher(owner=self)

        for key in extras:
            if key in RESERVED_NAMES:
                raise ConfigurationError(f"{self}: field '{key}' shadows a reserved robot attribute")
        self._extras = dict(extras)

        user_commands = dict(commands or {})
        for key, fn in user_commands.items():
            if not callable(fn):
                raise ConfigurationError(f"{self}: command '{key}' is not callable")
        self._user_commands = user_commands

        self.init_connections(_merge_specs(connection, connections))
        self.init_devices(_merge_specs(device, devices))
        self._rebuild_commands()

    @property
    def name(self) -> str:
        return self._name

    @property
    def work(self) -> WorkCallback | None:
        return self._work

    @property
    def state(self) -> RobotState:
        with self._lock:
            return self._state

    @property
    def connections(self) -> dict[str, Connection]:
        with self._lock:
            return dict(self._connections)

    @property
    def devices(self) -> dict[str, Device]:
        with self._lock:
            return dict(self._devices)

    @property
    def commands(self) -> list[str]:
        with self._lock:
            return list(self._commands)

    @property
    def failures(self) -> list[Failure]:
        with self._lock:
            return list(self._failures)

    def init_connections(self, specs: Any = None) -> list[Connection]:
        """Create connections from one spec or a list of specs."""
        created: list[Connection] = []
        for raw in normalize_specs(specs):
            spec = ConnectionSpec.from_dict(raw)
            with self._lock:
                if spec.name in self._connections:
                    raise ConfigurationError(f"{self}: duplicate connection name '{spec.name}'")
            conn = Connection(spec, robot=self, registry=self.registry, id_factory=self._id_factory)
            with self._lock:
                self._connections[spec.name] = conn
            created.append(conn)
        if created:
            self._rebuild_commands()
        return created

    def init_devices(self, specs: Any = None) -> list[Device]:
        """Create devices from one spec or a list of specs."""
        created: list[Device] = []
        for raw in normalize_specs(specs):
            spec = DeviceSpec.from_dict(raw)
            with self._lock:
                if spec.name in self._devices:
                    raise ConfigurationError(f"{self}: duplicate device name '{spec.name}'")
                connection = self._resolve_connection(spec)
            dev = Device(
                spec,
                robot=self,
                connection=connection,
                registry=self.registry,
                id_factory=self._id_factory,
            )
            with self._lock:
                self._devices[spec.name] = dev
            created.append(dev)
        if created:
            self._rebuild_commands()
        return created

    def start(self) -> None:
        """Connect, start devices, run work, then publish ``working``."""
        logger.info(f"Starting robot {self._name}")
        self._set_state(RobotState.STARTING_CONNECTIONS)
        self.start_connections()
        self._set_state(RobotState.STARTING_DEVICES)
        self.start_devices()
        self._set_state(RobotState.WORKING)
        logger.info(f"Robot {self._name} working")
        if self._work is not None:
            self._work(self)
        self.events.publish("working")

    def start_connections(self, callback: Callable[[list[Failure]], Any] | None = None) -> list[Failure]:
        logger.info(f"Starting connections for {self._name}")
        failures = self._start_each("connection", self.connections, "connect")
        if callback is not None:
            callback(failures)
        return failures

    def start_devices(self, callback: Callable[[list[Failure]], Any] | None = None) -> list[Failure]:
        logger.info(f"Starting devices for {self._name}")
        failures = self._start_each("device", self.devices, "start")
        if callback is not None:
            callback(failures)
        return failures

    def halt(self) -> None:
        for dev in self.devices.values():
            try:
                dev.halt()
            except Exception as e:
                logger.warning(f"{self}: device {dev.name} failed to halt: {e}")
        for conn in self.connections.values():
            try:
                conn.halt()
            except Exception as e:
                logger.warning(f"{self}: connection {conn.name} failed to halt: {e}")
        self._set_state(RobotState.HALTED)

    def invoke(self, command: str, *args: Any, **kwargs: Any) -> Any:
        """Run a robot-level command, or the device/connection command it proxies."""
        with self._lock:
            user_fn = self._user_commands.get(command)
            owner = self._command_owners.get(command)
        if user_fn is not None:
            return user_fn(self, *args, **kwargs)
        if owner is not None:
            return owner.invoke(command, *args, **kwargs)
        raise UnknownCommand(command, self)

    def data(self) -> dict[str, Any]:
        with self._lock:
            devices = list(self._devices.values())
            connections = list(self._connections.values())
            commands = list(self._commands)
        return {
            "name": self._name,
            "commands": commands,
            "devices": [d.data() for d in devices],
            "connections": [c.data() for c in connections],
        }

    def __getattr__(self, item: str) -> Any:
        state = self.__dict__
        extras = state.get("_extras") or {}
        if item in extras:
            return extras[item]
        if item in (state.get("_user_commands") or {}) or item in (state.get("_command_owners") or {}):
            def _proxy(*args: Any, **kwargs: Any) -> Any:
                return self.invoke(item, *args, **kwargs)

            _proxy.__name__ = item
            return _proxy
        devices = state.get("_devices") or {}
        if item in devices:
            return devices[item]
        raise AttributeError(f"Robot has no attribute, device or command '{item}'")

    def __str__(self) -> str:
        return f"[Robot name='{self._name}']"

    __repr__ = __str__

    def _resolve_connection(self, spec: DeviceSpec) -> Connection | None:
        if spec.connection:
            conn = self._connections.get(spec.connection)
            if conn is None:
                raise ConfigurationError(
                    f"{self}: device '{spec.name}' names unknown connection '{spec.connection}'"
                )
            return conn
        return next(iter(self._connections.values()), None)

    def _start_each(self, kind: str, members: dict[str, Any], method: str) -> list[Failure]:
        failures: list[Failure] = []

        def _record(name: str, error: Any) -> None:
            logger.warning(f"{self}: {kind} {name} failed to {method}: {error}")
            failure = (kind, name, error)
            failures.append(failure)
            with self._lock:
                self._failures.append(failure)

        for name, member in members.items():
            def _done(error: Any = None, *_: Any, _name: str = name) -> None:
                if error is not None:
                    _record(_name, error)

            try:
                getattr(member, method)(_done)
            except Exception as e:
                _record(name, e)
        return failures

    def _rebuild_commands(self) -> None:
        with self._lock:
            names: list[str] = []
            owners: dict[str, Connection | Device] = {}
            for command in self._user_commands:
                _check_reserved(self, command)
                names.append(command)
            members: list[Connection | Device] = [*self._devices.values(), *self._connections.values()]
            for member in members:
                for command in member.commands:
                    _check_reserved(self, command)
                    if command in self._user_commands:
                        continue
                    if command in owners:
                        if owners[command] is not member:
                            logger.warning(
                                f"{self}: command '{command}' of {member} is shadowed by {owners[command]}"
                            )
                        continue
                    owners[command] = member
                    names.append(command)
            for command in names:
                if command in self._devices:
                    logger.debug(
                        f"{self}: attribute '{command}' resolves to the command; "
                        f"use devices['{command}'] for the device"
                    )
            self._commands = names
            self._command_owners = owners

    def _set_state(self, state: RobotState) -> None:
        with self._lock:
            self._state = state


def _check_reserved(robot: Robot, command: str) -> None:
    if command in RESERVED_NAMES:
        raise ConfigurationError(f"{robot}: command '{command}' shadows a reserved robot attribute")


def _merge_specs(single: Any, many: Any) -> list[dict[str, Any]]:
    return normalize_specs(many) + normalize_specs(single)


RESERVED_NAMES = frozenset(
    {name for name in dir(Robot) if not name.startswith("_")} | {"master", "registry", "events"}
)
