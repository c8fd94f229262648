"""Process registry of robots and owner of the API server."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from fleetcore.config.schema import ApiConfig, Config
from fleetcore.errors import ConfigurationError, lookup_error
from fleetcore.hardware.registry import ProviderRegistry, default_registry
from fleetcore.runtime.connection import Connection
from fleetcore.runtime.device import Device
from fleetcore.runtime.robot import Robot, random_name

if TYPE_CHECKING:
    from fleetcore.api.server import ApiServer

LookupCallback = Callable[[dict[str, str] | None, Any], Any]

NAME_ATTEMPTS = 10


class Master:
    """Owns robots in registration order and the lazily created API server.

    Lookups come in two forms: without a callback they return the match or
    ``None``; with a callback they call ``callback(error, match)`` where
    ``error`` is ``None`` on success or ``{"error": message}`` on failure,
    and return whatever the callback returns.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry | None = None,
        api_config: ApiConfig | dict[str, Any] | None = None,
        name_factory: Callable[[], str] | None = None,
        id_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._robots: list[Robot] = []
        self._threads: list[threading.Thread] = []
        self.registry = registry if registry is not None else default_registry()
        if isinstance(api_config, dict):
            api_config = ApiConfig.model_validate(api_config)
        self._api_config = api_config or ApiConfig()
        self._api_server: ApiServer | None = None
        self.name_factory = name_factory
        self.id_factory = id_factory

    @classmethod
    def from_config(cls, config: Config, *, registry: ProviderRegistry | None = None) -> "Master":
        master = cls(registry=registry, api_config=config.api)
        for entry in config.robots:
            master.robot(entry)
        return master

    @property
    def robots(self) -> list[Robot]:
        with self._lock:
            return list(self._robots)

    @property
    def api_server(self) -> ApiServer | None:
        return self._api_server

    def robot(self, config: dict[str, Any] | None = None, **fields: Any) -> Robot:
        """Build a robot from a configuration record and register it."""
        options = {**(config or {}), **fields}
        options.pop("master", None)
        options.setdefault("name_factory", self.name_factory)
        options.setdefault("id_factory", self.id_factory)
        options.setdefault("registry", self.registry)
        name = options.get("name")
        if not name:
            options["name"] = self._unused_name(options["name_factory"] or random_name)
        elif self.find_robot(str(name)) is not None:
            raise ConfigurationError(f"A robot named '{name}' is already registered")
        return self.add_robot(Robot(master=self, **options))

    def _unused_name(self, factory: Callable[[], str]) -> str:
        for _ in range(NAME_ATTEMPTS):
            candidate = str(factory())
            if self.find_robot(candidate) is None:
                return candidate
            logger.debug(f"Generated robot name '{candidate}' is taken, retrying")
        raise ConfigurationError(f"No unused robot name after {NAME_ATTEMPTS} attempts")

    def add_robot(self, bot: Any) -> Any:
        """Register an already constructed robot; names must be unique."""
        with self._lock:
            if any(existing.name == bot.name for existing in self._robots):
                raise ConfigurationError(f"A robot named '{bot.name}' is already registered")
            self._robots.append(bot)
        logger.debug(f"Registered {bot}")
        return bot

    def find_robot(self, name: str, callback: LookupCallback | None = None) -> Any:
        with self._lock:
            bot = next((r for r in self._robots if r.name == name), None)
        if callback is None:
            return bot
        if bot is None:
            return callback(lookup_error(f"No Robot found with the name {name}"), None)
        return callback(None, bot)

    def find_robot_device(
        self,
        robot_name: str,
        device_name: str,
        callback: LookupCallback | None = None,
    ) -> Any:
        error, device = self._find_member(robot_name, device_name, "device")
        if callback is None:
            return device
        return callback(error, device)

    def find_robot_connection(
        self,
        robot_name: str,
        connection_name: str,
        callback: LookupCallback | None = None,
    ) -> Any:
        error, connection = self._find_member(robot_name, connection_name, "connection")
        if callback is None:
            return connection
        return callback(error, connection)

    def api(self, config: dict[str, Any] | None = None, **fields: Any) -> ApiConfig:
        """Merge the given API fields into the current configuration and return it."""
        updates = {**(config or {}), **fields}
        with self._lock:
            if updates:
                self._api_config = self._api_config.merged(updates)
            return self._api_config

    def start_api(self) -> ApiServer:
        from fleetcore.api.server import ApiServer

        with self._lock:
            if self._api_server is None:
                self._api_server = ApiServer(master=self, config=self._api_config)
                self._api_server.listen()
            return self._api_server

    def stop_api(self) -> None:
        with self._lock:
            server, self._api_server = self._api_server, None
        if server is not None:
            server.stop()

    def start(self) -> list[threading.Thread]:
        """Start the API, then every robot on its own thread in registration order."""
        self.start_api()
        started: list[threading.Thread] = []
        for bot in self.robots:
            thread = threading.Thread(
                target=self._run_robot,
                args=(bot,),
                name=f"robot-{bot.name}",
                daemon=True,
            )
            thread.start()
            started.append(thread)
        with self._lock:
            self._threads.extend(started)
        return started

    def join(self, timeout: float | None = None) -> None:
        """Wait for robot start threads (work callbacks included) to return."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout=timeout)

    def halt(self) -> None:
        for bot in self.robots:
            bot.halt()

    def _run_robot(self, bot: Any) -> None:
        try:
            bot.start()
        except Exception as e:
            logger.exception(f"{bot} failed while working: {e}")

    def _find_member(
        self,
        robot_name: str,
        member_name: str,
        kind: str,
    ) -> tuple[dict[str, str] | None, Device | Connection | None]:
        bot = self.find_robot(robot_name)
        if bot is None:
            return lookup_error(f"No Robot found with the name {robot_name}"), None
        members = bot.devices if kind == "device" else bot.connections
        member = members.get(member_name)
        if member is None:
            return lookup_error(f"No {kind} found with the name {member_name}."), None
        return None, member
