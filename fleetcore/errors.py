"""Exception taxonomy shared by runtime, providers and the API server."""

from __future__ import annotations

from typing import Any


class FleetError(Exception):
    """Base class for fleetcore errors."""


class ConfigurationError(FleetError):
    """Robot graph or API configuration cannot be resolved.

    Raised at construction/start time; callers are expected to abort startup.
    """


class UnknownCommand(FleetError):
    """Command name is not exposed by the resolved entity."""

    def __init__(self, command: str, target: Any = None) -> None:
        self.command = str(command)
        self.target = target
        label = str(target) if target is not None else "target"
        super().__init__(f"Unknown command '{self.command}' for {label}")


def lookup_error(message: str) -> dict[str, str]:
    """Error record handed to lookup callbacks and written by the API."""
    return {"error": str(message)}
