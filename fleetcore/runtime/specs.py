"""Connection/device specification records and single-or-list normalization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fleetcore.errors import ConfigurationError


@dataclass(slots=True)
class ConnectionSpec:
    name: str
    adaptor: str
    port: str | None = None
    id: Any = None
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectionSpec":
        raw = dict(data)
        name = raw.pop("name", None)
        adaptor = raw.pop("adaptor", None)
        if not name:
            raise ConfigurationError(f"connection spec requires a name: {data!r}")
        if not adaptor:
            raise ConfigurationError(f"connection '{name}' requires an adaptor")
        return cls(
            name=str(name),
            adaptor=str(adaptor),
            port=_optional_str(raw.pop("port", None)),
            id=raw.pop("id", None),
            options=raw,
        )


@dataclass(slots=True)
class DeviceSpec:
    name: str
    driver: str
    connection: str | None = None
    pin: Any = None
    id: Any = None
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceSpec":
        raw = dict(data)
        name = raw.pop("name", None)
        driver = raw.pop("driver", None)
        if not name:
            raise ConfigurationError(f"device spec requires a name: {data!r}")
        if not driver:
            raise ConfigurationError(f"device '{name}' requires a driver")
        return cls(
            name=str(name),
            driver=str(driver),
            connection=_optional_str(raw.pop("connection", None)),
            pin=raw.pop("pin", None),
            id=raw.pop("id", None),
            options=raw,
        )


def normalize_specs(value: Any) -> list[dict[str, Any]]:
    """Turn ``None``, one spec, or a sequence of specs into an ordered list.

    ``None`` and an empty sequence both normalize to ``[]``.
    """
    if value is None:
        return []
    if isinstance(value, (ConnectionSpec, DeviceSpec)):
        return [_spec_to_dict(value)]
    if isinstance(value, dict):
        return [dict(value)]
    if isinstance(value, (list, tuple)):
        items: list[dict[str, Any]] = []
        for item in value:
            if isinstance(item, (ConnectionSpec, DeviceSpec)):
                items.append(_spec_to_dict(item))
            elif isinstance(item, dict):
                items.append(dict(item))
            else:
                raise ConfigurationError(f"spec entries must be objects, got {type(item).__name__}")
        return items
    raise ConfigurationError(f"spec must be an object or a list of objects, got {type(value).__name__}")


def _spec_to_dict(spec: ConnectionSpec | DeviceSpec) -> dict[str, Any]:
    data = {k: getattr(spec, k) for k in spec.__slots__ if k != "options"}
    data.update(spec.options)
    return {k: v for k, v in data.items() if v is not None}


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
