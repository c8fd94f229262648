"""Built-in providers used for local simulation and tests."""

from __future__ import annotations

from typing import Any

from fleetcore.hardware.base import Adaptor, Driver


class LoopbackAdaptor(Adaptor):
    """Adaptor with no transport behind it."""

    name = "loopback"
    commands = ["ping"]

    def ping(self) -> str:
        return "pong"


class PingDriver(Driver):
    """Answers ``ping`` and publishes a ``ping`` event on every call."""

    name = "ping"
    commands = ["ping"]

    def ping(self) -> str:
        self.emit("ping", "ping")
        return "pong"


class _RecordingMixin:
    """Command surface configured per instance; calls are recorded.

    Recorders live apart from the instance attributes so a command named like
    a lifecycle method (``start``, ``connect``) never replaces that method.
    """

    calls: list[tuple[str, tuple[Any, ...]]]

    def _install_recorders(self, commands: Any) -> list[str]:
        self.calls = []
        names = [str(c) for c in (commands or [])]
        self._recorders = {command: self._recorder(command) for command in names}
        return names

    def _recorder(self, command: str):  # type: ignore[no-untyped-def]
        def _call(*args: Any) -> list[Any]:
            self.calls.append((command, args))
            return list(args)

        _call.__name__ = command
        return _call

    def invoke(self, command: str, *args: Any, **kwargs: Any) -> Any:
        recorder = (self.__dict__.get("_recorders") or {}).get(command)
        if recorder is not None:
            return recorder(*args, **kwargs)
        return super().invoke(command, *args, **kwargs)  # type: ignore[misc]

    def __getattr__(self, item: str) -> Any:
        recorders = self.__dict__.get("_recorders") or {}
        if item in recorders:
            return recorders[item]
        raise AttributeError(f"{type(self).__name__} has no attribute '{item}'")


class TestAdaptor(_RecordingMixin, Adaptor):
    """Adaptor whose commands come from the ``commands`` option."""

    __test__ = False
    name = "test"

    def __init__(self, *, commands: Any = None, **options: Any) -> None:
        super().__init__(**options)
        self.commands = self._install_recorders(commands)


class TestDriver(_RecordingMixin, Driver):
    """Driver whose commands come from the ``commands`` option."""

    __test__ = False
    name = "test"

    def __init__(self, *, commands: Any = None, **options: Any) -> None:
        super().__init__(**options)
        self.commands = self._install_recorders(commands)
