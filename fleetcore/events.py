"""Composable event publisher embedded in robots, devices, connections and providers."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from loguru import logger

Listener = Callable[[Any], Any]
AnyListener = Callable[[str, Any], Any]


class EventPublisher:
    """Named-event observer list.

    Deliveries are serialized per publisher, so listeners observe events in
    the order they were published. A failing listener is logged and skipped.
    """

    def __init__(self, owner: Any = None) -> None:
        self._owner = owner
        self._lock = threading.Lock()
        self._deliver_lock = threading.RLock()
        self._listeners: dict[str, list[Listener]] = {}
        self._any_listeners: list[AnyListener] = []

    def subscribe(self, event: str, listener: Listener) -> Listener:
        with self._lock:
            self._listeners.setdefault(str(event), []).append(listener)
        return listener

    def unsubscribe(self, event: str, listener: Listener) -> bool:
        """Remove one registration of ``listener``; return whether it was present."""
        key = str(event)
        with self._lock:
            bucket = self._listeners.get(key)
            if not bucket:
                return False
            for index, candidate in enumerate(bucket):
                if candidate == listener:
                    del bucket[index]
                    break
            else:
                return False
            if not bucket:
                del self._listeners[key]
            return True

    def subscribe_any(self, listener: AnyListener) -> AnyListener:
        with self._lock:
            self._any_listeners.append(listener)
        return listener

    def unsubscribe_any(self, listener: AnyListener) -> bool:
        with self._lock:
            for index, candidate in enumerate(self._any_listeners):
                if candidate == listener:
                    del self._any_listeners[index]
                    return True
        return False

    def publish(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to listeners of ``event``; return how many ran."""
        key = str(event)
        with self._deliver_lock:
            with self._lock:
                named = list(self._listeners.get(key, ()))
                wildcard = list(self._any_listeners)
            delivered = 0
            for listener in named:
                try:
                    listener(payload)
                except Exception as e:
                    logger.warning(f"{self._label()} listener for '{key}' failed: {e}")
                delivered += 1
            for any_listener in wildcard:
                try:
                    any_listener(key, payload)
                except Exception as e:
                    logger.warning(f"{self._label()} forwarder for '{key}' failed: {e}")
                delivered += 1
            return delivered

    def listener_count(self, event: str | None = None) -> int:
        with self._lock:
            if event is None:
                return sum(len(bucket) for bucket in self._listeners.values())
            return len(self._listeners.get(str(event), ()))

    def events(self) -> list[str]:
        with self._lock:
            return list(self._listeners)

    def _label(self) -> str:
        return str(self._owner) if self._owner is not None else "publisher"
