# explorer_state.py
# ──────────────────────────────────────────────────────────────────────────────
# Observable property store shared by every explorer component.
#
# Notification rules
# ──────────────────
#   • set(name, v) replaces the value, then calls each listener for `name` in
#     registration order, synchronously, before returning.
#   • trigger(name) calls the listeners without touching the value.  Use it
#     after mutating a stored list/set in place.
#   • A listener that calls set()/trigger() starts a nested notification
#     right away (no queue).  Nesting deeper than MAX_NOTIFY_DEPTH raises
#     NotificationLoopError, which almost always means two listeners keep
#     setting each other's property.
#   • Listener exceptions propagate out of set()/trigger().  The new value
#     stays in place; listeners after the failing one are not called.
# ──────────────────────────────────────────────────────────────────────────────

from typing import Any, Callable

from explorer_utils import (
    MAX_NOTIFY_DEPTH,
    ConfigurationError,
    NotificationLoopError,
    UnknownPropertyError,
)

Listener = Callable[[], None]


class State:
    """Named properties with synchronous change listeners.

    Build one per explorer and pass it to whatever needs it.
    """

    def __init__(self, max_depth: int = MAX_NOTIFY_DEPTH):
        self._values:    dict[str, Any] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._depth     = 0
        self._max_depth = max_depth

    def define_property(self, name: str, initial_value: Any = None) -> None:
        if name in self._values:
            raise ConfigurationError(f"Property '{name}' is already declared.")
        self._values[name]    = initial_value
        self._listeners[name] = []

    declare = define_property

    def _require(self, name: str) -> None:
        if name not in self._values:
            raise UnknownPropertyError(name)

    def get(self, name: str) -> Any:
        self._require(name)
        return self._values[name]

    def set(self, name: str, value: Any) -> None:
        self._require(name)
        self._values[name] = value
        self._notify(name)

    def trigger(self, name: str) -> None:
        self._require(name)
        self._notify(name)

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        """Register a zero-argument listener. Returns a callable that removes it."""
        self._require(name)
        self._listeners[name].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[name]:
                self._listeners[name].remove(listener)

        return unsubscribe

    def names(self) -> list[str]:
        return list(self._values)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def _notify(self, name: str) -> None:
        if self._depth >= self._max_depth:
            raise NotificationLoopError(
                f"Notification depth {self._max_depth} exceeded while "
                f"notifying '{name}'; listeners are re-triggering each other."
            )
        self._depth += 1
        try:
            # Snapshot: listeners added during this round fire from the next one.
            for listener in list(self._listeners[name]):
                listener()
        finally:
            self._depth -= 1
