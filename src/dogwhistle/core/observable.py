"""dogwhistle.core.observable

ROLE: Observable state values pushed to UI/consumer callbacks.

Replaces reactive "published" properties: the owner calls set(), observers are
called with the new value only when it changes. Observers run on the caller's
thread and must not block.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Generic, List, TypeVar


T = TypeVar("T")


class ObservableValue(Generic[T]):
    def __init__(self, initial: T) -> None:
        self._value = initial
        self._lock = threading.Lock()
        self._observers: List[Callable[[T], Any]] = []

    def get(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> bool:
        """Store value and notify observers. Returns True when it changed."""
        with self._lock:
            if value == self._value:
                return False
            self._value = value
            observers = list(self._observers)
        for callback in observers:
            callback(value)
        return True

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        with self._lock:
            self._observers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return _unsubscribe

    def __repr__(self) -> str:
        return f"ObservableValue({self.get()!r})"
