from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import itertools
import threading
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ListenerHandle:
    """Opaque token returned on registration; pass it back to remove."""

    id: int
    topic: str = ""


@dataclass
class ObserverRegistry(Generic[T]):
    """Listener registry keyed by handle rather than callable identity.

    Registering the same callable twice yields two independent handles.
    Snapshots are taken under the lock and callbacks run outside it, so a
    listener may register or remove listeners while being notified.
    """

    topic: str = ""
    _listeners: dict[int, Callable[[T], Any]] = field(default_factory=dict)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def add(self, listener: Callable[[T], Any]) -> ListenerHandle:
        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            handle = ListenerHandle(next(self._ids), self.topic)
            self._listeners[handle.id] = listener
        return handle

    def remove(self, handle: ListenerHandle) -> bool:
        """Remove a listener; unknown or foreign handles are a no-op."""
        if not isinstance(handle, ListenerHandle) or handle.topic != self.topic:
            return False
        with self._lock:
            return self._listeners.pop(handle.id, None) is not None

    def contains(self, handle: ListenerHandle) -> bool:
        with self._lock:
            return handle.id in self._listeners

    def snapshot(self) -> list[tuple[ListenerHandle, Callable[[T], Any]]]:
        with self._lock:
            return [
                (ListenerHandle(hid, self.topic), fn)
                for hid, fn in self._listeners.items()
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
