"""
Shared application state.

``AppState`` is built once at startup and handed to every component. It
holds five independently locked cells; a lock is only held for a single
read, mutation, or copy, never across an HTTP call or a process spawn.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

from .models import PendingOAuth, ProxyStatus, SidecarHandle, proxy_endpoint
from .schemas import AppConfig, AuthStatus

T = TypeVar("T")


class Guarded(Generic[T]):
    """A value behind its own lock. Reads hand out copies."""

    def __init__(self, value: T, clone: Callable[[T], T] = copy.deepcopy):
        self._value = value
        self._clone = clone
        self._lock = threading.Lock()

    def get(self) -> T:
        with self._lock:
            return self._clone(self._value)

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value

    def swap(self, value: T) -> T:
        """Replace the value and return the previous one (not copied)."""
        with self._lock:
            old, self._value = self._value, value
            return old

    def update(self, fn: Callable[[T], T]) -> T:
        """Replace the value with ``fn(value)`` and return a copy of the result."""
        with self._lock:
            self._value = fn(self._value)
            return self._clone(self._value)

    def replace_if(self, predicate: Callable[[T], bool], value: T) -> tuple[bool, T]:
        """Set ``value`` only when ``predicate`` holds for the current value.

        Returns (replaced, copy of the value now stored).
        """
        with self._lock:
            if predicate(self._value):
                self._value = value
                return True, self._clone(self._value)
            return False, self._clone(self._value)


class AppState:
    def __init__(self, config: AppConfig | None = None, auth: AuthStatus | None = None):
        config = config or AppConfig()
        self.proxy_status: Guarded[ProxyStatus] = Guarded(
            ProxyStatus(port=config.port, endpoint=proxy_endpoint(config.port))
        )
        self.auth_status: Guarded[AuthStatus] = Guarded(auth or AuthStatus())
        self.config: Guarded[AppConfig] = Guarded(config)
        self.pending_oauth: Guarded[PendingOAuth | None] = Guarded(None)
        # Popen objects are not copyable; hand out the handle itself
        self.sidecar: Guarded[SidecarHandle | None] = Guarded(None, clone=lambda v: v)
