"""
Outbound notifications to the UI boundary.

Notifications go to in-process listeners immediately and are kept in a
bounded replay buffer so HTTP clients can poll with ``since(seq)``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .constants import NOTIFICATION_BUFFER

logger = logging.getLogger(__name__)

PROXY_STATUS_CHANGED = "proxy-status-changed"
AUTH_STATUS_CHANGED = "auth-status-changed"
REQUEST_LOG = "request-log"
OAUTH_CALLBACK = "oauth-callback"


@dataclass(frozen=True)
class Notification:
    seq: int
    kind: str
    payload: Any
    timestamp: float


Listener = Callable[[Notification], None]


class NotificationHub:
    def __init__(self, buffer_size: int = NOTIFICATION_BUFFER):
        self._buffer: deque[Notification] = deque(maxlen=buffer_size)
        self._listeners: list[Listener] = []
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(self, kind: str, payload: Any = None) -> Notification:
        with self._lock:
            note = Notification(seq=next(self._seq), kind=kind, payload=payload, timestamp=time.time())
            self._buffer.append(note)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(note)
            except Exception as e:
                logger.warning("Notification listener failed for %s: %s", kind, e)
        return note

    def since(self, seq: int = 0) -> list[Notification]:
        """Buffered notifications with a sequence number above ``seq``."""
        with self._lock:
            return [n for n in self._buffer if n.seq > seq]
