"""Runtime-only data models for the ProxyDeck companion."""

from __future__ import annotations

import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum

from .constants import DEFAULT_PROXY_PORT, SIDECAR_HOST
from .schemas import ProxyStatusResponse, RequestEvent


class ProcessState(str, Enum):
    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"


def proxy_endpoint(port: int) -> str:
    """OpenAI-compatible base URL clients should point at."""
    return f"http://{SIDECAR_HOST}:{port}/v1"


@dataclass
class ProxyStatus:
    """Lifecycle state of the supervised sidecar."""

    state: ProcessState = ProcessState.NOT_RUNNING
    port: int = DEFAULT_PROXY_PORT
    endpoint: str = field(default_factory=lambda: proxy_endpoint(DEFAULT_PROXY_PORT))
    reason: str = ""  # only set when crashed

    @property
    def running(self) -> bool:
        return self.state is ProcessState.RUNNING

    def to_response(self) -> ProxyStatusResponse:
        return ProxyStatusResponse(
            running=self.running,
            state=self.state.value,
            port=self.port,
            endpoint=self.endpoint,
            reason=self.reason,
        )


@dataclass
class SidecarHandle:
    """The running child process, its spawn generation and its drain thread."""

    process: subprocess.Popen
    generation: int
    drain: threading.Thread | None = None


@dataclass(frozen=True)
class PendingOAuth:
    """The single in-flight authorization flow."""

    provider: str
    state_token: str
    issued_at: float


# ── Messages from the drain thread to the supervisor ─────────────────────────


@dataclass(frozen=True)
class RequestLogged:
    event: RequestEvent


@dataclass(frozen=True)
class ProcessExited:
    generation: int
    returncode: int | None
