"""Shared pytest fixtures for the test suite."""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest

from proxydeck.config_store import AuthStore
from proxydeck.history_store import HistoryStore
from proxydeck.models import ProcessState, ProxyStatus, proxy_endpoint
from proxydeck.notifications import NotificationHub
from proxydeck.state import AppState
from proxydeck.supervisor import SidecarSupervisor

SIDECAR_BINARY = "/opt/proxydeck/cliproxyapi"


class FakeProcess:
    """Stand-in for subprocess.Popen.

    Yields ``lines`` on stdout, then blocks until the process exits (via
    ``exit()`` or ``kill()``). Pass ``exit_code`` to exit right away. With
    ``held=True`` nothing is printed until ``release()``.
    """

    def __init__(self, lines=(), exit_code=None, pid=4321, held=False):
        self.pid = pid
        self.returncode = None
        self.killed = False
        self.kill_error = None
        self._lines = list(lines)
        self._done = threading.Event()
        self._released = threading.Event()
        if not held:
            self._released.set()
        self.stdout = self._stream()
        if exit_code is not None:
            self.exit(exit_code)

    def _stream(self):
        self._released.wait()
        for line in self._lines:
            yield line + "\n"
        self._done.wait()

    def release(self):
        """Let a ``held`` process start printing its lines."""
        self._released.set()

    def exit(self, code):
        self.returncode = code
        self._released.set()
        self._done.set()

    def kill(self):
        if self.kill_error is not None:
            raise self.kill_error
        self.killed = True
        self.exit(-9)

    def wait(self, timeout=None):
        self._done.wait(timeout)
        return self.returncode


class FakePopen:
    """Popen factory handing out prepared FakeProcess objects (or raising)."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def make_response(body):
    """Fake urlopen() context manager whose read() returns ``body``."""
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    resp = MagicMock()
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def mark_running(state, port=8317):
    state.proxy_status.set(
        ProxyStatus(state=ProcessState.RUNNING, port=port, endpoint=proxy_endpoint(port))
    )


def settle(supervisor, predicate, attempts=100):
    """Poll the supervisor status until ``predicate(status)`` holds."""
    for _ in range(attempts):
        status = supervisor.status()
        if predicate(status):
            return status
        time.sleep(0.02)
    return supervisor.status()


def eventually(predicate, attempts=100):
    """Poll ``predicate()`` until it is true; returns its last result."""
    for _ in range(attempts):
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()



@pytest.fixture
def state():
    return AppState()


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def history(tmp_path):
    return HistoryStore(str(tmp_path / "history.json"))


@pytest.fixture
def auth_store(tmp_path):
    return AuthStore(str(tmp_path / "auth.json"))


@pytest.fixture
def make_supervisor(tmp_path, state, history, hub):
    """Returns a helper building a supervisor around the given fake processes."""

    def _make(*results):
        popen = FakePopen(*results)
        supervisor = SidecarSupervisor(
            state,
            history,
            hub,
            binary=SIDECAR_BINARY,
            config_path=str(tmp_path / "proxy-config.yaml"),
            settle_delay=0,
            popen=popen,
            sleep=lambda _seconds: None,
        )
        return supervisor, popen

    return _make
