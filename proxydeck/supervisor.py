"""
Sidecar process supervision.

The supervisor owns the sidecar's lifecycle::

    not_running -> starting -> running -> not_running   (explicit stop)
                                       -> crashed       (unsolicited exit)

Each running sidecar gets exactly one drain thread that reads its merged
stdout/stderr, feeds lines to the log parser, and reports back through a
queue (RequestLogged for parsed requests, ProcessExited at EOF). Messages are
applied in order by ``dispatch()``, one caller at a time. The drain thread
dispatches after every message it sends, so history and notifications keep
up without a client polling; every supervisor command dispatches first too.
"""

from __future__ import annotations

import itertools
import logging
import os
import queue
import shutil
import subprocess
import sys
import threading
import time
from collections.abc import Callable

import yaml

from .config_store import atomic_write_text
from .constants import (
    DEFAULT_SIDECAR_BINARY,
    PROXY_CONFIG_PATH,
    SIDECAR_AUTH_DIR_SETTING,
    SIDECAR_BINARY_ENV,
    SIDECAR_SETTLE_DELAY,
    SIDECAR_STOP_JOIN_TIMEOUT,
)
from .exceptions import SidecarError, StoreError
from .history_store import HistoryStore
from .log_parser import parse_request_log
from .models import (
    ProcessExited,
    ProcessState,
    ProxyStatus,
    RequestLogged,
    SidecarHandle,
    proxy_endpoint,
)
from .notifications import PROXY_STATUS_CHANGED, REQUEST_LOG, NotificationHub
from .schemas import AppConfig, RequestEvent
from .state import AppState

logger = logging.getLogger(__name__)

Message = RequestLogged | ProcessExited


def resolve_sidecar_binary(explicit: str | None = None) -> str:
    """Pick the sidecar executable: explicit path, $PROXYDECK_SIDECAR, or PATH lookup."""
    candidate = explicit or os.environ.get(SIDECAR_BINARY_ENV) or DEFAULT_SIDECAR_BINARY
    return shutil.which(candidate) or candidate


def render_sidecar_config(config: AppConfig, auth_dir: str = SIDECAR_AUTH_DIR_SETTING) -> str:
    """Render the YAML config the sidecar is started with."""
    doc: dict = {
        "port": config.port,
        "auth-dir": auth_dir,
        "api-keys": [config.proxy_api_key],
        "debug": config.debug,
        "logging-to-file": config.logging_to_file,
        "usage-statistics-enabled": config.usage_stats_enabled,
        "request-log": config.request_logging,
        "request-retry": config.request_retry,
    }
    if config.proxy_url:
        doc["proxy-url"] = config.proxy_url
    # Management API stays local-only; the companion is its only client
    doc["remote-management"] = {
        "allow-remote": False,
        "secret-key": config.management_key,
        "disable-control-panel": config.disable_control_panel,
    }
    header = "# Generated by ProxyDeck. Rewritten on every start; do not edit.\n"
    return header + yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)


def _stopped(status: ProxyStatus) -> ProxyStatus:
    return ProxyStatus(port=status.port, endpoint=status.endpoint)


class SidecarSupervisor:
    def __init__(
        self,
        state: AppState,
        history: HistoryStore,
        notifier: NotificationHub,
        binary: str | None = None,
        config_path: str = PROXY_CONFIG_PATH,
        settle_delay: float = SIDECAR_SETTLE_DELAY,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._state = state
        self._history = history
        self._notifier = notifier
        self.binary = resolve_sidecar_binary(binary)
        self.config_path = config_path
        self.settle_delay = settle_delay
        self._popen = popen
        self._sleep = sleep
        self._messages: queue.Queue[Message] = queue.Queue()
        self._dispatch_lock = threading.Lock()
        self._generations = itertools.count(1)
        self._request_ids = itertools.count(1)
        # Generations whose kill failed; their exit still settles the status
        self._orphaned: set[int] = set()

    # ── Commands ──────────────────────────────────────────────────────────────

    def status(self) -> ProxyStatus:
        self.dispatch()
        return self._state.proxy_status.get()

    def start(self) -> ProxyStatus:
        """Start the sidecar; a no-op returning the current status if it is
        already running or starting."""
        self.dispatch()
        config = self._state.config.get()
        endpoint = proxy_endpoint(config.port)

        claimed, current = self._state.proxy_status.replace_if(
            lambda s: s.state not in (ProcessState.RUNNING, ProcessState.STARTING),
            ProxyStatus(state=ProcessState.STARTING, port=config.port, endpoint=endpoint),
        )
        if not claimed:
            logger.debug("Sidecar already %s; start is a no-op", current.state.value)
            return current

        try:
            self._write_config(config)
            process = self._spawn()
        except SidecarError:
            self._state.proxy_status.set(ProxyStatus(port=config.port, endpoint=endpoint))
            raise

        generation = next(self._generations)
        drain = threading.Thread(
            target=self._drain,
            args=(process, generation),
            name=f"sidecar-drain-{generation}",
            daemon=True,
        )
        self._state.sidecar.set(SidecarHandle(process=process, generation=generation, drain=drain))
        drain.start()
        logger.info("Spawned sidecar %s (pid %s) on port %d", self.binary, process.pid, config.port)

        self._sleep(self.settle_delay)
        self.dispatch()

        if not self._is_current(generation):
            # Exited during the settle delay, or stopped by another command
            return self._state.proxy_status.get()
        promoted, current = self._state.proxy_status.replace_if(
            lambda s: s.state is ProcessState.STARTING,
            ProxyStatus(state=ProcessState.RUNNING, port=config.port, endpoint=endpoint),
        )
        if promoted:
            logger.info("Sidecar running at %s", endpoint)
            self._emit_status(current)
        return current

    def stop(self) -> ProxyStatus:
        """Hard-kill the sidecar. A no-op if nothing is running."""
        self.dispatch()
        current = self._state.proxy_status.get()
        if current.state is ProcessState.NOT_RUNNING:
            return current

        with self._dispatch_lock:
            handle = self._state.sidecar.swap(None)
            if handle is not None:
                try:
                    handle.process.kill()
                except OSError as e:
                    self._orphaned.add(handle.generation)
                    raise SidecarError(
                        f"Failed to kill sidecar (pid {handle.process.pid}): {e}"
                    ) from e
                logger.info("Killed sidecar pid %s", handle.process.pid)
            else:
                # Normalizing a crashed or orphaned sidecar; late exits no longer count
                self._orphaned.clear()
            stopped = self._state.proxy_status.update(_stopped)
        self._emit_status(stopped)
        if handle is not None and handle.drain is not None:
            # Reap the exit code; the drain thread dispatches its own exit message
            handle.drain.join(SIDECAR_STOP_JOIN_TIMEOUT)
        return stopped

    # ── Message handling ─────────────────────────────────────────────────────

    def dispatch(self) -> int:
        """Apply every queued drain-thread message. Returns how many were applied."""
        applied = 0
        with self._dispatch_lock:
            while True:
                try:
                    msg = self._messages.get_nowait()
                except queue.Empty:
                    return applied
                self._apply(msg)
                applied += 1

    def _apply(self, msg: Message) -> None:
        if isinstance(msg, RequestLogged):
            self._record(msg.event)
        elif isinstance(msg, ProcessExited):
            self._on_exit(msg)

    def _record(self, event: RequestEvent) -> None:
        try:
            self._history.add(event)
        except StoreError as e:
            logger.warning("Could not record %s in history: %s", event.id, e)
        self._notifier.emit(REQUEST_LOG, event.model_dump(by_alias=True))

    def _on_exit(self, msg: ProcessExited) -> None:
        cleared, _ = self._state.sidecar.replace_if(
            lambda h: h is not None and h.generation == msg.generation, None
        )
        if not cleared:
            if msg.generation not in self._orphaned:
                # Stopped explicitly, or a newer sidecar has replaced it
                logger.debug("Ignoring exit of sidecar generation %d", msg.generation)
                return
            self._orphaned.discard(msg.generation)
            if self._state.sidecar.get() is not None:
                return
            logger.info("Sidecar generation %d exited after a failed kill", msg.generation)

        if msg.returncode == 0:
            logger.info("Sidecar exited")
            status = self._state.proxy_status.update(_stopped)
        else:
            reason = f"sidecar exited with code {msg.returncode}"
            logger.warning("Sidecar terminated unexpectedly: %s", reason)
            status = self._state.proxy_status.update(
                lambda s: ProxyStatus(
                    state=ProcessState.CRASHED, port=s.port, endpoint=s.endpoint, reason=reason
                )
            )
        self._emit_status(status)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _is_current(self, generation: int) -> bool:
        handle = self._state.sidecar.get()
        return handle is not None and handle.generation == generation

    def _emit_status(self, status: ProxyStatus) -> None:
        self._notifier.emit(PROXY_STATUS_CHANGED, status.to_response().model_dump())

    def _write_config(self, config: AppConfig) -> None:
        try:
            atomic_write_text(self.config_path, render_sidecar_config(config))
        except StoreError as e:
            raise SidecarError(f"Failed to write sidecar config: {e}") from e

    def _spawn(self) -> subprocess.Popen:
        args = [self.binary, f"--config={self.config_path}"]
        try:
            return self._popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                creationflags=subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0,
            )
        except (OSError, ValueError) as e:
            raise SidecarError(f"Failed to spawn sidecar {self.binary}: {e}") from e

    def _drain(self, process: subprocess.Popen, generation: int) -> None:
        """Drain-thread body: parse output until EOF, then report the exit."""
        try:
            for raw in process.stdout:
                line = raw.rstrip("\r\n")
                if not line:
                    continue
                logger.debug("[sidecar] %s", line)
                event = parse_request_log(line, self._request_ids)
                if event is not None:
                    self._messages.put(RequestLogged(event))
                    self.dispatch()
        except (OSError, ValueError) as e:
            logger.debug("Sidecar output closed: %s", e)
        self._messages.put(ProcessExited(generation, process.wait()))
        self.dispatch()
