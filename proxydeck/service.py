"""
Service object that wires the companion together.

One ``CompanionService`` is built at startup and shared by the HTTP layer and
the CLI. Components are exposed as attributes; the methods here are the
commands that span more than one component.
"""

from __future__ import annotations

import logging

from . import health
from .config_store import AuthStore, ConfigStore
from .constants import AUTH_PATH, CONFIG_PATH, CREDENTIAL_DIR, HISTORY_PATH, PROXY_CONFIG_PATH
from .exceptions import SidecarError
from .history_store import HistoryStore
from .models import ProcessState, ProxyStatus, proxy_endpoint
from .notifications import REQUEST_LOG, Notification, NotificationHub
from .oauth import OAuthCoordinator
from .schemas import (
    AppConfig,
    ConnectionTestResult,
    ProviderHealth,
    RequestHistory,
    UsageSnapshot,
)
from .state import AppState
from .supervisor import SidecarSupervisor
from .usage import UsageAggregator

logger = logging.getLogger(__name__)


class CompanionService:
    def __init__(
        self,
        state: AppState,
        config_store: ConfigStore,
        auth_store: AuthStore,
        history: HistoryStore,
        notifier: NotificationHub,
        supervisor: SidecarSupervisor,
        oauth: OAuthCoordinator,
        usage: UsageAggregator,
    ):
        self.state = state
        self.config_store = config_store
        self.auth_store = auth_store
        self.history = history
        self.notifier = notifier
        self.supervisor = supervisor
        self.oauth = oauth
        self.usage = usage
        notifier.subscribe(self._log_request)

    @classmethod
    def from_disk(
        cls,
        sidecar_binary: str | None = None,
        config_path: str = CONFIG_PATH,
        auth_path: str = AUTH_PATH,
        history_path: str = HISTORY_PATH,
        proxy_config_path: str = PROXY_CONFIG_PATH,
        credential_dir: str = CREDENTIAL_DIR,
        **supervisor_options,
    ) -> CompanionService:
        """Load persisted config and auth flags and build every component."""
        config_store = ConfigStore(config_path)
        auth_store = AuthStore(auth_path)
        state = AppState(config=config_store.load(), auth=auth_store.load())
        history = HistoryStore(history_path)
        notifier = NotificationHub()
        supervisor = SidecarSupervisor(
            state,
            history,
            notifier,
            binary=sidecar_binary,
            config_path=proxy_config_path,
            **supervisor_options,
        )
        oauth = OAuthCoordinator(state, auth_store, notifier, credential_dir=credential_dir)
        usage = UsageAggregator(state, history)
        return cls(state, config_store, auth_store, history, notifier, supervisor, oauth, usage)

    def _log_request(self, note: Notification) -> None:
        """Echo proxied requests to the companion log as they happen."""
        if note.kind != REQUEST_LOG:
            return
        p = note.payload
        logger.info(
            "%s %s -> %s (%s, %s, %d ms)",
            p["method"],
            p["path"],
            p["status"],
            p["provider"],
            p["model"],
            p["durationMs"],
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def autostart(self) -> None:
        """Start the sidecar if the config asks for it. Failures are logged."""
        if not self.state.config.get().auto_start:
            return
        try:
            self.supervisor.start()
        except SidecarError as e:
            logger.error("Auto-start failed: %s", e)

    def shutdown(self) -> None:
        try:
            self.supervisor.stop()
        except SidecarError as e:
            logger.warning("Could not stop sidecar on shutdown: %s", e)

    # ── Commands ──────────────────────────────────────────────────────────────

    def save_config(self, config: AppConfig) -> AppConfig:
        """Persist and apply a new config.

        A port change is reflected in the status right away when the sidecar
        is not running; a running sidecar picks it up on its next start.
        """
        self.config_store.save(config)
        self.state.config.set(config.model_copy(deep=True))

        def repoint(status: ProxyStatus) -> ProxyStatus:
            if status.state in (ProcessState.RUNNING, ProcessState.STARTING):
                return status
            if status.port == config.port:
                return status
            return ProxyStatus(
                state=status.state,
                port=config.port,
                endpoint=proxy_endpoint(config.port),
                reason=status.reason,
            )

        self.state.proxy_status.update(repoint)
        logger.info("Config saved")
        return config

    def get_history(self) -> RequestHistory:
        self.supervisor.dispatch()
        return self.history.load()

    def clear_history(self) -> RequestHistory:
        self.supervisor.dispatch()
        logger.info("Clearing request history")
        return self.history.clear()

    def usage_snapshot(self) -> UsageSnapshot:
        self.supervisor.dispatch()
        return self.usage.fetch()

    def local_usage(self) -> UsageSnapshot:
        self.supervisor.dispatch()
        return self.usage.local()

    def provider_health(self) -> ProviderHealth:
        self.supervisor.dispatch()
        return health.check_provider_health(self.state)

    def test_connection(self, agent_id: str) -> ConnectionTestResult:
        self.supervisor.dispatch()
        return health.test_connection(self.state, agent_id)

    def events(self, since: int = 0) -> list[Notification]:
        self.supervisor.dispatch()
        return self.notifier.since(since)
