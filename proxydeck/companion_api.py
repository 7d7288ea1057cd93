"""
ProxyDeck companion - FastAPI application.

Local HTTP surface for the desktop UI (or any other client):
  - Sidecar start/stop/status
  - Provider login flows and credential import
  - Config, request history, usage and health
  - Notification polling via /api/events
  - Auto-generated OpenAPI docs at /docs
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .__version__ import __version__
from .constants import DEFAULT_COMPANION_PORT
from .exceptions import (
    OAuthError,
    ProxyDeckError,
    UnknownProviderError,
    UsageError,
)
from .schemas import (
    ActionResponse,
    AppConfig,
    AuthStatus,
    CompleteOAuthRequest,
    ConnectionTestResult,
    DeepLinkRequest,
    DeepLinkResponse,
    NotificationResponse,
    OAuthBeginResponse,
    OAuthPollResponse,
    ProviderHealth,
    ProxyStatusResponse,
    RequestHistory,
    ServerInfoResponse,
    UsageSnapshot,
    VertexImportRequest,
)
from .service import CompanionService


def error_status(exc: ProxyDeckError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, UnknownProviderError):
        return 400
    if isinstance(exc, (OAuthError, UsageError)):
        return 502
    return 500


def _service(request: Request) -> CompanionService:
    return request.app.state.service


def create_app(service: CompanionService | None = None, autostart: bool = False) -> FastAPI:
    """Build the API around ``service`` (loaded from disk when omitted).

    The sidecar is started on startup when ``autostart`` is set and the
    config allows it, and is always stopped on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            app.state.service.autostart()
        yield
        app.state.service.shutdown()

    app = FastAPI(
        title="ProxyDeck",
        version=__version__,
        description="Local companion for the CLIProxyAPI sidecar.",
        lifespan=lifespan,
        responses={code: {"model": ActionResponse} for code in (400, 500, 502)},
    )
    app.state.service = service or CompanionService.from_disk()

    @app.exception_handler(ProxyDeckError)
    async def domain_error(_request: Request, exc: ProxyDeckError):
        return JSONResponse({"success": False, "message": str(exc)}, status_code=error_status(exc))

    # ── Sidecar ──────────────────────────────────────────────────────────────

    @app.get("/api/status", response_model=ProxyStatusResponse)
    def api_status(request: Request):
        """Current sidecar status."""
        return _service(request).supervisor.status().to_response()

    @app.post("/api/proxy/start", response_model=ProxyStatusResponse)
    def api_proxy_start(request: Request):
        """Start the sidecar. A no-op if it is already running."""
        return _service(request).supervisor.start().to_response()

    @app.post("/api/proxy/stop", response_model=ProxyStatusResponse)
    def api_proxy_stop(request: Request):
        """Kill the sidecar."""
        return _service(request).supervisor.stop().to_response()

    # ── Auth ─────────────────────────────────────────────────────────────────

    @app.get("/api/auth", response_model=AuthStatus)
    def api_auth(request: Request):
        return _service(request).state.auth_status.get()

    @app.post("/api/auth/refresh", response_model=AuthStatus)
    def api_auth_refresh(request: Request):
        """Rebuild auth flags from the sidecar's credential files."""
        return _service(request).oauth.refresh()

    @app.post("/api/auth/vertex/import", response_model=AuthStatus)
    def api_vertex_import(body: VertexImportRequest, request: Request):
        """Import a Google service-account key for Vertex."""
        return _service(request).oauth.import_vertex_credential(body.file_path)

    @app.post("/api/auth/{provider}/disconnect", response_model=AuthStatus)
    def api_auth_disconnect(provider: str, request: Request):
        return _service(request).oauth.disconnect(provider)

    @app.post("/api/oauth/callback", response_model=DeepLinkResponse)
    def api_oauth_callback(body: DeepLinkRequest, request: Request):
        """Forward a proxydeck:// deep link received by the OS."""
        return {"handled": _service(request).oauth.handle_deep_link(body.url)}

    @app.get("/api/oauth/poll", response_model=OAuthPollResponse)
    def api_oauth_poll(state: str, request: Request):
        return {"complete": _service(request).oauth.poll(state)}

    @app.post("/api/oauth/{provider}", response_model=OAuthBeginResponse)
    def api_oauth_begin(provider: str, request: Request):
        """Open the provider's login page and return the flow's state token."""
        return {"state": _service(request).oauth.begin(provider)}

    @app.post("/api/oauth/{provider}/complete", response_model=AuthStatus)
    def api_oauth_complete(provider: str, body: CompleteOAuthRequest, request: Request):
        return _service(request).oauth.complete(provider, body.code)

    # ── Config & history ─────────────────────────────────────────────────────

    @app.get("/api/config", response_model=AppConfig)
    def api_get_config(request: Request):
        return _service(request).state.config.get()

    @app.put("/api/config", response_model=AppConfig)
    def api_save_config(config: AppConfig, request: Request):
        return _service(request).save_config(config)

    @app.get("/api/history", response_model=RequestHistory)
    def api_history(request: Request):
        return _service(request).get_history()

    @app.delete("/api/history", response_model=RequestHistory)
    def api_clear_history(request: Request):
        return _service(request).clear_history()

    # ── Usage & health ───────────────────────────────────────────────────────

    @app.get("/api/usage", response_model=UsageSnapshot)
    def api_usage(request: Request):
        """Usage statistics reported by the running sidecar."""
        return _service(request).usage_snapshot()

    @app.get("/api/usage/local", response_model=UsageSnapshot)
    def api_usage_local(request: Request):
        """Usage statistics computed from the local request history."""
        return _service(request).local_usage()

    @app.get("/api/health", response_model=ProviderHealth)
    def api_health(request: Request):
        return _service(request).provider_health()

    @app.post("/api/test/{agent_id}", response_model=ConnectionTestResult)
    def api_test_connection(agent_id: str, request: Request):
        return _service(request).test_connection(agent_id)

    # ── Notifications & metadata ─────────────────────────────────────────────

    @app.get("/api/events", response_model=list[NotificationResponse])
    def api_events(request: Request, since: int = 0):
        """Notifications with a sequence number above ``since``."""
        return [asdict(n) for n in _service(request).events(since)]

    @app.get("/api/server-info", response_model=ServerInfoResponse)
    def server_info(request: Request):
        """Return server metadata including PID."""
        host = request.headers.get("host", f"localhost:{DEFAULT_COMPANION_PORT}")
        return {"pid": os.getpid(), "port": host.split(":")[-1]}

    return app
