"""
Provider authentication on top of the sidecar's management API.

A browser flow is: ``begin`` asks the sidecar for an authorization URL, opens
it, and remembers the returned state token as the single pending flow; the UI
then calls ``poll`` until the sidecar reports ``ok`` and finishes with
``complete``. No tokens pass through the companion; the sidecar writes its own
credential files, which ``refresh`` scans to rebuild the auth flags.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
import webbrowser
from collections.abc import Callable
from urllib.parse import parse_qs, urlsplit

from .config_store import AuthStore, atomic_write_text
from .constants import CREDENTIAL_DIR, DEEP_LINK_SCHEME
from .exceptions import ManagementAPIError, OAuthError, UnknownProviderError
from .management import SidecarClient
from .models import PendingOAuth
from .notifications import AUTH_STATUS_CHANGED, OAUTH_CALLBACK, NotificationHub
from .providers import AUTH_URL_SLUGS, CREDENTIAL_PREFIXES, Provider
from .schemas import AuthStatus
from .state import AppState

logger = logging.getLogger(__name__)

_PROJECT_ID = re.compile(r"[A-Za-z0-9._-]+")


def scan_credentials(directory: str) -> AuthStatus:
    """Build an AuthStatus from the credential files in ``directory``."""
    auth = AuthStatus()
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return auth
    except OSError as e:
        logger.warning("Could not list credential directory %s: %s", directory, e)
        return auth

    for name in names:
        lower = name.lower()
        if not lower.endswith(".json"):
            continue
        for provider, prefixes in CREDENTIAL_PREFIXES.items():
            if lower.startswith(prefixes):
                auth.mark(provider, True)
    return auth


def _require_provider(name: str) -> Provider:
    provider = Provider.parse(name)
    if provider is Provider.UNKNOWN:
        raise UnknownProviderError(f"Unknown provider: {name}")
    return provider


class OAuthCoordinator:
    def __init__(
        self,
        state: AppState,
        auth_store: AuthStore,
        notifier: NotificationHub,
        credential_dir: str = CREDENTIAL_DIR,
        opener: Callable[[str], bool] = webbrowser.open,
    ):
        self._state = state
        self._auth_store = auth_store
        self._notifier = notifier
        self.credential_dir = credential_dir
        self._opener = opener

    def _client(self) -> SidecarClient:
        return SidecarClient.from_config(self._state.config.get())

    # ── Browser flow ──────────────────────────────────────────────────────────

    def begin(self, provider_name: str) -> str:
        """Start a browser authorization flow and return its state token.

        Replaces any pending flow, for any provider.
        """
        provider = _require_provider(provider_name)
        slug = AUTH_URL_SLUGS[provider]
        if slug is None:
            raise UnknownProviderError(
                f"{provider.value} has no browser login; import a credential file instead"
            )

        try:
            body = self._client().get_management(f"{slug}-auth-url", {"is_webui": "true"})
        except ManagementAPIError as e:
            raise OAuthError(f"Failed to get OAuth URL: {e}") from e
        except ValueError as e:
            raise OAuthError(f"Failed to parse OAuth response: {e}") from e

        url = body.get("url") if isinstance(body, dict) else None
        if not isinstance(url, str) or not url:
            raise OAuthError("No URL in OAuth response")
        state_token = body.get("state")
        if not isinstance(state_token, str):
            state_token = ""

        previous = self._state.pending_oauth.swap(
            PendingOAuth(provider=provider.value, state_token=state_token, issued_at=time.time())
        )
        if previous is not None:
            logger.warning(
                "Dropping pending %s authorization in favour of %s", previous.provider, provider.value
            )

        try:
            opened = self._opener(url)
        except webbrowser.Error as e:
            raise OAuthError(f"Failed to open browser: {e}") from e
        if not opened:
            logger.warning("No browser available; open %s manually", url)
        logger.info("Started %s authorization", provider.value)
        return state_token

    def poll(self, state_token: str) -> bool:
        """True once the sidecar reports the flow as ``ok``. Never raises."""
        try:
            body = self._client().get_management("get-auth-status", {"state": state_token})
        except (ManagementAPIError, ValueError) as e:
            logger.debug("Auth status poll failed: %s", e)
            return False
        return isinstance(body, dict) and body.get("status") == "ok"

    def complete(self, provider_name: str, code: str = "") -> AuthStatus:
        """Mark the provider authenticated and clear the pending flow.

        ``code`` is accepted for the UI's benefit; the sidecar has already
        exchanged it.
        """
        provider = _require_provider(provider_name)
        self._state.pending_oauth.set(None)
        auth = self._set_flag(provider, True)
        self._publish(auth)
        logger.info("Authenticated %s", provider.value)
        return auth

    def disconnect(self, provider_name: str) -> AuthStatus:
        provider = _require_provider(provider_name)
        auth = self._set_flag(provider, False)
        self._publish(auth)
        logger.info("Disconnected %s", provider.value)
        return auth

    def refresh(self) -> AuthStatus:
        """Rebuild auth flags from the credential directory."""
        auth = scan_credentials(self.credential_dir)
        self._state.auth_status.set(auth.model_copy())
        self._auth_store.save(auth)
        self._publish(auth)
        return auth

    # ── Callbacks & imports ───────────────────────────────────────────────────

    def handle_deep_link(self, url: str) -> bool:
        """Handle ``proxydeck://oauth/callback?code=..&state=..``.

        Emits an oauth-callback notification when the state matches the
        pending flow. Returns whether it did.
        """
        parts = urlsplit(url)
        if parts.scheme != DEEP_LINK_SCHEME:
            return False
        if (parts.netloc + parts.path).strip("/") != "oauth/callback":
            return False

        params = parse_qs(parts.query)
        code = params.get("code", [""])[0]
        state_token = params.get("state", [""])[0]
        if not code or not state_token:
            return False

        pending = self._state.pending_oauth.get()
        if pending is None or pending.state_token != state_token:
            logger.debug("Ignoring OAuth callback with unknown state")
            return False

        self._notifier.emit(OAUTH_CALLBACK, {"provider": pending.provider, "code": code})
        return True

    def import_vertex_credential(self, file_path: str) -> AuthStatus:
        """Copy a Google service-account key into the credential directory."""
        try:
            with open(file_path, encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise OAuthError(f"Failed to read file: {e}") from e
        try:
            data = json.loads(content)
        except ValueError as e:
            raise OAuthError(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise OAuthError("Service account file must be a JSON object")

        project_id = data.get("project_id")
        if not isinstance(project_id, str) or not project_id:
            raise OAuthError("Missing 'project_id' field in service account JSON")
        if data.get("type") != "service_account":
            raise OAuthError("Invalid service account: 'type' must be 'service_account'")
        if not _PROJECT_ID.fullmatch(project_id):
            raise OAuthError(f"Invalid project_id: {project_id!r}")

        dest = os.path.join(self.credential_dir, f"vertex-{project_id}.json")
        atomic_write_text(dest, content)
        logger.info("Imported Vertex credential for project %s", project_id)

        auth = self._set_flag(Provider.VERTEX, True)
        self._publish(auth)
        return auth

    # ── Internals ─────────────────────────────────────────────────────────────

    def _set_flag(self, provider: Provider, value: bool) -> AuthStatus:
        def apply(auth: AuthStatus) -> AuthStatus:
            auth.mark(provider, value)
            return auth

        auth = self._state.auth_status.update(apply)
        self._auth_store.save(auth)
        return auth

    def _publish(self, auth: AuthStatus) -> None:
        self._notifier.emit(AUTH_STATUS_CHANGED, auth.model_dump())
