"""Tests for oauth.py: browser flows, credential scan, deep links, Vertex import."""

import json
import urllib.error
import webbrowser
from unittest.mock import MagicMock, patch

import pytest

from proxydeck.exceptions import OAuthError, UnknownProviderError
from proxydeck.models import PendingOAuth
from proxydeck.notifications import AUTH_STATUS_CHANGED, OAUTH_CALLBACK
from proxydeck.oauth import OAuthCoordinator, scan_credentials
from proxydeck.schemas import AuthStatus

from conftest import make_response

URLOPEN = "proxydeck.management.urllib.request.urlopen"


@pytest.fixture
def opener():
    return MagicMock(return_value=True)


@pytest.fixture
def coordinator(state, auth_store, hub, tmp_path, opener):
    return OAuthCoordinator(
        state, auth_store, hub, credential_dir=str(tmp_path / "creds"), opener=opener
    )


def _kinds(hub):
    return [n.kind for n in hub.since(0)]


# ---------------------------------------------------------------------------
# begin
# ---------------------------------------------------------------------------


class TestBegin:
    def test_returns_state_and_opens_browser(self, coordinator, state, opener):
        body = {"url": "https://claude.ai/oauth?x=1", "state": "st-1"}
        with patch(URLOPEN, return_value=make_response(body)) as urlopen:
            token = coordinator.begin("claude")

        assert token == "st-1"
        opener.assert_called_once_with("https://claude.ai/oauth?x=1")
        pending = state.pending_oauth.get()
        assert pending.provider == "claude"
        assert pending.state_token == "st-1"

        req = urlopen.call_args[0][0]
        assert req.full_url == "http://localhost:8317/v0/management/anthropic-auth-url?is_webui=true"
        assert req.get_header("X-management-key") == "proxydeck-mgmt-key"

    @pytest.mark.parametrize(
        ("provider", "slug"),
        [
            ("openai", "codex"),
            ("gemini", "gemini-cli"),
            ("qwen", "qwen"),
            ("iflow", "iflow"),
            ("antigravity", "antigravity"),
        ],
    )
    def test_provider_slugs(self, coordinator, provider, slug):
        with patch(URLOPEN, return_value=make_response({"url": "u", "state": "s"})) as urlopen:
            coordinator.begin(provider)
        assert f"/v0/management/{slug}-auth-url" in urlopen.call_args[0][0].full_url

    def test_newer_flow_supersedes(self, coordinator, state):
        with patch(URLOPEN, return_value=make_response({"url": "u1", "state": "first"})):
            coordinator.begin("claude")
        with patch(URLOPEN, return_value=make_response({"url": "u2", "state": "second"})):
            coordinator.begin("gemini")
        pending = state.pending_oauth.get()
        assert (pending.provider, pending.state_token) == ("gemini", "second")

    def test_missing_state_becomes_empty(self, coordinator):
        with patch(URLOPEN, return_value=make_response({"url": "u"})):
            assert coordinator.begin("qwen") == ""

    @pytest.mark.parametrize("provider", ["vertex", "bogus", ""])
    def test_rejected_providers(self, coordinator, provider):
        with patch(URLOPEN) as urlopen:
            with pytest.raises(UnknownProviderError):
                coordinator.begin(provider)
        urlopen.assert_not_called()

    def test_unreachable_sidecar(self, coordinator, state):
        with patch(URLOPEN, side_effect=urllib.error.URLError("connection refused")):
            with pytest.raises(OAuthError, match="Failed to get OAuth URL"):
                coordinator.begin("claude")
        assert state.pending_oauth.get() is None

    def test_http_error(self, coordinator):
        err = urllib.error.HTTPError("http://x", 401, "unauthorized", None, None)
        with patch(URLOPEN, side_effect=err):
            with pytest.raises(OAuthError):
                coordinator.begin("claude")

    def test_non_json_body(self, coordinator):
        with patch(URLOPEN, return_value=make_response("not json")):
            with pytest.raises(OAuthError, match="parse"):
                coordinator.begin("claude")

    def test_missing_url(self, coordinator, opener):
        with patch(URLOPEN, return_value=make_response({"state": "s"})):
            with pytest.raises(OAuthError, match="No URL"):
                coordinator.begin("claude")
        opener.assert_not_called()

    def test_browser_error(self, coordinator, opener):
        opener.side_effect = webbrowser.Error("no runnable browser")
        with patch(URLOPEN, return_value=make_response({"url": "u", "state": "s"})):
            with pytest.raises(OAuthError, match="browser"):
                coordinator.begin("claude")


# ---------------------------------------------------------------------------
# poll
# ---------------------------------------------------------------------------


class TestPoll:
    def test_ok(self, coordinator):
        with patch(URLOPEN, return_value=make_response({"status": "ok"})) as urlopen:
            assert coordinator.poll("st-1") is True
        assert urlopen.call_args[0][0].full_url.endswith("/get-auth-status?state=st-1")

    @pytest.mark.parametrize("body", [{"status": "wait"}, {"status": "error"}, {}, [], "null"])
    def test_not_ready(self, coordinator, body):
        with patch(URLOPEN, return_value=make_response(body)):
            assert coordinator.poll("st-1") is False

    def test_transport_error_is_false(self, coordinator):
        with patch(URLOPEN, side_effect=urllib.error.URLError("refused")):
            assert coordinator.poll("st-1") is False

    def test_http_error_is_false(self, coordinator):
        err = urllib.error.HTTPError("http://x", 500, "boom", None, None)
        with patch(URLOPEN, side_effect=err):
            assert coordinator.poll("st-1") is False

    def test_non_json_is_false(self, coordinator):
        with patch(URLOPEN, return_value=make_response("<html>")):
            assert coordinator.poll("st-1") is False


# ---------------------------------------------------------------------------
# complete / disconnect / refresh
# ---------------------------------------------------------------------------


class TestAuthFlags:
    def test_complete_marks_and_clears_pending(self, coordinator, state, auth_store, hub):
        state.pending_oauth.set(PendingOAuth(provider="claude", state_token="s", issued_at=0))
        auth = coordinator.complete("claude", "code-123")

        assert auth.claude is True
        assert state.auth_status.get().claude is True
        assert state.pending_oauth.get() is None
        assert auth_store.load().claude is True
        assert _kinds(hub) == [AUTH_STATUS_CHANGED]
        assert hub.since(0)[0].payload["claude"] is True

    def test_complete_clears_pending_for_other_provider(self, coordinator, state):
        state.pending_oauth.set(PendingOAuth(provider="gemini", state_token="s", issued_at=0))
        coordinator.complete("claude")
        assert state.pending_oauth.get() is None

    def test_complete_unknown_provider(self, coordinator):
        with pytest.raises(UnknownProviderError):
            coordinator.complete("nope")

    def test_disconnect(self, coordinator, state, auth_store):
        state.auth_status.set(AuthStatus(openai=True, qwen=True))
        auth = coordinator.disconnect("openai")
        assert auth.openai is False
        assert auth.qwen is True
        assert auth_store.load().openai is False

    def test_refresh_scans_credential_dir(self, coordinator, tmp_path, state, auth_store, hub):
        creds = tmp_path / "creds"
        creds.mkdir()
        for name in (
            "anthropic-me@example.com.json",
            "codex-1.json",
            "GEMINI-proj.JSON",
            "antigravity-a.json",
            "qwen-notes.txt",
            "other.json",
        ):
            (creds / name).write_text("{}", encoding="utf-8")

        auth = coordinator.refresh()
        assert auth == AuthStatus(claude=True, openai=True, gemini=True, antigravity=True)
        assert state.auth_status.get() == auth
        assert auth_store.load() == auth
        assert _kinds(hub) == [AUTH_STATUS_CHANGED]

    def test_refresh_is_authoritative(self, coordinator, state):
        state.auth_status.set(AuthStatus(claude=True, vertex=True))
        assert coordinator.refresh() == AuthStatus()
        assert state.auth_status.get() == AuthStatus()

    def test_scan_missing_dir(self, tmp_path):
        assert scan_credentials(str(tmp_path / "absent")) == AuthStatus()


# ---------------------------------------------------------------------------
# Deep links
# ---------------------------------------------------------------------------


class TestDeepLink:
    @pytest.fixture(autouse=True)
    def pending(self, state):
        state.pending_oauth.set(PendingOAuth(provider="claude", state_token="st-9", issued_at=0))

    def test_matching_state_emits_callback(self, coordinator, hub):
        assert coordinator.handle_deep_link("proxydeck://oauth/callback?code=abc&state=st-9")
        note = hub.since(0)[-1]
        assert note.kind == OAUTH_CALLBACK
        assert note.payload == {"provider": "claude", "code": "abc"}

    def test_triple_slash_form(self, coordinator):
        assert coordinator.handle_deep_link("proxydeck:///oauth/callback?code=abc&state=st-9")

    @pytest.mark.parametrize(
        "url",
        [
            "proxydeck://oauth/callback?code=abc&state=wrong",
            "proxydeck://oauth/callback?code=abc",
            "proxydeck://oauth/callback?state=st-9",
            "proxydeck://settings?code=abc&state=st-9",
            "https://oauth/callback?code=abc&state=st-9",
        ],
    )
    def test_ignored(self, coordinator, hub, url):
        assert coordinator.handle_deep_link(url) is False
        assert OAUTH_CALLBACK not in _kinds(hub)

    def test_no_pending_flow(self, coordinator, state, hub):
        state.pending_oauth.set(None)
        assert coordinator.handle_deep_link("proxydeck://oauth/callback?code=a&state=st-9") is False


# ---------------------------------------------------------------------------
# Vertex import
# ---------------------------------------------------------------------------


class TestVertexImport:
    def _key_file(self, tmp_path, data):
        path = tmp_path / "key.json"
        path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
        return str(path)

    def test_copies_credential(self, coordinator, tmp_path, auth_store):
        data = {"type": "service_account", "project_id": "my-proj", "private_key": "k"}
        auth = coordinator.import_vertex_credential(self._key_file(tmp_path, data))

        dest = tmp_path / "creds" / "vertex-my-proj.json"
        assert json.loads(dest.read_text(encoding="utf-8")) == data
        assert auth.vertex is True
        assert auth_store.load().vertex is True

    @pytest.mark.parametrize(
        ("data", "match"),
        [
            ({"type": "service_account"}, "project_id"),
            ({"type": "authorized_user", "project_id": "p"}, "service_account"),
            ({"type": "service_account", "project_id": ""}, "project_id"),
            ({"type": "service_account", "project_id": "../escape"}, "Invalid project_id"),
            ("not json", "Invalid JSON"),
            ([1, 2], "JSON object"),
        ],
    )
    def test_invalid_files(self, coordinator, tmp_path, data, match):
        with pytest.raises(OAuthError, match=match):
            coordinator.import_vertex_credential(self._key_file(tmp_path, data))

    def test_missing_file(self, coordinator, tmp_path):
        with pytest.raises(OAuthError, match="Failed to read"):
            coordinator.import_vertex_credential(str(tmp_path / "nope.json"))
