"""Tests for companion_api.py routes (FastAPI TestClient)."""

import json
import logging
import urllib.error
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from proxydeck.companion_api import create_app, error_status
from proxydeck.exceptions import OAuthError, SidecarError, StoreError, UnknownProviderError, UsageError
from proxydeck.models import PendingOAuth
from proxydeck.service import CompanionService

from conftest import SIDECAR_BINARY, FakePopen, FakeProcess, eventually, make_response

URLOPEN = "proxydeck.management.urllib.request.urlopen"


@pytest.fixture
def popen():
    return FakePopen(FakeProcess(), FakeProcess())


@pytest.fixture
def service(tmp_path, popen):
    return CompanionService.from_disk(
        sidecar_binary=SIDECAR_BINARY,
        config_path=str(tmp_path / "config.json"),
        auth_path=str(tmp_path / "auth.json"),
        history_path=str(tmp_path / "history.json"),
        proxy_config_path=str(tmp_path / "proxy-config.yaml"),
        credential_dir=str(tmp_path / "creds"),
        popen=popen,
        settle_delay=0,
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorStatus:
    @pytest.mark.parametrize(
        ("exc", "status"),
        [
            (UnknownProviderError("x"), 400),
            (OAuthError("x"), 502),
            (UsageError("x"), 502),
            (SidecarError("x"), 500),
            (StoreError("x"), 500),
        ],
    )
    def test_mapping(self, exc, status):
        assert error_status(exc) == status


# ---------------------------------------------------------------------------
# Sidecar routes
# ---------------------------------------------------------------------------


class TestProxyRoutes:
    def test_initial_status(self, client):
        data = client.get("/api/status").json()
        assert data == {
            "running": False,
            "state": "not_running",
            "port": 8317,
            "endpoint": "http://localhost:8317/v1",
            "reason": "",
        }

    def test_start_and_stop(self, client, popen):
        resp = client.post("/api/proxy/start")
        assert resp.status_code == 200
        assert resp.json()["running"] is True
        assert client.get("/api/status").json()["state"] == "running"

        resp = client.post("/api/proxy/stop")
        assert resp.json()["state"] == "not_running"
        assert len(popen.calls) == 1

    def test_spawn_failure_is_500(self, client, popen):
        popen.results = [FileNotFoundError("no binary")]
        resp = client.post("/api/proxy/start")
        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert "Failed to spawn" in body["message"]

    def test_events_report_transitions(self, client):
        client.post("/api/proxy/start")
        events = client.get("/api/events").json()
        assert [e["kind"] for e in events] == ["proxy-status-changed"]
        assert events[0]["seq"] == 1

        client.post("/api/proxy/stop")
        later = client.get("/api/events", params={"since": 1}).json()
        assert [e["payload"]["state"] for e in later] == ["not_running"]


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------


class TestAuthRoutes:
    def test_auth_status(self, client):
        data = client.get("/api/auth").json()
        assert data["claude"] is False
        assert set(data) == {"claude", "openai", "gemini", "qwen", "iflow", "vertex", "antigravity"}

    def test_vertex_browser_flow_rejected(self, client):
        resp = client.post("/api/oauth/vertex")
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_unreachable_sidecar_is_502(self, client):
        with patch(URLOPEN, side_effect=urllib.error.URLError("refused")):
            resp = client.post("/api/oauth/claude")
        assert resp.status_code == 502

    def test_begin_returns_state(self, client, service):
        service.oauth._opener = lambda _url: True
        with patch(URLOPEN, return_value=make_response({"url": "https://x", "state": "st"})):
            resp = client.post("/api/oauth/gemini")
        assert resp.json() == {"state": "st"}

    def test_poll(self, client):
        with patch(URLOPEN, return_value=make_response({"status": "ok"})):
            assert client.get("/api/oauth/poll", params={"state": "st"}).json() == {"complete": True}

    def test_complete_and_disconnect(self, client):
        data = client.post("/api/oauth/claude/complete", json={"code": "c"}).json()
        assert data["claude"] is True
        data = client.post("/api/auth/claude/disconnect").json()
        assert data["claude"] is False

    def test_callback(self, client, service):
        service.state.pending_oauth.set(PendingOAuth(provider="qwen", state_token="s1", issued_at=0))
        url = "proxydeck://oauth/callback?code=abc&state=s1"
        assert client.post("/api/oauth/callback", json={"url": url}).json() == {"handled": True}
        bad = "proxydeck://oauth/callback?code=abc&state=other"
        assert client.post("/api/oauth/callback", json={"url": bad}).json() == {"handled": False}

    def test_refresh(self, client, tmp_path):
        creds = tmp_path / "creds"
        creds.mkdir()
        (creds / "iflow-user.json").write_text("{}", encoding="utf-8")
        assert client.post("/api/auth/refresh").json()["iflow"] is True

    def test_vertex_import(self, client, tmp_path):
        key = tmp_path / "sa.json"
        key.write_text(json.dumps({"type": "service_account", "project_id": "p1"}), encoding="utf-8")
        resp = client.post("/api/auth/vertex/import", json={"file_path": str(key)})
        assert resp.status_code == 200
        assert resp.json()["vertex"] is True

    def test_vertex_import_invalid_is_502(self, client, tmp_path):
        key = tmp_path / "sa.json"
        key.write_text("{}", encoding="utf-8")
        resp = client.post("/api/auth/vertex/import", json={"file_path": str(key)})
        assert resp.status_code == 502
        assert "project_id" in resp.json()["message"]


# ---------------------------------------------------------------------------
# Config, history, usage, health
# ---------------------------------------------------------------------------


class TestConfigRoutes:
    def test_get_config_is_camel_case(self, client):
        data = client.get("/api/config").json()
        assert data["port"] == 8317
        assert data["autoStart"] is True
        assert data["proxyApiKey"] == "proxydeck-local"

    def test_put_config_persists_and_repoints(self, client, tmp_path):
        config = client.get("/api/config").json()
        config["port"] = 9400
        config["ampModelMappings"] = [{"from": "a", "to": "b", "enabled": False}]
        resp = client.put("/api/config", json=config)
        assert resp.status_code == 200

        saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
        assert saved["port"] == 9400
        assert saved["ampModelMappings"][0]["from"] == "a"
        assert client.get("/api/config").json()["port"] == 9400
        assert client.get("/api/status").json()["endpoint"] == "http://localhost:9400/v1"

    def test_invalid_config_rejected(self, client):
        resp = client.put("/api/config", json={"port": "abc"})
        assert resp.status_code == 422


class TestDataRoutes:
    def test_history_round_trip(self, client):
        data = client.get("/api/history").json()
        assert data["requests"] == []
        assert data["totalCostUsd"] == 0
        assert client.delete("/api/history").json()["totalTokensIn"] == 0

    def test_usage_zero_when_not_running(self, client):
        with patch(URLOPEN) as urlopen:
            data = client.get("/api/usage").json()
        urlopen.assert_not_called()
        assert data["total_requests"] == 0
        assert data["models"] == []

    def test_usage_error_is_502(self, client):
        client.post("/api/proxy/start")
        with patch(URLOPEN, side_effect=urllib.error.URLError("refused")):
            resp = client.get("/api/usage")
        assert resp.status_code == 502

    def test_local_usage(self, client):
        assert client.get("/api/usage/local").json()["total_requests"] == 0

    def test_health_offline(self, client):
        data = client.get("/api/health").json()
        assert data["claude"]["status"] == "offline"

    def test_connection_test(self, client):
        data = client.post("/api/test/claude-code").json()
        assert data == {"success": False, "message": "Proxy is not running", "latency_ms": None}

    def test_server_info(self, client):
        data = client.get("/api/server-info").json()
        assert isinstance(data["pid"], int)
        assert data["port"]


# ---------------------------------------------------------------------------
# Proxied request traffic
# ---------------------------------------------------------------------------


class TestRequestTraffic:
    def test_requests_logged_and_listed(self, client, popen, caplog):
        caplog.set_level(logging.INFO, logger="proxydeck.service")
        popen.results = [FakeProcess(lines=["POST /v1/chat/completions 201 40ms model=gpt-4o"])]
        client.post("/api/proxy/start")

        assert eventually(lambda: "POST /v1/chat/completions -> 201" in caplog.text)
        assert "gpt-4o" in caplog.text
        requests = client.get("/api/history").json()["requests"]
        assert [(r["model"], r["status"]) for r in requests] == [("gpt-4o", 201)]
