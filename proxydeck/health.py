"""Provider health checks and the user-triggered connectivity test."""

from __future__ import annotations

import logging
import time

from .constants import CONNECTION_TEST_TIMEOUT, HEALTH_CHECK_TIMEOUT
from .exceptions import ManagementAPIError
from .management import SidecarClient
from .providers import Provider
from .schemas import ConnectionTestResult, HealthStatus, ProviderHealth
from .state import AppState

logger = logging.getLogger(__name__)


def _classify(authenticated: bool, proxy_healthy: bool, latency_ms: int | None, now: int) -> HealthStatus:
    if authenticated and proxy_healthy:
        return HealthStatus(status="healthy", latency_ms=latency_ms, last_checked=now)
    if authenticated:
        return HealthStatus(status="degraded", last_checked=now)
    return HealthStatus(status="unconfigured", last_checked=now)


def check_provider_health(state: AppState) -> ProviderHealth:
    """Probe the sidecar once and classify every provider against it."""
    now = int(time.time())
    providers = Provider.identity_providers()
    if not state.proxy_status.get().running:
        return ProviderHealth(
            **{p.value: HealthStatus(status="offline", last_checked=now) for p in providers}
        )

    config = state.config.get()
    auth = state.auth_status.get()
    latency: int | None = None
    try:
        status, latency = SidecarClient.from_config(config).ping_models(
            config.proxy_api_key, HEALTH_CHECK_TIMEOUT
        )
        healthy = 200 <= status < 300
    except ManagementAPIError as e:
        logger.debug("Health check failed: %s", e)
        healthy = False

    return ProviderHealth(
        **{p.value: _classify(auth.is_authenticated(p), healthy, latency, now) for p in providers}
    )


def test_connection(state: AppState, agent_id: str) -> ConnectionTestResult:
    """Check that ``agent_id`` could reach the proxy right now. Never raises."""
    if not state.proxy_status.get().running:
        return ConnectionTestResult(success=False, message="Proxy is not running")

    config = state.config.get()
    try:
        status, latency = SidecarClient.from_config(config).ping_models(
            config.proxy_api_key, CONNECTION_TEST_TIMEOUT
        )
    except ManagementAPIError as e:
        return ConnectionTestResult(success=False, message=f"Connection failed: {e}")

    if 200 <= status < 300:
        return ConnectionTestResult(
            success=True,
            message=f"Connection successful! {agent_id} is ready to use.",
            latency_ms=latency,
        )
    return ConnectionTestResult(
        success=False, message=f"Proxy returned status {status}", latency_ms=latency
    )
