"""
Pydantic models for every record ProxyDeck persists or exchanges.

Persisted documents (config.json, auth.json, history.json) and request
events use camelCase JSON keys; usage snapshots and API responses use
snake_case. All of them double as FastAPI response models, which gives us
the OpenAPI schema for free.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import (
    CONFIG_VERSION,
    DEFAULT_MANAGEMENT_KEY,
    DEFAULT_PROXY_API_KEY,
    DEFAULT_PROXY_PORT,
)
from .providers import Provider


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Request telemetry ────────────────────────────────────────────────────────


class RequestEvent(CamelModel):
    """A request reconstructed from one sidecar log line. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int  # epoch milliseconds
    provider: str
    model: str
    method: str
    path: str
    status: int
    duration_ms: int = 0
    tokens_in: int | None = None
    tokens_out: int | None = None


class TimeSeriesPoint(BaseModel):
    label: str
    value: int = 0


class RequestHistory(CamelModel):
    """Most recent requests plus cumulative totals over every request ever added."""

    requests: list[RequestEvent] = Field(default_factory=list)
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost_usd: float = 0.0
    tokens_by_day: list[TimeSeriesPoint] = Field(default_factory=list)
    tokens_by_hour: list[TimeSeriesPoint] = Field(default_factory=list)


# ── Auth ─────────────────────────────────────────────────────────────────────


class AuthStatus(BaseModel):
    """Which identity providers currently hold credentials."""

    claude: bool = False
    openai: bool = False
    gemini: bool = False
    qwen: bool = False
    iflow: bool = False
    vertex: bool = False
    antigravity: bool = False

    def is_authenticated(self, provider: Provider) -> bool:
        if provider is Provider.UNKNOWN:
            return False
        return getattr(self, provider.value)

    def mark(self, provider: Provider, authenticated: bool) -> None:
        if provider is Provider.UNKNOWN:
            raise ValueError("cannot mark the unknown provider")
        setattr(self, provider.value, authenticated)


# ── App configuration ────────────────────────────────────────────────────────


class AmpModelMapping(CamelModel):
    source: str = Field("", alias="from")
    target: str = Field("", alias="to")
    enabled: bool = True


class AmpProviderModel(CamelModel):
    name: str
    alias: str = ""


class AmpOpenAIProvider(CamelModel):
    """An OpenAI-compatible upstream routed through the sidecar."""

    id: str = ""
    name: str = ""
    base_url: str = ""
    api_key: str = ""
    models: list[AmpProviderModel] = Field(default_factory=list)


class AppConfig(CamelModel):
    """Persisted application configuration (config.json)."""

    port: int = DEFAULT_PROXY_PORT
    auto_start: bool = True
    launch_at_login: bool = False
    debug: bool = False
    proxy_url: str = ""
    request_retry: int = 0
    usage_stats_enabled: bool = True
    request_logging: bool = True
    logging_to_file: bool = True
    logs_max_total_size_mb: int = 100
    config_version: int = CONFIG_VERSION
    amp_api_key: str = ""
    amp_model_mappings: list[AmpModelMapping] = Field(default_factory=list)
    # Deprecated: folded into amp_openai_providers on load
    amp_openai_provider: AmpOpenAIProvider | None = None
    amp_openai_providers: list[AmpOpenAIProvider] = Field(default_factory=list)
    amp_routing_mode: str = "mappings"
    routing_strategy: str = "round-robin"
    force_model_mappings: bool = True
    close_to_tray: bool = True
    proxy_api_key: str = DEFAULT_PROXY_API_KEY
    management_key: str = DEFAULT_MANAGEMENT_KEY
    disable_control_panel: bool = True


# ── Usage snapshot ───────────────────────────────────────────────────────────


class ModelUsage(BaseModel):
    model: str
    requests: int = 0
    tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0


class ProviderUsage(BaseModel):
    provider: str
    requests: int = 0
    tokens: int = 0


class UsageSnapshot(BaseModel):
    """Aggregated usage view. Recomputed on every query, never persisted."""

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    requests_today: int = 0
    tokens_today: int = 0
    estimated_cost_usd: float = 0.0
    models: list[ModelUsage] = Field(default_factory=list)
    providers: list[ProviderUsage] = Field(default_factory=list)
    requests_by_day: list[TimeSeriesPoint] = Field(default_factory=list)
    tokens_by_day: list[TimeSeriesPoint] = Field(default_factory=list)
    requests_by_hour: list[TimeSeriesPoint] = Field(default_factory=list)
    tokens_by_hour: list[TimeSeriesPoint] = Field(default_factory=list)


# ── Health ───────────────────────────────────────────────────────────────────


class HealthStatus(BaseModel):
    status: str = "unconfigured"  # 'healthy' | 'degraded' | 'offline' | 'unconfigured'
    latency_ms: int | None = None
    last_checked: int = 0


class ProviderHealth(BaseModel):
    claude: HealthStatus = Field(default_factory=HealthStatus)
    openai: HealthStatus = Field(default_factory=HealthStatus)
    gemini: HealthStatus = Field(default_factory=HealthStatus)
    qwen: HealthStatus = Field(default_factory=HealthStatus)
    iflow: HealthStatus = Field(default_factory=HealthStatus)
    vertex: HealthStatus = Field(default_factory=HealthStatus)
    antigravity: HealthStatus = Field(default_factory=HealthStatus)


class ConnectionTestResult(BaseModel):
    success: bool
    message: str = ""
    latency_ms: int | None = None


# ── API request / response bodies ────────────────────────────────────────────


class ProxyStatusResponse(BaseModel):
    running: bool
    state: str
    port: int
    endpoint: str
    reason: str = ""


class OAuthBeginResponse(BaseModel):
    state: str


class OAuthPollResponse(BaseModel):
    complete: bool


class CompleteOAuthRequest(BaseModel):
    code: str = ""


class DeepLinkRequest(BaseModel):
    url: str


class DeepLinkResponse(BaseModel):
    handled: bool


class VertexImportRequest(BaseModel):
    file_path: str


class NotificationResponse(BaseModel):
    seq: int
    kind: str
    payload: Any = None
    timestamp: float


class ActionResponse(BaseModel):
    """Generic success/failure response for POST actions."""

    success: bool
    message: str = ""


class ServerInfoResponse(BaseModel):
    pid: int
    port: str
