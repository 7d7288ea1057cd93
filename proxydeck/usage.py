"""
Usage and cost aggregation.

Two sources feed the same UsageSnapshot shape: the sidecar's own usage
statistics (``/v0/management/usage``) and the local request history. The
sidecar payload is loosely typed, so every field is read defensively:
anything missing or non-numeric counts as zero.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any

from .exceptions import ManagementAPIError, UsageError
from .history_store import DAY_LABEL_FORMAT, HOUR_LABEL_FORMAT, HistoryStore
from .management import SidecarClient
from .pricing import estimate_request_cost
from .providers import detect_provider_from_model
from .schemas import ModelUsage, ProviderUsage, RequestHistory, TimeSeriesPoint, UsageSnapshot
from .state import AppState

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> int:
    """Non-negative integer or 0. Booleans are not numbers here."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value >= 0 else 0
    if isinstance(value, float) and value >= 0 and value.is_integer():
        return int(value)
    return 0


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _series(mapping: Any) -> list[TimeSeriesPoint]:
    return [
        TimeSeriesPoint(label=str(label), value=_as_int(value))
        for label, value in sorted(_as_dict(mapping).items())
    ]


def _provider_rows(models: list[ModelUsage]) -> list[ProviderUsage]:
    rows: dict[str, ProviderUsage] = {}
    for m in models:
        name = detect_provider_from_model(m.model)
        row = rows.setdefault(name, ProviderUsage(provider=name))
        row.requests += m.requests
        row.tokens += m.tokens
    return sorted(rows.values(), key=lambda r: r.requests, reverse=True)


def _price(models: list[ModelUsage]) -> float:
    for m in models:
        m.estimated_cost_usd = estimate_request_cost(m.model, m.input_tokens, m.output_tokens)
    return sum(m.estimated_cost_usd for m in models)


def build_usage_snapshot(payload: Any, now: datetime | None = None) -> UsageSnapshot:
    """Normalize a sidecar usage payload into a UsageSnapshot."""
    if not isinstance(payload, dict):
        return UsageSnapshot()
    usage = payload["usage"] if isinstance(payload.get("usage"), dict) else payload
    today = (now or datetime.now()).strftime(DAY_LABEL_FORMAT)

    models: dict[str, ModelUsage] = {}
    for endpoint in _as_dict(usage.get("apis")).values():
        for name, data in _as_dict(_as_dict(endpoint).get("models")).items():
            data = _as_dict(data)
            row = models.setdefault(name, ModelUsage(model=name))
            row.requests += _as_int(data.get("total_requests"))
            row.tokens += _as_int(data.get("total_tokens"))
            details = data.get("details")
            for detail in details if isinstance(details, list) else []:
                tokens = _as_dict(_as_dict(detail).get("tokens"))
                row.input_tokens += _as_int(tokens.get("input_tokens"))
                row.output_tokens += _as_int(tokens.get("output_tokens"))

    rows = sorted(models.values(), key=lambda m: m.requests, reverse=True)
    cost = _price(rows)

    return UsageSnapshot(
        total_requests=_as_int(usage.get("total_requests")),
        success_count=_as_int(usage.get("success_count")),
        failure_count=_as_int(usage.get("failure_count")),
        total_tokens=_as_int(usage.get("total_tokens")),
        input_tokens=sum(m.input_tokens for m in rows),
        output_tokens=sum(m.output_tokens for m in rows),
        requests_today=_as_int(_as_dict(usage.get("requests_by_day")).get(today)),
        tokens_today=_as_int(_as_dict(usage.get("tokens_by_day")).get(today)),
        estimated_cost_usd=cost,
        models=rows,
        providers=_provider_rows(rows),
        requests_by_day=_series(usage.get("requests_by_day")),
        tokens_by_day=_series(usage.get("tokens_by_day")),
        requests_by_hour=_series(usage.get("requests_by_hour")),
        tokens_by_hour=_series(usage.get("tokens_by_hour")),
    )


def snapshot_from_history(history: RequestHistory, now: datetime | None = None) -> UsageSnapshot:
    """Usage snapshot computed from the local request history.

    Request counts cover the retained window; token and cost totals come
    from the history's cumulative counters.
    """
    today = (now or datetime.now()).strftime(DAY_LABEL_FORMAT)
    models: dict[str, ModelUsage] = {}
    requests_by_day: Counter[str] = Counter()
    requests_by_hour: Counter[str] = Counter()
    success = 0

    for event in history.requests:
        tokens_in = event.tokens_in or 0
        tokens_out = event.tokens_out or 0
        row = models.setdefault(event.model, ModelUsage(model=event.model))
        row.requests += 1
        row.input_tokens += tokens_in
        row.output_tokens += tokens_out
        row.tokens += tokens_in + tokens_out
        if event.status < 400:
            success += 1
        when = datetime.fromtimestamp(event.timestamp / 1000)
        requests_by_day[when.strftime(DAY_LABEL_FORMAT)] += 1
        requests_by_hour[when.strftime(HOUR_LABEL_FORMAT)] += 1

    rows = sorted(models.values(), key=lambda m: m.requests, reverse=True)
    _price(rows)
    tokens_today = next((p.value for p in history.tokens_by_day if p.label == today), 0)

    return UsageSnapshot(
        total_requests=len(history.requests),
        success_count=success,
        failure_count=len(history.requests) - success,
        total_tokens=history.total_tokens_in + history.total_tokens_out,
        input_tokens=history.total_tokens_in,
        output_tokens=history.total_tokens_out,
        requests_today=requests_by_day.get(today, 0),
        tokens_today=tokens_today,
        estimated_cost_usd=history.total_cost_usd,
        models=rows,
        providers=_provider_rows(rows),
        requests_by_day=_series(requests_by_day),
        tokens_by_day=[p.model_copy() for p in history.tokens_by_day],
        requests_by_hour=_series(requests_by_hour),
        tokens_by_hour=[p.model_copy() for p in history.tokens_by_hour],
    )


class UsageAggregator:
    def __init__(self, state: AppState, history: HistoryStore):
        self._state = state
        self._history = history

    def fetch(self) -> UsageSnapshot:
        """Usage statistics from the running sidecar.

        Zero snapshot when the sidecar is not running or the body is not a
        JSON object; UsageError when the sidecar cannot be reached.
        """
        if not self._state.proxy_status.get().running:
            return UsageSnapshot()
        client = SidecarClient.from_config(self._state.config.get())
        try:
            payload = client.get_management("usage")
        except ManagementAPIError as e:
            raise UsageError(f"Failed to fetch usage: {e}") from e
        except ValueError as e:
            logger.debug("Usage response was not JSON: %s", e)
            return UsageSnapshot()
        return build_usage_snapshot(payload)

    def local(self) -> UsageSnapshot:
        return snapshot_from_history(self._history.load())
