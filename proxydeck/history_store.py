"""
Request history persistence (history.json).

Only the most recent HISTORY_LIMIT events are stored, but the token and cost
totals are a running ledger over every event ever added: they are updated
incrementally and never recomputed from the trimmed list.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime

from pydantic import ValidationError

from .config_store import atomic_write_text
from .constants import HISTORY_DAY_BUCKETS, HISTORY_HOUR_BUCKETS, HISTORY_LIMIT, HISTORY_PATH
from .pricing import estimate_request_cost
from .schemas import RequestEvent, RequestHistory, TimeSeriesPoint

logger = logging.getLogger(__name__)

DAY_LABEL_FORMAT = "%Y-%m-%d"
HOUR_LABEL_FORMAT = "%Y-%m-%d %H:00"


def _bump(points: list[TimeSeriesPoint], label: str, amount: int, keep: int) -> list[TimeSeriesPoint]:
    """Add ``amount`` to the bucket named ``label`` and keep the newest ``keep`` buckets."""
    for point in points:
        if point.label == label:
            point.value += amount
            return points
    points.append(TimeSeriesPoint(label=label, value=amount))
    points.sort(key=lambda p: p.label)
    return points[-keep:]


class HistoryStore:
    def __init__(self, path: str = HISTORY_PATH, limit: int = HISTORY_LIMIT):
        self.path = path
        self.limit = limit
        self._lock = threading.Lock()

    def load(self) -> RequestHistory:
        if not os.path.exists(self.path):
            return RequestHistory()
        try:
            with open(self.path, encoding="utf-8") as f:
                return RequestHistory.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Could not load %s, starting with empty history: %s", self.path, e)
            return RequestHistory()

    def add(self, event: RequestEvent) -> RequestHistory:
        """Record one request: price it, update totals, append, trim, persist."""
        with self._lock:
            history = self.load()

            tokens_in = event.tokens_in or 0
            tokens_out = event.tokens_out or 0
            history.total_tokens_in += tokens_in
            history.total_tokens_out += tokens_out
            history.total_cost_usd += estimate_request_cost(event.model, tokens_in, tokens_out)

            tokens = tokens_in + tokens_out
            if tokens:
                when = datetime.fromtimestamp(event.timestamp / 1000)
                history.tokens_by_day = _bump(
                    history.tokens_by_day, when.strftime(DAY_LABEL_FORMAT), tokens, HISTORY_DAY_BUCKETS
                )
                history.tokens_by_hour = _bump(
                    history.tokens_by_hour,
                    when.strftime(HOUR_LABEL_FORMAT),
                    tokens,
                    HISTORY_HOUR_BUCKETS,
                )

            history.requests.append(event)
            history.requests = history.requests[-self.limit :]
            self._save(history)
            return history

    def clear(self) -> RequestHistory:
        with self._lock:
            history = RequestHistory()
            self._save(history)
            return history

    def _save(self, history: RequestHistory) -> None:
        atomic_write_text(self.path, history.model_dump_json(by_alias=True, indent=2))
