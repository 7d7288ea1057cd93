"""
Heuristic parser for sidecar log lines.

The sidecar prints request logs in several shapes, e.g.::

    2024/01/01 12:00:00 POST /v1/chat/completions 200 123ms
    [INFO] POST /v1/messages -> 200 (1.5s) [claude]

``parse_request_log`` turns such a line into a RequestEvent, or returns None.
It is a pure function of the line and the caller's counter: no I/O, no
shared state. Extraction is best effort; anything that does not look like a
request line is dropped without logging.
"""

from __future__ import annotations

import re
import time
from collections.abc import Iterator

from .constants import (
    API_PATHS,
    DEFAULT_MODEL,
    DEFAULT_STATUS,
    HTTP_METHODS,
    NOISE_MARKERS,
    STATUS_MAX,
    STATUS_MIN,
)
from .providers import LOG_KEYWORDS, ROUTING_MARKERS, Provider
from .schemas import RequestEvent

_STATUS_SPLIT = re.compile(r"[\s()\[\]:>]+")
_INTEGER = re.compile(r"[0-9]+")
_DECIMAL = re.compile(r"[0-9]+(?:\.[0-9]+)?")
_MODEL = re.compile(r"\bmodel\"?\s*[=:]\s*\"?([\w.\-/]+)")
_TOKEN_PUNCTUATION = "()[],;"


def is_request_line(line: str) -> bool:
    """True if the line names an HTTP method and an API path and is not noise."""
    if not any(m in line for m in HTTP_METHODS):
        return False
    if not any(p in line for p in API_PATHS):
        return False
    lower = line.lower()
    return not any(marker in lower for marker in NOISE_MARKERS)


def detect_method(line: str) -> str:
    return next((m for m in HTTP_METHODS if m in line), "POST")


def detect_path(line: str) -> str:
    return next((p for p in API_PATHS if p in line), API_PATHS[0])


def detect_provider(line: str) -> str:
    """Classify the upstream provider named in a log line."""
    lower = line.lower()
    for provider, keywords in LOG_KEYWORDS:
        if any(k in lower for k in keywords):
            return provider.value
    for provider, markers in ROUTING_MARKERS.items():
        if any(m in lower for m in markers):
            return provider.value
    return Provider.UNKNOWN.value


def extract_status_code(line: str) -> int | None:
    """First token that is an integer in the HTTP status range."""
    for token in _STATUS_SPLIT.split(line):
        if _INTEGER.fullmatch(token):
            code = int(token)
            if STATUS_MIN <= code <= STATUS_MAX:
                return code
    return None


def extract_duration(line: str) -> int | None:
    """Duration in milliseconds from a ``123ms`` or ``1.5s`` token."""
    for word in line.split():
        word = word.strip(_TOKEN_PUNCTUATION)
        if word.endswith("ms"):
            if _INTEGER.fullmatch(word[:-2]):
                return int(word[:-2])
        elif word.endswith("s"):
            if _DECIMAL.fullmatch(word[:-1]):
                return int(float(word[:-1]) * 1000)
    return None


def extract_model(line: str) -> str | None:
    match = _MODEL.search(line)
    return match.group(1) if match else None


def parse_request_log(
    line: str, counter: Iterator[int], timestamp_ms: int | None = None
) -> RequestEvent | None:
    """Parse one log line into a RequestEvent.

    ``counter`` is owned by the caller (typically ``itertools.count(1)``) and
    is only advanced when an event is produced, so ids stay dense.
    """
    line = line.strip()
    if not is_request_line(line):
        return None

    status = extract_status_code(line)
    duration = extract_duration(line)
    return RequestEvent(
        id=f"req_{next(counter)}",
        timestamp=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        provider=detect_provider(line),
        model=extract_model(line) or DEFAULT_MODEL,
        method=detect_method(line),
        path=detect_path(line),
        status=status if status is not None else DEFAULT_STATUS,
        duration_ms=duration if duration is not None else 0,
    )
