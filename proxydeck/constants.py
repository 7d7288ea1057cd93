"""
Centralised constants for the ProxyDeck companion.

All magic numbers, timeouts, file-system paths, and keyword tables live
here so they are easy to find, tune, and test.
"""

from __future__ import annotations

import os

# ── Python version ────────────────────────────────────────────────────────────

MIN_PYTHON_VERSION = (3, 11)
"""Minimum supported Python version, enforced by setup.py python_requires."""

# ── Network & server ──────────────────────────────────────────────────────────

DEFAULT_COMPANION_PORT = 5112
"""Default HTTP port for the companion API."""

DEFAULT_PROXY_PORT = 8317
"""Default port the sidecar proxy listens on."""

LOCALHOST = "127.0.0.1"
"""Bind address; the companion API is local-only."""

SIDECAR_HOST = "localhost"
"""Host used for every call into the sidecar."""

DEFAULT_PROXY_API_KEY = "proxydeck-local"
"""Static bearer token clients use against the sidecar's /v1 surface."""

DEFAULT_MANAGEMENT_KEY = "proxydeck-mgmt-key"
"""Static secret sent as X-Management-Key on every management call."""

MANAGEMENT_KEY_HEADER = "X-Management-Key"

DEEP_LINK_SCHEME = "proxydeck"
"""Custom URL scheme used for OAuth deep-link callbacks."""

# ── File-system paths ─────────────────────────────────────────────────────────

DATA_DIR = os.environ.get("PROXYDECK_HOME") or os.path.join(os.path.expanduser("~"), ".proxydeck")
CONFIG_PATH = os.path.join(DATA_DIR, "config.json")
AUTH_PATH = os.path.join(DATA_DIR, "auth.json")
HISTORY_PATH = os.path.join(DATA_DIR, "history.json")
PROXY_CONFIG_PATH = os.path.join(DATA_DIR, "proxy-config.yaml")
PID_FILE = os.path.join(DATA_DIR, ".companion.pid")

CREDENTIAL_DIR = os.environ.get("PROXYDECK_AUTH_DIR") or os.path.join(
    os.path.expanduser("~"), ".cli-proxy-api"
)
"""Directory where the sidecar stores provider credential files."""

SIDECAR_AUTH_DIR_SETTING = "~/.cli-proxy-api"
"""auth-dir value written into the generated sidecar config."""

DEFAULT_SIDECAR_BINARY = "cliproxyapi"
SIDECAR_BINARY_ENV = "PROXYDECK_SIDECAR"

# ── Config schema ─────────────────────────────────────────────────────────────

CONFIG_VERSION = 1
"""Current AppConfig schema version."""

# ── Timeouts & delays (seconds) ──────────────────────────────────────────────

SIDECAR_SETTLE_DELAY = 0.5
"""Pause between spawning the sidecar and declaring it running."""

SIDECAR_STOP_JOIN_TIMEOUT = 2.0
"""How long stop() waits for a killed sidecar's drain thread to finish."""

MANAGEMENT_TIMEOUT = 5
"""Timeout for short management-API calls (auth URL, status poll, usage)."""

HEALTH_CHECK_TIMEOUT = 5
"""Timeout for the /v1/models health check."""

CONNECTION_TEST_TIMEOUT = 10
"""Timeout for the user-triggered connectivity test."""

# ── Atomic writes ─────────────────────────────────────────────────────────────

WRITE_ATTEMPTS = 3
"""How many times to try writing the temp file before giving up."""

WRITE_RETRY_DELAY = 0.1
"""Pause between temp-file write attempts."""

# ── History & notifications ──────────────────────────────────────────────────

HISTORY_LIMIT = 100
"""Number of most-recent request events kept in history.json."""

HISTORY_DAY_BUCKETS = 30
"""Daily token buckets kept in history.json."""

HISTORY_HOUR_BUCKETS = 48
"""Hourly token buckets kept in history.json."""

NOTIFICATION_BUFFER = 500
"""Notifications retained for polling clients."""

# ── Log parsing ───────────────────────────────────────────────────────────────

HTTP_METHODS: tuple[str, ...] = ("POST", "GET", "PUT", "DELETE")
"""Method tokens in first-match priority order (case-sensitive)."""

API_PATHS: tuple[str, ...] = ("/v1/chat/completions", "/v1/messages", "/v1/completions")
"""Recognized request paths in first-match priority order. /v1/models is the
health-check path and must never match."""

NOISE_MARKERS: tuple[str, ...] = ("listening", "starting", "loaded", "config", "error:", "warn:")
"""Lowercase substrings that mark startup/diagnostic lines, not requests."""

STATUS_MIN = 100
STATUS_MAX = 599
DEFAULT_STATUS = 200
DEFAULT_MODEL = "auto"

# ── Pricing (USD per 1M tokens: input, output) ───────────────────────────────

PRICING_RULES: list[tuple[tuple[str, ...], tuple[float, float]]] = [
    (("claude", "opus"), (15.0, 75.0)),
    (("claude", "sonnet"), (3.0, 15.0)),
    (("claude", "haiku"), (0.25, 1.25)),
    (("gpt-5",), (15.0, 45.0)),
    (("gpt-4o",), (2.5, 10.0)),
    (("gpt-4-turbo",), (10.0, 30.0)),
    (("gpt-4",), (10.0, 30.0)),
    (("gpt-3.5",), (0.5, 1.5)),
    (("gemini", "pro"), (1.25, 5.0)),
    (("gemini", "flash"), (0.075, 0.30)),
    (("gemini-2",), (0.10, 0.40)),
    (("qwen",), (0.50, 2.0)),
]
"""Ordered by specificity: every substring in a rule must appear in the model."""

DEFAULT_PRICING: tuple[float, float] = (1.0, 3.0)

TOKENS_PER_PRICING_UNIT = 1_000_000
