"""Identity providers and provider classification helpers.

``Provider`` is the closed set of identity providers the sidecar can hold
credentials for. Every table keyed by provider lives here so a new member
only has to be added in one module (the tests check each table covers
every identity provider).
"""

from __future__ import annotations

from enum import Enum


class Provider(str, Enum):
    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"
    QWEN = "qwen"
    IFLOW = "iflow"
    VERTEX = "vertex"
    ANTIGRAVITY = "antigravity"
    UNKNOWN = "unknown"

    @classmethod
    def identity_providers(cls) -> tuple[Provider, ...]:
        """All real providers, i.e. everything except UNKNOWN."""
        return tuple(p for p in cls if p is not cls.UNKNOWN)

    @classmethod
    def parse(cls, name: str) -> Provider:
        """Map a provider name to its member; unrecognized names map to UNKNOWN."""
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


# Management API slug for each provider's authorization-URL endpoint.
# None means the provider has no browser flow (Vertex imports a service account).
AUTH_URL_SLUGS: dict[Provider, str | None] = {
    Provider.CLAUDE: "anthropic",
    Provider.OPENAI: "codex",
    Provider.GEMINI: "gemini-cli",
    Provider.QWEN: "qwen",
    Provider.IFLOW: "iflow",
    Provider.VERTEX: None,
    Provider.ANTIGRAVITY: "antigravity",
}

# Credential file prefixes written by the sidecar into its auth directory.
CREDENTIAL_PREFIXES: dict[Provider, tuple[str, ...]] = {
    Provider.CLAUDE: ("claude-", "anthropic-"),
    Provider.OPENAI: ("codex-",),
    Provider.GEMINI: ("gemini-",),
    Provider.QWEN: ("qwen-",),
    Provider.IFLOW: ("iflow-",),
    Provider.VERTEX: ("vertex-",),
    Provider.ANTIGRAVITY: ("antigravity-",),
}

# Keywords searched (lowercase) in a log line, in precedence order.
LOG_KEYWORDS: list[tuple[Provider, tuple[str, ...]]] = [
    (Provider.CLAUDE, ("claude", "anthropic", "sonnet", "opus", "haiku")),
    (Provider.OPENAI, ("gpt", "codex", "openai")),
    (Provider.GEMINI, ("gemini", "google")),
    (Provider.QWEN, ("qwen",)),
    (Provider.IFLOW, ("iflow",)),
    (Provider.VERTEX, ("vertex",)),
    (Provider.ANTIGRAVITY, ("antigravity",)),
]

# Routed-provider markers such as "-> claude" or "[codex]".
ROUTING_MARKERS: dict[Provider, tuple[str, ...]] = {
    Provider.CLAUDE: ("-> claude", "[claude]"),
    Provider.OPENAI: ("-> openai", "[openai]", "[codex]"),
    Provider.GEMINI: ("-> gemini", "[gemini]"),
    Provider.QWEN: ("-> qwen", "[qwen]"),
    Provider.IFLOW: ("-> iflow", "[iflow]"),
    Provider.VERTEX: ("-> vertex", "[vertex]"),
    Provider.ANTIGRAVITY: ("-> antigravity", "[antigravity]"),
}

def detect_provider_from_model(model: str) -> str:
    """Classify a model name into a provider family.

    Returns a plain string rather than a ``Provider`` because model families
    include upstreams that are not identity providers (deepseek, zhipu).
    """
    m = (model or "").lower()

    # gemini-claude-* models are served through Antigravity; check before claude
    if m.startswith("gemini-claude") or "antigravity" in m:
        return Provider.ANTIGRAVITY.value
    if any(k in m for k in ("claude", "sonnet", "opus", "haiku")):
        return Provider.CLAUDE.value
    if "gpt" in m or "codex" in m or m.startswith(("o1", "o3")):
        return Provider.OPENAI.value
    if "gemini" in m:
        return Provider.GEMINI.value
    if "qwen" in m:
        return Provider.QWEN.value
    if "deepseek" in m:
        return "deepseek"
    if "glm" in m:
        return "zhipu"
    return Provider.UNKNOWN.value
