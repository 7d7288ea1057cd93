"""Custom exception classes for the ProxyDeck companion."""

from __future__ import annotations


class ProxyDeckError(Exception):
    """Base exception for companion errors."""


class StoreError(ProxyDeckError):
    """Raised when a config, auth, or history file cannot be written."""


class SidecarError(ProxyDeckError):
    """Raised when the sidecar cannot be spawned or killed."""


class OAuthError(ProxyDeckError):
    """Raised when an OAuth flow cannot be started or finalized."""


class UnknownProviderError(OAuthError):
    """Raised for provider names outside the supported set, or providers
    that have no authorization-URL flow."""


class UsageError(ProxyDeckError):
    """Raised when usage statistics cannot be fetched from the sidecar."""


class ManagementAPIError(ProxyDeckError):
    """Raised for transport failures and non-2xx replies from the sidecar."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
