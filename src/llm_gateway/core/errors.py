"""
Gateway errors — one hierarchy, mapped to HTTP status codes at the edge.

    GatewayError
    ├── ConfigurationError      unknown provider/model, bad setup (fatal, pre-network)
    │   └── CredentialMissingError
    ├── ProviderAuthError       upstream 401 on a non-streaming call
    ├── TransportError          network / HTTP failure talking to a provider
    └── ValidationError         missing required request fields

Malformed stream frames are never raised; the stream reader logs and skips them.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for every error the gateway raises on purpose."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "type": self.__class__.__name__}


class ConfigurationError(GatewayError):
    """The exchange cannot be set up: unknown provider or model, disabled entry."""


class CredentialMissingError(ConfigurationError):
    """No usable API key for a provider (or the stored one is unreadable)."""

    def __init__(self, provider: str, message: str | None = None):
        super().__init__(message or f"API key is missing for {provider} provider")
        self.provider = provider


class ProviderAuthError(GatewayError):
    """The provider rejected our credentials (HTTP 401).

    Carries the provider name and the raw response body so callers can
    report exactly what the upstream said.
    """

    status_code = 401

    def __init__(self, provider: str, message: str, raw_body: str = ""):
        super().__init__(message)
        self.provider = provider
        self.raw_body = raw_body

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": self.__class__.__name__,
            "provider": self.provider,
            "details": self.raw_body,
        }


class TransportError(GatewayError):
    """Network or non-401 HTTP failure while calling a provider."""

    status_code = 502

    def __init__(self, provider: str, message: str, status: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class ValidationError(GatewayError):
    """A request is missing required fields."""

    status_code = 400
