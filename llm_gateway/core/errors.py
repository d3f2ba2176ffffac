"""
Error taxonomy for the gateway.

Callers must be able to tell an unknown configuration from a provider
failure from a malformed provider response, so each gets its own type.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigNotFound(GatewayError):
    """Raised when a configuration id does not exist."""

    def __init__(self, config_id: str):
        super().__init__(f"Configuration not found: {config_id}")
        self.config_id = config_id


class ProviderError(GatewayError):
    """Raised for non-2xx responses, transport failures and timeouts.

    ``status_code`` is None when the request never got an HTTP response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_transport_error(self) -> bool:
        """True if no HTTP response was received."""
        return self.status_code is None


class ProtocolError(GatewayError):
    """Raised when a 2xx response body does not match the expected envelope."""


class PersistenceError(GatewayError):
    """Raised when a snapshot cannot be read from or written to storage."""
