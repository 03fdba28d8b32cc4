"""
Exceptions

Error taxonomy for the agent. Every error carries a human-readable message
and a stable error_code that the API layer maps to a JSON response.
"""

from typing import Optional


class BrandForgeError(Exception):
    """Base error for the BrandForge agent."""

    error_code = "BRANDFORGE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class ConfigurationError(BrandForgeError):
    """Missing or invalid configuration (e.g. no GOOGLE_API_KEY)."""

    error_code = "CONFIGURATION_ERROR"


class TransientRemoteError(BrandForgeError):
    """Network failure, timeout, rate limit or 5xx from a remote service."""

    error_code = "TRANSIENT_REMOTE_ERROR"


class MalformedResponseError(BrandForgeError):
    """A remote response could not be parsed or normalized."""

    error_code = "MALFORMED_RESPONSE"


class ToolSchemaError(BrandForgeError):
    """A tool declares an input schema the remote model cannot accept."""

    error_code = "TOOL_SCHEMA_ERROR"


class TurnExchangeError(BrandForgeError):
    """The agent could not exchange a turn with the model and has nothing to return."""

    error_code = "TURN_EXCHANGE_FAILED"

    def __init__(self, message: str, history: Optional[list] = None):
        super().__init__(message)
        self.history = history or []


class InvalidImageError(BrandForgeError):
    """Caller-supplied image data could not be decoded."""

    error_code = "INVALID_IMAGE"
