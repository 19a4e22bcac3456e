"""
Error taxonomy for the embed server.
Each error knows the HTTP status and the user-facing message the token endpoint should return;
the internal message (and details) go to the log only.
"""
from typing import Any


class EmbedServiceError(Exception):
    """Base exception for token brokering failures."""

    code = "EMBED_SERVICE_ERROR"
    status_code = 500
    user_message = "Failed to generate embed token"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(EmbedServiceError):
    """Missing or malformed credentials. Fatal at startup."""

    code = "CONFIGURATION_ERROR"


class AuthenticationError(EmbedServiceError):
    """Client-credentials exchange with the identity provider failed."""

    code = "AUTHENTICATION_ERROR"
    status_code = 401
    user_message = "Authentication failed. Please check configuration."


class AccessDeniedError(EmbedServiceError):
    """Power BI answered 403: service principal lacks workspace access."""

    code = "ACCESS_DENIED"
    status_code = 403
    user_message = "Access denied. Please verify Power BI permissions."


class EmbedIssuanceError(EmbedServiceError):
    code = "EMBED_ISSUANCE_ERROR"
