"""
Client-side errors. Load-path failures are retried (bounded) by the session controller;
a runtime token expiry is recovered by refreshing the token.
"""


class EmbedClientError(Exception):
    pass


class LoadFailure(EmbedClientError):
    """Report could not be loaded (network, server or configuration problem)."""


class ConfigFetchError(LoadFailure):
    pass


class TokenFetchError(LoadFailure):
    def __init__(self, message: str, status_code: int | None = None, correlation_id: str | None = None):
        self.status_code = status_code
        self.correlation_id = correlation_id
        super().__init__(message)


class RuntimeTokenExpiredError(EmbedClientError):
    """The live report reported that its embed token expired."""
