"""Error taxonomy for the NFSe pipeline.

Every failure the pipeline raises derives from IntegrationError so that
batch loops can catch one base class per item, and the API layer can map
each subclass to a single HTTP status.

Request-level (fatal to the request in progress):
- ConfigurationError: missing/invalid client credentials
- AuthenticationError: no token, no refresh token, refresh rejected
- CsrfError: unknown, expired or already consumed OAuth state

Item-level (caught per order/record inside a batch):
- ValidationError: order lacks a usable customer document
- RemoteApiError: non-success HTTP response from the ERP
- RemoteTimeoutError: per-call deadline exceeded
- ConflictError: an RPS already exists for the order
- NotFoundError: referenced local record absent
"""

from typing import Optional


class IntegrationError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(IntegrationError):
    """Client credentials are missing or invalid."""
    pass


class AuthenticationError(IntegrationError):
    """No usable token, or the refresh grant failed."""
    pass


class CsrfError(IntegrationError):
    """OAuth state was never issued, expired, or was already used."""
    pass


class ValidationError(IntegrationError):
    """Order data cannot be used to issue an invoice."""
    pass


class RemoteApiError(IntegrationError):
    """Non-success HTTP response from the ERP."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class RemoteTimeoutError(IntegrationError, TimeoutError):
    """A call to the ERP exceeded its deadline and was cancelled."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class ConflictError(IntegrationError):
    """An RPS record already exists for the order."""
    pass


class NotFoundError(IntegrationError):
    """A referenced local record does not exist."""
    pass


# Abort the request in progress instead of becoming a per-item result
REQUEST_FATAL_ERRORS = (AuthenticationError, ConfigurationError, CsrfError)
