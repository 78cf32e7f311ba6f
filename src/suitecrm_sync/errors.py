"""Error taxonomy for the survey -> SuiteCRM sync pipeline.

Exports:
- SuiteCRMSyncError: common base, carries a human-readable message
- ConfigurationError: missing URL/credentials/database settings
- AuthenticationError: OAuth2 token request rejected or malformed
- TransportError: network failure or timeout talking to the CRM
- CrmApiError: non-2xx response from the CRM, upstream detail preserved
- ValidationError: one or more field constraint violations
- PersistenceError: mapping/log store transaction failure
- SurveyEngineError: the survey engine refused a response or question lookup
"""

from __future__ import annotations


class SuiteCRMSyncError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(SuiteCRMSyncError):
    """Required configuration is missing or incomplete."""


class AuthenticationError(SuiteCRMSyncError):
    """OAuth2 authentication against the CRM failed."""


class TransportError(SuiteCRMSyncError):
    """The CRM could not be reached (connection error, timeout)."""


class CrmApiError(SuiteCRMSyncError):
    """The CRM answered with an error status.

    Args:
        detail: Upstream error detail extracted from the response body.
        status_code: HTTP status code of the failed response.
    """

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(f"SuiteCRM API error: {detail}")
        self.detail = detail
        self.status_code = status_code


class ValidationError(SuiteCRMSyncError):
    """A value violates its CRM field constraints."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors) if errors else "Validation failed")
        self.errors = list(errors)


class PersistenceError(SuiteCRMSyncError):
    """A mapping or sync-log write failed and was rolled back."""


class SurveyEngineError(SuiteCRMSyncError):
    """The survey engine could not provide a response or its questions."""
