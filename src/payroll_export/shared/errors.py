"""Error taxonomy for the payroll export pipeline.

Every error carries a stable ``code`` used in API payloads and OAuth error
redirects, and the HTTP status the API layer should answer with.
"""

from typing import Any, Iterable, Optional


class PayrollExportError(Exception):
    """Base class for all pipeline errors."""

    code = "payroll_export_error"
    status_code = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationMissing(PayrollExportError):
    code = "configuration_missing"
    status_code = 500

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing configuration: {', '.join(self.missing)}")


# ---------------------------------------------------------------------------
# OAuth handshake
# ---------------------------------------------------------------------------

class OAuthHandshakeError(PayrollExportError):
    status_code = 400


class InvalidState(OAuthHandshakeError):
    code = "invalid_state"

    def __init__(self, message: str = "Invalid state parameter"):
        super().__init__(message)


class MissingCode(OAuthHandshakeError):
    code = "missing_code"

    def __init__(self, message: str = "Missing authorization code"):
        super().__init__(message)


class AuthorizationDenied(OAuthHandshakeError):
    code = "authorization_denied"


class UpstreamError(PayrollExportError):
    """An upstream HTTP call answered with a non-2xx status."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message, details=body)
        self.status = status
        self.body = body


class TokenExchangeFailed(UpstreamError):
    code = "token_exchange_failed"


class RefreshFailed(UpstreamError):
    code = "refresh_failed"


class NotAuthorized(PayrollExportError):
    code = "not_authorized"
    status_code = 401

    def __init__(self, message: str = "Fortnox authorization required"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Batch sync
# ---------------------------------------------------------------------------

class ValidationFailed(PayrollExportError):
    code = "validation_failed"
    status_code = 400

    def __init__(self, message: str, missing_fields: Optional[list] = None, details: Any = None):
        super().__init__(message, details=details)
        self.missing_fields = list(missing_fields or [])


class UpstreamPushFailed(UpstreamError):
    code = "upstream_push_failed"


class FlagPersistenceFailed(PayrollExportError):
    """The ERP accepted a record but the local pushed flag could not be saved."""

    code = "flag_persistence_failed"


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------

class RecordStoreError(PayrollExportError):
    code = "record_store_error"
    status_code = 500

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message, details=body)
        self.status = status


class SessionStoreError(PayrollExportError):
    """A session credential could not be persisted."""

    code = "session_store_error"
    status_code = 503


class RecordNotFound(PayrollExportError):
    code = "record_not_found"
    status_code = 404
