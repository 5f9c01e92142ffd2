"""Error kinds for the OAuth flow and their mapping onto HTTP responses.

Every failure the orchestrator can report is one member of ErrorKind.
The endpoint layer turns an OAuthError into the JSON envelope
{"success": false, "message": ..., "error": ...} using ERROR_TABLE.
"""

from enum import Enum
from typing import Optional

from fastapi.responses import JSONResponse


class ErrorKind(Enum):
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_CLIENT = "invalid_client"
    REDIRECT_MISMATCH = "redirect_uri_mismatch"
    AUTHENTICATION_REQUIRED = "authentication_required"
    INVALID_AUTHORIZATION_CODE = "invalid_grant"
    AUTHORIZATION_CODE_USED = "authorization_code_used"
    INVALID_REQUEST = "invalid_request"
    INVALID_TOKEN = "invalid_token"
    INTERNAL_FAILURE = "server_error"


# kind -> (default status, message)
ERROR_TABLE: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.UNSUPPORTED_RESPONSE_TYPE: (400, "Unsupported response type"),
    ErrorKind.UNSUPPORTED_GRANT_TYPE: (400, "Unsupported grant type"),
    ErrorKind.INVALID_CLIENT: (401, "Invalid client"),
    ErrorKind.REDIRECT_MISMATCH: (400, "Redirect URI mismatch"),
    ErrorKind.AUTHENTICATION_REQUIRED: (401, "Authentication required"),
    ErrorKind.INVALID_AUTHORIZATION_CODE: (400, "Invalid or expired authorization code"),
    ErrorKind.AUTHORIZATION_CODE_USED: (400, "Authorization code already used"),
    ErrorKind.INVALID_REQUEST: (400, "Invalid request"),
    ErrorKind.INVALID_TOKEN: (401, "Invalid or expired token"),
    ErrorKind.INTERNAL_FAILURE: (500, "Internal server error"),
}

_missing = set(ErrorKind) - set(ERROR_TABLE)
if _missing:
    raise RuntimeError(f"ERROR_TABLE is missing entries for: {sorted(k.name for k in _missing)}")


class OAuthError(Exception):
    """A protocol failure with a known kind."""

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        super().__init__(detail or ERROR_TABLE[kind][1])

    @property
    def status_code(self) -> int:
        return ERROR_TABLE[self.kind][0]

    @property
    def message(self) -> str:
        return ERROR_TABLE[self.kind][1]


class TokenError(OAuthError):
    """Bearer token failed verification (bad signature, wrong type, expired)."""

    def __init__(self, detail: str):
        super().__init__(ErrorKind.INVALID_TOKEN, detail)


class StoreError(Exception):
    """The persistence backend failed."""


def error_response(
    error: OAuthError,
    status_overrides: Optional[dict[ErrorKind, int]] = None,
) -> JSONResponse:
    """Build the JSON error envelope for an OAuthError."""
    status = error.status_code
    if status_overrides and error.kind in status_overrides:
        status = status_overrides[error.kind]
    return JSONResponse(
        {"success": False, "message": error.message, "error": error.kind.value},
        status_code=status,
    )
