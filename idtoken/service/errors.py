from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines an HTTP ``status_code`` and a stable
    ``error_code`` so callers can surface failures without string matching.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class TokenError(ServiceError):
    """Base class for token lifecycle failures.

    ``code`` keeps the numeric codes already used by clients of the
    token store, ``error_code`` is the symbolic name.
    """

    code: str = ""
    default_message: str = "token error"

    def __init__(self, message: Optional[str] = None, **kwargs) -> None:
        super().__init__(message or self.default_message, **kwargs)


class InvalidCreateParamsError(TokenError):
    """create() was called without an identifier (400)."""
    status_code = 400
    error_code = "invalid_create_params"
    code = "2101"
    default_message = "id can't be empty"


class MissingTokenParamError(TokenError):
    """verify() was called without a token (400)."""
    status_code = 400
    error_code = "missing_token_param"
    code = "2102"
    default_message = "token can't be empty"


InvalidVerifyParamsError = MissingTokenParamError


class VerifyIdFailedError(TokenError):
    """No identifier is stored for the token: unknown, expired, consumed or superseded (401)."""
    status_code = 401
    error_code = "verify_id_failed"
    code = "2103"
    default_message = "token verify failed"


class VerifyTokenFailedError(TokenError):
    """The identifier has no current token (401)."""
    status_code = 401
    error_code = "verify_token_failed"
    code = "2104"
    default_message = "token verify failed"


class TokenNotFoundError(VerifyTokenFailedError):
    """get() found no current token for the identifier."""
    error_code = "token_not_found"


class VerifyChangedError(TokenError):
    """A later create() replaced this token, i.e. the account logged in elsewhere (401)."""
    status_code = 401
    error_code = "verify_changed"
    code = "2105"
    default_message = "your account has login another device"


__all__ = [
    "ServiceError",
    "TokenError",
    "InvalidCreateParamsError",
    "MissingTokenParamError",
    "InvalidVerifyParamsError",
    "VerifyIdFailedError",
    "VerifyTokenFailedError",
    "TokenNotFoundError",
    "VerifyChangedError",
]
