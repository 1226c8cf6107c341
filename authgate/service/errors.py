from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries the HTTP ``status_code`` used by the adapter and a
    stable ``error_code`` that clients can branch on:
    - invalid_input (400)
    - missing_token (400)
    - incorrect_credentials (401)
    - invalid_token / expired_token / revoked_token (401)
    - not_found (404)
    - already_exists (409)
    - unexpected (500)
    """

    status_code: int = 400
    error_code: str = "invalid_input"

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


class InvalidInputError(ServiceError):
    """Malformed email, password, code or identifier (400)."""
    status_code = 400
    error_code = "invalid_input"


class AlreadyExistsError(ServiceError):
    """An identity is already registered for the email (409)."""
    status_code = 409
    error_code = "already_exists"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class IncorrectCredentialsError(ServiceError):
    """Unknown identity, wrong password or wrong second-factor code (401).

    All three cases produce the same message and code.
    """
    status_code = 401
    error_code = "incorrect_credentials"


class MissingTokenError(ServiceError):
    """No session token was presented (400)."""
    status_code = 400
    error_code = "missing_token"


class InvalidTokenError(ServiceError):
    """Token is malformed or its signature does not verify (401)."""
    status_code = 401
    error_code = "invalid_token"


class ExpiredTokenError(InvalidTokenError):
    error_code = "expired_token"


class RevokedTokenError(InvalidTokenError):
    error_code = "revoked_token"


class UnexpectedError(ServiceError):
    """Backend or infrastructure failure (500)."""
    status_code = 500
    error_code = "unexpected"


__all__ = [
    "ServiceError",
    "InvalidInputError",
    "AlreadyExistsError",
    "NotFoundError",
    "IncorrectCredentialsError",
    "MissingTokenError",
    "InvalidTokenError",
    "ExpiredTokenError",
    "RevokedTokenError",
    "UnexpectedError",
]
