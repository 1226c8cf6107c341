from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Raw request strings are capped here; syntax is checked by the credential types.
MAX_EMAIL_LENGTH = 320
MAX_PASSWORD_LENGTH = 1024
MAX_TOKEN_LENGTH = 8192

_VALID_ERROR_CODES = frozenset({
    "invalid_input",
    "already_exists",
    "not_found",
    "incorrect_credentials",
    "missing_token",
    "invalid_token",
    "expired_token",
    "revoked_token",
    "validation_error",
    "unexpected",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    requires_2fa: bool = Field(False, alias="requires2FA")


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)


class VerifySecondFactorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    login_attempt_id: str = Field(..., alias="loginAttemptId", max_length=64)
    code: str = Field(..., alias="2FACode", max_length=16)


class VerifyTokenRequest(BaseModel):
    token: str = Field(..., max_length=MAX_TOKEN_LENGTH)


class MessageResponse(BaseModel):
    message: str


class SecondFactorRequiredResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    login_attempt_id: str = Field(..., alias="loginAttemptId")


class TokenOwnerResponse(BaseModel):
    email: str
    expires_at: int
