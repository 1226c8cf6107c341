from __future__ import annotations

from fastapi import APIRouter, Request, Response

from authgate.api.schemas import (
    Envelope,
    LoginRequest,
    MessageResponse,
    SecondFactorRequiredResponse,
    SignupRequest,
    TokenOwnerResponse,
    VerifySecondFactorRequest,
    VerifyTokenRequest,
)
from authgate.service.runtime import Runtime, get_runtime

router = APIRouter()


def _apply_auth_cookie(response: Response, runtime: Runtime, token: str) -> None:
    response.set_cookie(
        runtime.settings.auth_cookie_name,
        token,
        httponly=True,
        secure=runtime.settings.secure_cookies,
        samesite="lax",
        max_age=runtime.settings.token_ttl_seconds,
        path="/",
    )


@router.post("/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest):
    """Register an email and password, optionally requiring a second factor.

    Raises:
        400: If the email or password is malformed
        409: If the email is already registered
    """
    runtime = get_runtime()
    await runtime.auth.signup(body.email, body.password, body.requires_2fa)
    return Envelope(
        status="ok", data=MessageResponse(message="User created successfully!").model_dump()
    )


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Check a password and either start a session or a second-factor challenge.

    Returns 200 with the session cookie, or 206 with a ``loginAttemptId`` when
    the account requires a second factor. The code is delivered out of band.

    Raises:
        400: If the email or password is malformed
        401: If the credentials are incorrect
    """
    runtime = get_runtime()
    result = await runtime.auth.login(body.email, body.password)
    if result.requires_second_factor:
        response.status_code = 206
        payload = SecondFactorRequiredResponse(
            message="2FA required", login_attempt_id=result.challenge_id.expose()
        )
        return Envelope(status="ok", data=payload.model_dump(by_alias=True))
    _apply_auth_cookie(response, runtime, result.token)
    return Envelope(status="ok", data=MessageResponse(message="Logged in").model_dump())


@router.post("/verify-2fa", response_model=Envelope, tags=["auth"])
async def verify_2fa(body: VerifySecondFactorRequest, response: Response):
    runtime = get_runtime()
    token = await runtime.auth.verify_second_factor(
        body.email, body.login_attempt_id, body.code
    )
    _apply_auth_cookie(response, runtime, token)
    return Envelope(status="ok", data=MessageResponse(message="Logged in").model_dump())


@router.post("/logout", response_model=Envelope, tags=["auth"])
async def logout(request: Request, response: Response):
    """Revoke the session token carried in the auth cookie.

    Raises:
        400: If no auth cookie is present
        401: If the token is invalid, expired or already revoked
    """
    runtime = get_runtime()
    cookie_name = runtime.settings.auth_cookie_name
    await runtime.auth.logout(request.cookies.get(cookie_name))
    response.delete_cookie(
        cookie_name,
        path="/",
        secure=runtime.settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )
    return Envelope(status="ok", data=MessageResponse(message="Logged out").model_dump())


@router.post("/verify-token", response_model=Envelope, tags=["auth"])
async def verify_token(body: VerifyTokenRequest):
    runtime = get_runtime()
    claims = await runtime.auth.verify_token(body.token)
    owner = TokenOwnerResponse(email=claims.email.expose(), expires_at=claims.expires_at)
    return Envelope(status="ok", data=owner.model_dump())
