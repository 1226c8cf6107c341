from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Protocol, TypeVar

from authgate.logging import get_logger
from authgate.service.challenges import ChallengeRejected, SecondFactorChallenges
from authgate.service.credentials import ChallengeId, Email, Password, TwoFactorCode
from authgate.service.directory import (
    IdentityDirectory,
    IdentityNotFound,
    InvalidCredentials,
)
from authgate.service.errors import (
    AlreadyExistsError,
    IncorrectCredentialsError,
    InvalidTokenError,
    MissingTokenError,
    NotFoundError,
    UnexpectedError,
)
from authgate.service.passwords import PasswordHasher
from authgate.service.tokens import TokenClaims, TokenService
from authgate.storage.errors import StoreUnavailable
from authgate.storage.models import Identity

logger = get_logger(__name__)

T = TypeVar("T")


class SecondFactorNotifier(Protocol):
    async def send_two_factor_code(
        self, recipient: Email, code: TwoFactorCode, *, expires_in_seconds: int = 600
    ) -> bool: ...


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful password check.

    Exactly one of ``token`` and ``challenge_id`` is set.
    """

    token: Optional[str] = None
    challenge_id: Optional[ChallengeId] = None

    @property
    def requires_second_factor(self) -> bool:
        return self.challenge_id is not None


class AuthService:
    """Signup, login, second-factor verification, logout and token checks.

    Every call into a directory or challenge backend is bounded by
    ``store_timeout_seconds``. Backend faults and timeouts are logged with
    their internal detail and surface to callers as ``UnexpectedError``.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        hasher: PasswordHasher,
        challenges: SecondFactorChallenges,
        tokens: TokenService,
        notifier: SecondFactorNotifier,
        *,
        store_timeout_seconds: float = 5.0,
        hash_timeout_seconds: float = 10.0,
        allow_signup: bool = True,
    ) -> None:
        self.directory = directory
        self.hasher = hasher
        self.challenges = challenges
        self.tokens = tokens
        self.notifier = notifier
        self.store_timeout_seconds = store_timeout_seconds
        self.hash_timeout_seconds = hash_timeout_seconds
        self.allow_signup = allow_signup
        self.logger = logger

    async def _guard(
        self, operation: str, call: Awaitable[T], *, timeout: Optional[float] = None
    ) -> T:
        deadline = timeout if timeout is not None else self.store_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=deadline)
        except asyncio.TimeoutError:
            self.logger.error("backend_timeout", operation=operation, timeout_seconds=deadline)
            raise UnexpectedError("backend timed out") from None
        except StoreUnavailable as exc:
            self.logger.error(
                "backend_unavailable",
                operation=operation,
                backend=exc.backend,
                error=str(exc.__cause__ or exc),
            )
            raise UnexpectedError("backend unavailable") from exc

    async def signup(
        self, email: Any, password: Any, requires_second_factor: bool = False
    ) -> Identity:
        if not self.allow_signup:
            raise NotFoundError("signup is disabled")
        parsed_email = Email.parse(email)
        parsed_password = Password.parse(password)

        existing = await self._guard(
            "find_identity", self.directory.find_identity(parsed_email)
        )
        if existing is not None:
            self.logger.info("signup_rejected", email_fingerprint=parsed_email.fingerprint, reason="exists")
            raise AlreadyExistsError("user already exists", detail={"field": "email"})

        password_hash = await self.hasher.hash(parsed_password)
        identity = Identity(
            email=parsed_email,
            password_hash=password_hash,
            requires_second_factor=bool(requires_second_factor),
        )
        await self._guard("add_identity", self.directory.add_identity(identity))
        self.logger.info(
            "signup_completed",
            email_fingerprint=parsed_email.fingerprint,
            requires_second_factor=identity.requires_second_factor,
        )
        return identity

    async def login(self, email: Any, password: Any) -> LoginResult:
        parsed_email = Email.parse(email)
        parsed_password = Password.parse(password)

        try:
            identity = await self._guard(
                "validate_credentials",
                self.directory.validate_credentials(parsed_email, parsed_password),
                timeout=self.store_timeout_seconds + self.hash_timeout_seconds,
            )
        except (IdentityNotFound, InvalidCredentials):
            raise IncorrectCredentialsError("incorrect credentials") from None

        if not identity.requires_second_factor:
            self.logger.info("login_succeeded", email_fingerprint=parsed_email.fingerprint)
            return LoginResult(token=self.tokens.issue(parsed_email))

        challenge = await self._guard("issue_challenge", self.challenges.issue(parsed_email))
        delivered = await self.notifier.send_two_factor_code(
            parsed_email, challenge.code, expires_in_seconds=self.challenges.ttl_seconds
        )
        if not delivered:
            self.logger.error(
                "second_factor_delivery_failed", email_fingerprint=parsed_email.fingerprint
            )
            await self._guard("clear_challenge", self.challenges.clear(parsed_email))
            raise UnexpectedError("could not deliver login code")
        self.logger.info(
            "login_second_factor_required",
            email_fingerprint=parsed_email.fingerprint,
            challenge_id=challenge.challenge_id.expose(),
        )
        return LoginResult(challenge_id=challenge.challenge_id)

    async def verify_second_factor(
        self, email: Any, challenge_id: Any, code: Any
    ) -> str:
        parsed_email = Email.parse(email)
        parsed_id = ChallengeId.parse(challenge_id)
        parsed_code = TwoFactorCode.parse(code)

        try:
            await self._guard(
                "consume_challenge",
                self.challenges.verify_and_consume(parsed_email, parsed_id, parsed_code),
            )
        except ChallengeRejected:
            raise IncorrectCredentialsError("incorrect credentials") from None
        self.logger.info("second_factor_verified", email_fingerprint=parsed_email.fingerprint)
        return self.tokens.issue(parsed_email)

    async def logout(self, token: Optional[str]) -> TokenClaims:
        if not token:
            raise MissingTokenError("missing auth token")
        try:
            claims = await self.tokens.verify(token)
        except InvalidTokenError:
            raise InvalidTokenError("invalid token") from None
        await self.tokens.revoke(claims)
        self.logger.info(
            "logout_completed",
            email_fingerprint=claims.email.fingerprint,
            token_id=claims.token_id,
        )
        return claims

    async def verify_token(self, token: Optional[str]) -> TokenClaims:
        if not token:
            raise MissingTokenError("missing auth token")
        return await self.tokens.verify(token)


__all__ = ["AuthService", "LoginResult", "SecondFactorNotifier"]
