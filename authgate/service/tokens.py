from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import math
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from authgate.logging import get_logger
from authgate.service.credentials import Email
from authgate.service.errors import (
    ExpiredTokenError,
    InvalidInputError,
    InvalidTokenError,
    RevokedTokenError,
    UnexpectedError,
)
from authgate.storage.errors import StoreUnavailable

logger = get_logger(__name__)


class RevocationLedger(Protocol):
    """Short-lived record of token ids that must no longer be accepted.

    Entries only need to outlive the token they cancel; backends expire them
    on their own after ``ttl_seconds``.
    """

    async def revoke(self, token_id: str, ttl_seconds: int) -> None: ...

    async def is_revoked(self, token_id: str) -> bool: ...


@dataclass(frozen=True)
class TokenConfig:
    signing_key: str
    issuer: str
    audience: str
    ttl_seconds: int = 3600
    clock_skew_seconds: int = 0

    def __repr__(self) -> str:
        return (
            f"TokenConfig(issuer={self.issuer!r}, audience={self.audience!r}, "
            f"ttl_seconds={self.ttl_seconds}, clock_skew_seconds={self.clock_skew_seconds})"
        )

    @classmethod
    def from_settings(cls, settings) -> "TokenConfig":
        return cls(
            signing_key=settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            ttl_seconds=settings.token_ttl_seconds,
            clock_skew_seconds=settings.clock_skew_seconds,
        )


@dataclass(frozen=True)
class TokenClaims:
    email: Email
    token_id: str
    issued_at: int
    expires_at: int


class TokenService:
    """Issues and verifies HS256 session tokens.

    Verification is split in two: the token is first checked on its own
    (signature, issuer, audience, expiry) and only a token that passes all of
    that is looked up in the revocation ledger. The ledger is never asked
    about forged or expired tokens.
    """

    def __init__(
        self,
        config: TokenConfig,
        ledger: RevocationLedger,
        *,
        ledger_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not config.signing_key:
            raise ValueError("signing_key is required")
        self.config = config
        self.ledger = ledger
        self.ledger_timeout_seconds = ledger_timeout_seconds
        self._clock = clock
        self._key = config.signing_key.encode()

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def issue(self, email: Email) -> str:
        now = int(self._clock())
        payload = {
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "sub": email.expose(),
            "iat": now,
            "exp": now + self.config.ttl_seconds,
            "jti": uuid.uuid4().hex,
        }
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        logger.info("token_issued", email_fingerprint=email.fingerprint, token_id=payload["jti"])
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise InvalidTokenError("invalid token")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidTokenError("invalid token") from None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError("invalid token") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidTokenError("invalid token")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not sig_b64.isascii() or not hmac.compare_digest(expected_sig, sig_b64):
            raise InvalidTokenError("invalid token")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("invalid token") from None
        if not isinstance(payload, dict):
            raise InvalidTokenError("invalid token")
        return payload

    def _claims_from_payload(self, payload: dict[str, Any]) -> TokenClaims:
        if payload.get("iss") != self.config.issuer:
            raise InvalidTokenError("invalid token")
        aud = payload.get("aud")
        if isinstance(aud, str):
            valid_aud = aud == self.config.audience
        elif isinstance(aud, list):
            valid_aud = self.config.audience in aud
        else:
            valid_aud = False
        if not valid_aud:
            raise InvalidTokenError("invalid token")

        jti = payload.get("jti")
        exp = payload.get("exp")
        iat = payload.get("iat", 0)
        if not isinstance(jti, str) or not jti:
            raise InvalidTokenError("invalid token")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidTokenError("invalid token")
        if isinstance(iat, bool) or not isinstance(iat, (int, float)):
            raise InvalidTokenError("invalid token")
        try:
            email = Email.parse(payload.get("sub"))
        except InvalidInputError:
            raise InvalidTokenError("invalid token") from None

        if exp <= self._clock() - self.config.clock_skew_seconds:
            raise ExpiredTokenError("token expired")
        return TokenClaims(
            email=email, token_id=jti, issued_at=int(iat), expires_at=int(exp)
        )

    async def verify(self, token: str) -> TokenClaims:
        claims = self._claims_from_payload(self._decode(token))
        try:
            revoked = await asyncio.wait_for(
                self.ledger.is_revoked(claims.token_id),
                timeout=self.ledger_timeout_seconds,
            )
        except (StoreUnavailable, asyncio.TimeoutError) as exc:
            logger.error(
                "revocation_lookup_failed", token_id=claims.token_id, error=str(exc)
            )
            raise UnexpectedError("could not check token revocation") from exc
        if revoked:
            logger.info("revoked_token_presented", token_id=claims.token_id)
            raise RevokedTokenError("token revoked")
        return claims

    def remaining_lifetime(self, claims: TokenClaims) -> int:
        return max(1, math.ceil(claims.expires_at - self._clock()))

    async def revoke(self, claims: TokenClaims) -> None:
        ttl = self.remaining_lifetime(claims)
        try:
            await asyncio.wait_for(
                self.ledger.revoke(claims.token_id, ttl),
                timeout=self.ledger_timeout_seconds,
            )
        except (StoreUnavailable, asyncio.TimeoutError) as exc:
            logger.error("token_revoke_failed", token_id=claims.token_id, error=str(exc))
            raise UnexpectedError("could not revoke token") from exc
        logger.info("token_revoked", token_id=claims.token_id, ttl_seconds=ttl)


def validate_ttl(ttl_seconds: int) -> int:
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    return int(ttl_seconds)


__all__ = [
    "RevocationLedger",
    "TokenClaims",
    "TokenConfig",
    "TokenService",
    "validate_ttl",
]
