from __future__ import annotations

import enum
from typing import Optional, Protocol

from authgate.logging import get_logger
from authgate.service.credentials import ChallengeId, Email, TwoFactorCode
from authgate.storage.models import Challenge

logger = get_logger(__name__)


class ConsumeResult(enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    MISMATCH = "mismatch"
    EXHAUSTED = "exhausted"


class ChallengeStore(Protocol):
    """Storage for pending second-factor challenges, at most one per email."""

    async def put_challenge(self, challenge: Challenge, ttl_seconds: int) -> None: ...

    async def consume_challenge(
        self,
        email: Email,
        challenge_id: ChallengeId,
        code: TwoFactorCode,
        max_attempts: int,
    ) -> ConsumeResult: ...

    async def delete_challenge(self, email: Email) -> None: ...

    async def get_challenge(self, email: Email) -> Optional[Challenge]: ...


class ChallengeRejected(Exception):
    """Base for a second-factor attempt that did not succeed."""


class ChallengeNotFound(ChallengeRejected):
    """No pending challenge for the email, or it has expired."""


class ChallengeMismatch(ChallengeRejected):
    """The challenge id or the code did not match the pending challenge."""


class ChallengeExhausted(ChallengeMismatch):
    """Too many wrong codes; the pending challenge has been discarded."""


class SecondFactorChallenges:
    """Issue and redeem one-time second-factor challenges.

    A successful redemption deletes the challenge inside the same atomic
    store operation that compares it, so a code can be redeemed at most once
    no matter how many requests race for it.
    """

    def __init__(
        self, store: ChallengeStore, *, ttl_seconds: int = 600, max_attempts: int = 5
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts

    async def issue(self, email: Email) -> Challenge:
        challenge = Challenge.new(email, self.ttl_seconds)
        await self.store.put_challenge(challenge, self.ttl_seconds)
        logger.info(
            "second_factor_challenge_issued",
            email_fingerprint=email.fingerprint,
            challenge_id=challenge.challenge_id.expose(),
            ttl_seconds=self.ttl_seconds,
        )
        return challenge

    async def verify_and_consume(
        self, email: Email, challenge_id: ChallengeId, code: TwoFactorCode
    ) -> None:
        result = await self.store.consume_challenge(
            email, challenge_id, code, self.max_attempts
        )
        if result is ConsumeResult.OK:
            logger.info(
                "second_factor_challenge_consumed",
                email_fingerprint=email.fingerprint,
                challenge_id=challenge_id.expose(),
            )
            return
        logger.warning(
            "second_factor_challenge_rejected",
            email_fingerprint=email.fingerprint,
            challenge_id=challenge_id.expose(),
            reason=result.value,
        )
        if result is ConsumeResult.NOT_FOUND:
            raise ChallengeNotFound("no pending challenge")
        if result is ConsumeResult.EXHAUSTED:
            raise ChallengeExhausted("challenge attempts exhausted")
        raise ChallengeMismatch("challenge does not match")

    async def clear(self, email: Email) -> None:
        await self.store.delete_challenge(email)


__all__ = [
    "ChallengeExhausted",
    "ChallengeMismatch",
    "ChallengeNotFound",
    "ChallengeRejected",
    "ChallengeStore",
    "ConsumeResult",
    "SecondFactorChallenges",
]
