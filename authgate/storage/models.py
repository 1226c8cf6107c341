from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from authgate.service.credentials import ChallengeId, Email, TwoFactorCode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Identity:
    """A registered account: the email plus the stored Argon2id hash."""

    email: Email
    password_hash: str
    requires_second_factor: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Challenge:
    """A pending second-factor challenge for one email."""

    email: Email
    challenge_id: ChallengeId
    code: TwoFactorCode
    expires_at: datetime
    attempts: int = 0

    @classmethod
    def new(
        cls,
        email: Email,
        ttl_seconds: int,
        *,
        now: Optional[datetime] = None,
    ) -> "Challenge":
        issued = now or _utcnow()
        return cls(
            email=email,
            challenge_id=ChallengeId.new(),
            code=TwoFactorCode.new(),
            expires_at=issued + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at
