from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from authgate.logging import get_logger
from authgate.service.challenges import ConsumeResult
from authgate.service.credentials import ChallengeId, Email, TwoFactorCode
from authgate.service.tokens import validate_ttl
from authgate.storage.errors import ConstraintViolation
from authgate.storage.models import Challenge, Identity


class MemoryStore:
    """In-process identity directory, revocation ledger and challenge store.

    State lives in this process only, so it is suitable for a single
    instance or for tests. All mutations happen under ``_data_lock`` and none
    of the critical sections await, which keeps check-then-act sequences
    atomic with respect to other tasks and threads.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        self.identities: Dict[Email, Identity] = {}
        self.revoked: Dict[str, float] = {}
        self.challenges: Dict[Email, Challenge] = {}
        self._data_lock = threading.RLock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    # -- identities -----------------------------------------------------

    async def add_identity(self, identity: Identity) -> None:
        with self._data_lock:
            if identity.email in self.identities:
                raise ConstraintViolation("email already exists", {"field": "email"})
            self.identities[identity.email] = identity
        self.logger.debug("identity_stored", email_fingerprint=identity.email.fingerprint)

    async def get_identity(self, email: Email) -> Optional[Identity]:
        with self._data_lock:
            return self.identities.get(email)

    # -- revocation ledger ----------------------------------------------

    def _purge_revoked(self, now: float) -> None:
        expired = [jti for jti, until in self.revoked.items() if until <= now]
        for jti in expired:
            del self.revoked[jti]

    async def revoke(self, token_id: str, ttl_seconds: int) -> None:
        ttl = validate_ttl(ttl_seconds)
        with self._data_lock:
            now = self._clock()
            self._purge_revoked(now)
            self.revoked[token_id] = now + ttl

    async def is_revoked(self, token_id: str) -> bool:
        with self._data_lock:
            until = self.revoked.get(token_id)
            if until is None:
                return False
            if until <= self._clock():
                del self.revoked[token_id]
                return False
            return True

    # -- second-factor challenges ---------------------------------------

    async def put_challenge(self, challenge: Challenge, ttl_seconds: int) -> None:
        ttl = validate_ttl(ttl_seconds)
        stored = replace(
            challenge, attempts=0, expires_at=self._now() + timedelta(seconds=ttl)
        )
        with self._data_lock:
            self.challenges[challenge.email] = stored

    def _live_challenge(self, email: Email) -> Optional[Challenge]:
        current = self.challenges.get(email)
        if current is None:
            return None
        if current.is_expired(self._now()):
            del self.challenges[email]
            return None
        return current

    async def consume_challenge(
        self,
        email: Email,
        challenge_id: ChallengeId,
        code: TwoFactorCode,
        max_attempts: int,
    ) -> ConsumeResult:
        with self._data_lock:
            current = self._live_challenge(email)
            if current is None:
                return ConsumeResult.NOT_FOUND
            id_ok = current.challenge_id == challenge_id
            code_ok = current.code.matches(code)
            if id_ok and code_ok:
                del self.challenges[email]
                return ConsumeResult.OK
            current.attempts += 1
            if current.attempts >= max_attempts:
                del self.challenges[email]
                return ConsumeResult.EXHAUSTED
            return ConsumeResult.MISMATCH

    async def delete_challenge(self, email: Email) -> None:
        with self._data_lock:
            self.challenges.pop(email, None)

    async def get_challenge(self, email: Email) -> Optional[Challenge]:
        with self._data_lock:
            current = self._live_challenge(email)
            return replace(current) if current else None

    async def close(self) -> None:
        with self._data_lock:
            self.challenges.clear()
            self.revoked.clear()
