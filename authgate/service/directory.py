from __future__ import annotations

import asyncio
import secrets
from typing import Optional, Protocol

from authgate.logging import get_logger
from authgate.service.credentials import Email, Password
from authgate.service.errors import AlreadyExistsError, UnexpectedError
from authgate.service.passwords import PasswordCheck, PasswordHasher
from authgate.storage.errors import ConstraintViolation, StoreUnavailable
from authgate.storage.models import Identity

logger = get_logger(__name__)


class IdentityStore(Protocol):
    async def add_identity(self, identity: Identity) -> None: ...

    async def get_identity(self, email: Email) -> Optional[Identity]: ...


class IdentityNotFound(Exception):
    pass


class InvalidCredentials(Exception):
    pass


class IdentityDirectory:
    """Lookup and credential validation on top of an ``IdentityStore``.

    ``validate_credentials`` keeps the unknown-email and wrong-password paths
    the same shape: both run exactly one Argon2 verify. For an unknown email
    the verify runs against a throwaway hash. ``prepare`` builds it ahead of
    the first request; until then it is built on first use.
    """

    def __init__(self, store: IdentityStore, hasher: PasswordHasher) -> None:
        self.store = store
        self.hasher = hasher
        self._dummy_hash: Optional[str] = None
        self._dummy_lock = asyncio.Lock()

    async def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            async with self._dummy_lock:
                if self._dummy_hash is None:
                    filler = Password(secrets.token_urlsafe(24))
                    self._dummy_hash = await self.hasher.hash(filler)
        return self._dummy_hash

    async def prepare(self) -> None:
        await self._get_dummy_hash()

    async def add_identity(self, identity: Identity) -> None:
        try:
            await self.store.add_identity(identity)
        except ConstraintViolation:
            raise AlreadyExistsError(
                "user already exists", detail={"field": "email"}
            ) from None
        except StoreUnavailable as exc:
            raise UnexpectedError("identity store unavailable") from exc
        logger.info("identity_added", email_fingerprint=identity.email.fingerprint)

    async def find_identity(self, email: Email) -> Optional[Identity]:
        try:
            return await self.store.get_identity(email)
        except StoreUnavailable as exc:
            raise UnexpectedError("identity store unavailable") from exc

    async def get_identity(self, email: Email) -> Identity:
        identity = await self.find_identity(email)
        if identity is None:
            raise IdentityNotFound(email.fingerprint)
        return identity

    async def validate_credentials(self, email: Email, password: Password) -> Identity:
        identity = await self.find_identity(email)
        if identity is None:
            await self.hasher.verify(password, await self._get_dummy_hash())
            logger.info("credential_check_failed", email_fingerprint=email.fingerprint, reason="unknown_email")
            raise IdentityNotFound(email.fingerprint)

        result = await self.hasher.verify(password, identity.password_hash)
        if result is PasswordCheck.OK:
            return identity
        if result is PasswordCheck.MALFORMED:
            logger.error("stored_password_hash_malformed", email_fingerprint=email.fingerprint)
            raise UnexpectedError("stored credentials are unreadable")
        logger.info("credential_check_failed", email_fingerprint=email.fingerprint, reason="wrong_password")
        raise InvalidCredentials(email.fingerprint)


__all__ = [
    "IdentityDirectory",
    "IdentityNotFound",
    "IdentityStore",
    "InvalidCredentials",
]
