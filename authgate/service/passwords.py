from __future__ import annotations

import asyncio
import concurrent.futures
import enum
from typing import Optional

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from authgate.logging import get_logger
from authgate.service.credentials import Password
from authgate.service.errors import UnexpectedError


class PasswordCheck(enum.Enum):
    OK = "ok"
    MISMATCH = "mismatch"
    MALFORMED = "malformed"


class PasswordHasher:
    """Argon2id hashing off the event loop.

    Hashing is deliberately slow, so every call is pushed onto a small
    dedicated thread pool and bounded by ``timeout_seconds``. Request
    handlers never block on the KDF and a saturated pool surfaces as an
    ``UnexpectedError`` instead of an unbounded queue wait.
    """

    DEFAULT_WORKERS = 4
    MAX_WORKERS = 32

    def __init__(
        self,
        *,
        time_cost: int = 2,
        memory_cost: int = 15000,
        parallelism: int = 1,
        workers: int = DEFAULT_WORKERS,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.logger = get_logger(__name__)
        self._argon2 = _Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        pool_size = min(max(1, workers), self.MAX_WORKERS)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix="argon2"
        )
        self._executor_shutdown = False
        self.timeout_seconds = timeout_seconds

    async def _run(self, operation: str, fn, *args, timeout: Optional[float] = None):
        if self._executor_shutdown:
            raise UnexpectedError("password hasher is shut down")
        loop = asyncio.get_running_loop()
        deadline = timeout if timeout is not None else self.timeout_seconds
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, fn, *args), timeout=deadline
            )
        except asyncio.TimeoutError:
            self.logger.error(
                "password_hash_timeout", operation=operation, timeout_seconds=deadline
            )
            raise UnexpectedError("password hashing timed out") from None

    async def hash(self, password: Password, *, timeout: Optional[float] = None) -> str:
        """Return a PHC-formatted Argon2id hash with a fresh random salt."""
        return await self._run("hash", self._argon2.hash, password.expose(), timeout=timeout)

    def _verify_sync(self, password: str, password_hash: str) -> PasswordCheck:
        try:
            self._argon2.verify(password_hash, password)
        except VerifyMismatchError:
            return PasswordCheck.MISMATCH
        except (InvalidHash, VerificationError):
            return PasswordCheck.MALFORMED
        return PasswordCheck.OK

    async def verify(
        self,
        password: Password,
        password_hash: str,
        *,
        timeout: Optional[float] = None,
    ) -> PasswordCheck:
        result = await self._run(
            "verify", self._verify_sync, password.expose(), password_hash, timeout=timeout
        )
        if result is PasswordCheck.MALFORMED:
            self.logger.warning("password_hash_malformed")
        return result

    def shutdown(self, wait: bool = True) -> None:
        """Release the hashing threads. Call during app shutdown."""
        if self._executor_shutdown:
            return
        self._executor_shutdown = True
        try:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)
            self.logger.info("password_hasher_shutdown", wait=wait)
        except Exception as exc:
            self.logger.warning("password_hasher_shutdown_error", error=str(exc))
