from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from authgate.config import Settings, get_settings, reset_settings_cache
from authgate.logging import get_logger
from authgate.service.auth import AuthService
from authgate.service.challenges import SecondFactorChallenges
from authgate.service.directory import IdentityDirectory
from authgate.service.email import EmailService
from authgate.service.passwords import PasswordHasher
from authgate.service.tokens import TokenConfig, TokenService
from authgate.storage.memory import MemoryStore
from authgate.storage.postgres import PostgresStore
from authgate.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        if parsed.username:
            netloc = f"{parsed.username}:***@{netloc}"
        else:
            netloc = f":***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        self.cache: Optional[RedisCache] = None
        self.store: Union[MemoryStore, PostgresStore]
        if self.settings.use_memory_store:
            memory = MemoryStore()
            self.store = memory
            ledger = memory
            challenge_store = memory
        else:
            self.store = PostgresStore(self.settings.database_url)
            self.cache = RedisCache(
                self.settings.redis_url, socket_timeout=self.settings.store_timeout_seconds
            )
            ledger = self.cache
            challenge_store = self.cache
        logger.info(
            "runtime_store_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
            redis_url=None if self.cache is None else _mask_url_password(self.settings.redis_url),
        )

        self.hasher = PasswordHasher(
            time_cost=self.settings.argon2_time_cost,
            memory_cost=self.settings.argon2_memory_cost,
            parallelism=self.settings.argon2_parallelism,
            workers=self.settings.hash_workers,
            timeout_seconds=self.settings.hash_timeout_seconds,
        )
        self.directory = IdentityDirectory(self.store, self.hasher)
        self.challenges = SecondFactorChallenges(
            challenge_store,
            ttl_seconds=self.settings.challenge_ttl_seconds,
            max_attempts=self.settings.challenge_max_attempts,
        )
        self.tokens = TokenService(
            TokenConfig.from_settings(self.settings),
            ledger,
            ledger_timeout_seconds=self.settings.store_timeout_seconds,
        )
        self.email = EmailService.from_settings(self.settings)
        self.auth = AuthService(
            self.directory,
            self.hasher,
            self.challenges,
            self.tokens,
            self.email,
            store_timeout_seconds=self.settings.store_timeout_seconds,
            hash_timeout_seconds=self.settings.hash_timeout_seconds,
            allow_signup=self.settings.allow_signup,
        )
        logger.info("runtime_init_completed")

    async def startup(self) -> None:
        """Open backend connections. Raises if a required backend is unreachable."""
        if isinstance(self.store, PostgresStore):
            await self.store.open()
        if self.cache is not None:
            await asyncio.to_thread(self.cache.verify_connection)
        await self.directory.prepare()
        logger.info("runtime_started")

    async def close(self) -> None:
        self.hasher.shutdown(wait=False)
        await self.store.close()
        if self.cache is not None:
            await self.cache.close()
        logger.info("runtime_closed")


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.hasher.shutdown(wait=False)
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
