from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authgate.logging import get_logger
from authgate.service.challenges import ConsumeResult
from authgate.service.credentials import ChallengeId, Email, InvalidFormat, TwoFactorCode
from authgate.service.tokens import validate_ttl
from authgate.storage.errors import StoreUnavailable
from authgate.storage.models import Challenge


class RedisCache:
    """Redis-backed revocation ledger and second-factor challenge store."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Compare-and-delete for one pending challenge. Runs as a single script so
    # a concurrent issue or consume for the same email cannot interleave.
    _CONSUME_CHALLENGE_SCRIPT = """
local data = redis.call('HMGET', KEYS[1], 'challenge_id', 'code')
if not data[1] or not data[2] then
  return 'not_found'
end
if data[1] == ARGV[1] and data[2] == ARGV[2] then
  redis.call('DEL', KEYS[1])
  return 'ok'
end
local attempts = redis.call('HINCRBY', KEYS[1], 'attempts', 1)
if attempts >= tonumber(ARGV[3]) then
  redis.call('DEL', KEYS[1])
  return 'exhausted'
end
return 'mismatch'
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.logger = get_logger(__name__)
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @classmethod
    def from_client(cls, client) -> "RedisCache":
        cache = cls.__new__(cls)
        cache.redis_url = ""
        cache.logger = get_logger(__name__)
        cache.client = client
        return cache

    @staticmethod
    def _challenge_key(email: Email) -> str:
        digest = hashlib.sha256(email.expose().encode()).hexdigest()
        return f"auth:2fa:{digest}"

    @staticmethod
    def _revoked_key(token_id: str) -> str:
        return f"auth:revoked:{token_id}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    def _unavailable(self, operation: str, exc: Exception) -> StoreUnavailable:
        self.logger.error("redis_operation_failed", operation=operation, error=str(exc))
        return StoreUnavailable("redis", operation)

    # -- revocation ledger ----------------------------------------------

    async def revoke(self, token_id: str, ttl_seconds: int) -> None:
        ttl = validate_ttl(ttl_seconds)
        try:
            await self.client.set(self._revoked_key(token_id), "1", ex=ttl)
        except (RedisError, OSError) as exc:
            raise self._unavailable("revoke", exc) from exc

    async def is_revoked(self, token_id: str) -> bool:
        try:
            return bool(await self.client.exists(self._revoked_key(token_id)))
        except (RedisError, OSError) as exc:
            raise self._unavailable("is_revoked", exc) from exc

    # -- second-factor challenges ---------------------------------------

    async def put_challenge(self, challenge: Challenge, ttl_seconds: int) -> None:
        ttl = validate_ttl(ttl_seconds)
        key = self._challenge_key(challenge.email)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(key)
            pipe.hset(
                key,
                mapping={
                    "challenge_id": challenge.challenge_id.expose(),
                    "code": challenge.code.expose(),
                    "attempts": 0,
                },
            )
            pipe.expire(key, ttl)
            await pipe.execute()
        except (RedisError, OSError) as exc:
            raise self._unavailable("put_challenge", exc) from exc

    async def consume_challenge(
        self,
        email: Email,
        challenge_id: ChallengeId,
        code: TwoFactorCode,
        max_attempts: int,
    ) -> ConsumeResult:
        try:
            result = await self.client.eval(
                self._CONSUME_CHALLENGE_SCRIPT,
                1,
                self._challenge_key(email),
                challenge_id.expose(),
                code.expose(),
                max_attempts,
            )
        except (RedisError, OSError) as exc:
            raise self._unavailable("consume_challenge", exc) from exc
        if isinstance(result, bytes):
            result = result.decode()
        try:
            return ConsumeResult(result)
        except ValueError:
            self.logger.error("redis_unexpected_script_result", result=str(result))
            raise StoreUnavailable("redis", "consume_challenge") from None

    async def delete_challenge(self, email: Email) -> None:
        try:
            await self.client.delete(self._challenge_key(email))
        except (RedisError, OSError) as exc:
            raise self._unavailable("delete_challenge", exc) from exc

    async def get_challenge(self, email: Email) -> Optional[Challenge]:
        key = self._challenge_key(email)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hgetall(key)
            pipe.ttl(key)
            data, ttl = await pipe.execute()
        except (RedisError, OSError) as exc:
            raise self._unavailable("get_challenge", exc) from exc
        if not data or ttl is None or int(ttl) <= 0:
            return None
        try:
            return Challenge(
                email=email,
                challenge_id=ChallengeId.parse(data.get("challenge_id")),
                code=TwoFactorCode.parse(data.get("code")),
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(ttl)),
                attempts=int(data.get("attempts", 0)),
            )
        except (InvalidFormat, TypeError, ValueError):
            self.logger.warning("redis_challenge_record_corrupt")
            return None

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
