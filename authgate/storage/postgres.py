from __future__ import annotations

from typing import Any, Dict, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from authgate.logging import get_logger
from authgate.service.credentials import Email, InvalidFormat
from authgate.storage.errors import ConstraintViolation, StoreUnavailable
from authgate.storage.models import Identity


class PostgresStore:
    """Postgres-backed identity directory.

    Uniqueness of the email is enforced by the primary key, so two racing
    signups for one address resolve inside the database: the loser gets a
    ``UniqueViolation`` which surfaces as ``ConstraintViolation``.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=False,
        )

    def _connect(self):
        return self.pool.connection()

    async def open(self) -> None:
        """Open the pool and create the ``identity`` table if it is missing."""
        try:
            await self.pool.open(wait=True)
            async with self._connect() as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS identity (
                        email TEXT PRIMARY KEY,
                        password_hash TEXT NOT NULL,
                        requires_2fa BOOLEAN NOT NULL DEFAULT FALSE,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
        except psycopg.Error as exc:
            self.logger.error("postgres_schema_setup_failed", error=str(exc))
            raise StoreUnavailable("postgres", "open") from exc

    async def close(self) -> None:
        await self.pool.close()

    async def ping(self) -> None:
        try:
            async with self._connect() as conn:
                await conn.execute("SELECT 1")
        except psycopg.Error as exc:
            raise StoreUnavailable("postgres", "ping") from exc

    async def add_identity(self, identity: Identity) -> None:
        try:
            async with self._connect() as conn:
                await conn.execute(
                    "INSERT INTO identity (email, password_hash, requires_2fa, created_at)"
                    " VALUES (%s, %s, %s, %s)",
                    (
                        identity.email.expose(),
                        identity.password_hash,
                        identity.requires_second_factor,
                        identity.created_at,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        except psycopg.Error as exc:
            self.logger.error("postgres_add_identity_failed", error=str(exc))
            raise StoreUnavailable("postgres", "add_identity") from exc

    async def get_identity(self, email: Email) -> Optional[Identity]:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "SELECT email, password_hash, requires_2fa, created_at"
                    " FROM identity WHERE email = %s",
                    (email.expose(),),
                )
                row = await cur.fetchone()
        except psycopg.Error as exc:
            self.logger.error("postgres_get_identity_failed", error=str(exc))
            raise StoreUnavailable("postgres", "get_identity") from exc
        if not row:
            return None
        return self._identity_from_row(row)

    def _identity_from_row(self, row: Dict[str, Any]) -> Identity:
        try:
            email = Email.parse(row["email"])
        except InvalidFormat:
            self.logger.error("postgres_identity_row_invalid_email")
            raise StoreUnavailable("postgres", "get_identity") from None
        return Identity(
            email=email,
            password_hash=row["password_hash"],
            requires_second_factor=bool(row.get("requires_2fa")),
            created_at=row["created_at"],
        )
