"""Validated credential value objects.

Every string that arrives from a client passes through one of the ``parse``
constructors here before it reaches a store, the hasher or a comparison.
The wrappers never render their payload through ``str``/``repr``; code that
needs the raw value calls ``expose()``.
"""

from __future__ import annotations

import hashlib
import re
import secrets
import unicodedata
import uuid
from typing import Any

from authgate.service.errors import InvalidInputError

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+\Z")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\Z")
_CODE_PATTERN = re.compile(r"^[0-9]{6}\Z")

MIN_PASSWORD_LENGTH = 8
CODE_DIGITS = 6


class InvalidFormat(InvalidInputError):
    """Value does not have the required syntax."""


class TooShort(InvalidInputError):
    """Password is shorter than the minimum length."""


class Email:
    """Normalised email address, compared and hashed by value."""

    __slots__ = ("_value",)

    def __init__(self, normalized: str) -> None:
        object.__setattr__(self, "_value", normalized)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Email is immutable")

    @classmethod
    def parse(cls, raw: Any) -> "Email":
        if not isinstance(raw, str):
            raise InvalidFormat("email must be a string")
        normalized = unicodedata.normalize("NFKC", raw.strip()).lower()
        if not normalized:
            raise InvalidFormat("email is required")
        if len(normalized) > 254:
            raise InvalidFormat("email address too long")
        local, sep, domain = normalized.rpartition("@")
        if not sep or not local or not domain:
            raise InvalidFormat("invalid email address")
        if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
            raise InvalidFormat("invalid email address format")
        labels = domain.split(".")
        if len(labels) < 2:
            raise InvalidFormat("invalid email address format")
        for label in labels:
            if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
                raise InvalidFormat("invalid email address format")
        return cls(normalized)

    def expose(self) -> str:
        return self._value

    @property
    def fingerprint(self) -> str:
        """Stable, non-reversible handle for operator logs."""
        return hashlib.sha256(self._value.encode()).hexdigest()[:16]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Email):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(("email", self._value))

    def __repr__(self) -> str:
        return f"Email(<{self.fingerprint}>)"

    __str__ = __repr__


class Password:
    """Plaintext password held only for the duration of a request.

    Deliberately neither comparable nor hashable; the only comparison that
    may touch a password is the hasher's constant-time verify.
    """

    __slots__ = ("_value",)
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, value: str) -> None:
        self._value = value

    @classmethod
    def parse(cls, raw: Any) -> "Password":
        if not isinstance(raw, str):
            raise InvalidFormat("password must be a string")
        if len(raw) < MIN_PASSWORD_LENGTH:
            raise TooShort(
                f"password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        return cls(raw)

    def expose(self) -> str:
        return self._value

    def __eq__(self, other: object) -> bool:
        return NotImplemented

    def __repr__(self) -> str:
        return "Password(********)"

    __str__ = __repr__


class ChallengeId:
    """Identifier of a pending second-factor challenge (a UUID)."""

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = value

    @classmethod
    def new(cls) -> "ChallengeId":
        return cls(str(uuid.uuid4()))

    @classmethod
    def parse(cls, raw: Any) -> "ChallengeId":
        if not isinstance(raw, str):
            raise InvalidFormat("login attempt id must be a string")
        try:
            parsed = uuid.UUID(raw.strip())
        except ValueError:
            raise InvalidFormat("invalid login attempt id") from None
        return cls(str(parsed))

    def expose(self) -> str:
        return self._value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChallengeId):
            return NotImplemented
        return secrets.compare_digest(self._value, other._value)

    def __hash__(self) -> int:
        return hash(("challenge_id", self._value))

    def __repr__(self) -> str:
        return f"ChallengeId({self._value})"

    __str__ = __repr__


class TwoFactorCode:
    """Six-digit one-time code."""

    __slots__ = ("_value",)
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, value: str) -> None:
        self._value = value

    @classmethod
    def new(cls) -> "TwoFactorCode":
        return cls(str(secrets.randbelow(10**CODE_DIGITS)).zfill(CODE_DIGITS))

    @classmethod
    def parse(cls, raw: Any) -> "TwoFactorCode":
        if not isinstance(raw, str) or not _CODE_PATTERN.match(raw):
            raise InvalidFormat(f"code must be exactly {CODE_DIGITS} digits")
        return cls(raw)

    def expose(self) -> str:
        return self._value

    def matches(self, other: "TwoFactorCode") -> bool:
        return secrets.compare_digest(self._value, other._value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TwoFactorCode):
            return NotImplemented
        return self.matches(other)

    def __repr__(self) -> str:
        return "TwoFactorCode(******)"

    __str__ = __repr__


__all__ = [
    "ChallengeId",
    "Email",
    "InvalidFormat",
    "Password",
    "TooShort",
    "TwoFactorCode",
]
