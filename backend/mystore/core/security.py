"""Security helpers for password hashing, session signing and recovery tokens."""
from __future__ import annotations

import hashlib
import secrets
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext

from .config import get_settings


_password_context = CryptContext(schemes=["argon2"], deprecated="auto")


class PasswordHasher:
    """Hash and verify user passwords using Argon2id."""

    @staticmethod
    def hash(password: str) -> str:
        return _password_context.hash(password)

    @staticmethod
    def verify(password: str, hashed: str) -> bool:
        return _password_context.verify(password, hashed)


class SessionSigner:
    """Sign and unsign short-lived session payloads."""

    def __init__(self, salt: str = "mystore-session", secret_key: str | None = None) -> None:
        self._serializer = URLSafeTimedSerializer(secret_key or get_settings().secret_key, salt=salt)

    def dumps(self, data: dict[str, Any]) -> str:
        return self._serializer.dumps(data)

    def loads(self, token: str, max_age: int | None = None) -> dict[str, Any]:
        try:
            return self._serializer.loads(token, max_age=max_age)
        except (BadSignature, SignatureExpired) as exc:
            raise ValueError("Invalid or expired session token") from exc


def generate_recovery_token() -> str:
    return secrets.token_urlsafe(32)


def digest_recovery_token(token: str) -> str:
    """Storage key for a recovery token; the plain value is only ever mailed."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
