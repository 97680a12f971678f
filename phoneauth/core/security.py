"""
Security utilities: JWT signing/verification, password hashing, token digests.

- Access and refresh tokens are signed with separate keys.
- Refresh tokens are persisted only as SHA-256 digests.
- Placeholder passwords for phone-provisioned accounts are bcrypt-hashed via passlib.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Literal, Optional, Union

from jose import jwt
from jose.exceptions import JWTError
from passlib.context import CryptContext

TokenType = Literal["access", "refresh"]

# =============================================================================
# Password hashing
# =============================================================================
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def generate_random_password(length: int = 32) -> str:
    # bcrypt only looks at the first 72 bytes
    return secrets.token_urlsafe(length)[:64]


# =============================================================================
# Digests / comparison
# =============================================================================
def constant_time_compare(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_session_token(nbytes: int = 24) -> str:
    return secrets.token_hex(nbytes)


# =============================================================================
# JWT
# =============================================================================
def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def create_jwt(
    subject: Union[str, int],
    token_type: TokenType,
    *,
    secret_key: str,
    algorithm: str,
    expires_delta: timedelta,
    claims: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    issued = now or _utcnow()
    if issued.tzinfo is None:
        issued = issued.replace(tzinfo=UTC)
    payload: dict[str, Any] = {
        "sub": str(subject),
        "type": token_type,
        "iat": int(issued.timestamp()),
        "exp": int((issued + expires_delta).timestamp()),
        "jti": uuid.uuid4().hex,
    }
    if claims:
        payload.update(claims)
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_token(
    token: str,
    *,
    secret_key: str,
    algorithm: str,
    expected_type: TokenType,
) -> Optional[dict[str, Any]]:
    """Decode and validate signature, expiry and token type. None when invalid."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None
    if payload.get("type") != expected_type:
        return None
    return payload


__all__ = [
    "TokenType",
    "pwd_context",
    "get_password_hash",
    "verify_password",
    "generate_random_password",
    "constant_time_compare",
    "token_digest",
    "generate_session_token",
    "create_jwt",
    "decode_token",
]
