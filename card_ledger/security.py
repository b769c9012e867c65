"""
Security utilities: JWT bearer tokens for caller authentication.

Callers are authenticated upstream (by the platform identity service) and
present a signed JWT on every request. This service only needs to verify
the signature and expiry and read the subject:

  - Tokens are signed with SECRET_KEY using HS256 (HMAC-SHA256)
  - Tokens expire after ACCESS_TOKEN_EXPIRE_MINUTES (default: 30 min)
  - No session storage and no user table: the subject is recorded as the
    caller in audit log lines

create_access_token() is kept here for operator tooling, the demo seed
script and the test suite.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from card_ledger.config import settings


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    The token payload contains:
      - "sub": The subject (caller identity) — standard JWT claim
      - "exp": Expiration timestamp — after this, the token is rejected

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.

    Returns:
        The decoded payload dictionary (contains "sub", "exp", etc.).
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
