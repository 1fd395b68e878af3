"""Credential hashing and bearer token encoding."""

import secrets
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
import bcrypt
from .config import settings


# ==================== Password Hashing ====================

def hash_password(password: str) -> str:
    """Hash a plain text password using bcrypt for secure storage."""
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt())
    # Stored as text
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain text password against a hashed password."""
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Malformed hash in storage
        return False


# ==================== Bearer Tokens ====================

def new_token_id() -> str:
    """Random identifier stored in the token table and carried as the JWT ``jti``."""
    return secrets.token_hex(20)


def create_access_token(user_id: int, token_id: str) -> str:
    """Sign a bearer token for ``user_id``.

    The token stays valid while its ``token_id`` row exists. An ``exp`` claim
    is only added when JWT_EXPIRATION_MINUTES is configured.
    """
    now = datetime.now(timezone.utc)
    claims = {"sub": str(user_id), "jti": token_id, "iat": now}
    if settings.JWT_EXPIRATION_MINUTES:
        claims["exp"] = now + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a bearer token. Returns the claims, or None if invalid or expired."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
