"""FastAPI dependencies for bearer-token authentication and ownership checks."""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from .auth import decode_access_token
from .crud import select_token, select_user
from .errors import AuthError, AuthorizationError
from .models import User
from .logger import logger


# ==================== Authentication Dependencies ====================

security = HTTPBearer(auto_error=False)

INVALID_TOKEN_TEXT = "Invalid or revoked authentication token."


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    """Resolve the bearer token to its user. The token row must still exist."""
    if credentials is None:
        raise AuthError("Not authenticated.")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthError(INVALID_TOKEN_TEXT)

    user_id = payload.get("sub")
    token_id = payload.get("jti")
    if user_id is None or token_id is None:
        raise AuthError(INVALID_TOKEN_TEXT)

    token = await select_token(token_id)
    if token is None or str(token.user_id) != str(user_id):
        logger.warning(f"Rejected revoked or foreign token for user id={user_id}")
        raise AuthError(INVALID_TOKEN_TEXT)

    user = await select_user(token.user_id)
    if user is None:
        raise AuthError(INVALID_TOKEN_TEXT)

    return user


def ensure_same_user(current_user: User, user_id: int) -> None:
    """The authenticated user may only act on their own account and posts."""
    if current_user.id != user_id:
        logger.warning(f"User id={current_user.id} attempted to act as user id={user_id}")
        raise AuthorizationError()
