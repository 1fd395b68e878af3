"""Account operations: registration, authentication, sessions and password lifecycle.

Tokens are additive: every successful register/authenticate issues a new one
and logout revokes all of a user's tokens at once. Password changes run as a
single transactional unit through ``db.run_in_transaction``.
"""

from sqlalchemy.exc import IntegrityError

from .schemas import (
    UserOut,
    AuthPayload,
    RegisterRequest,
    LoginRequest,
    UpdatePasswordRequest,
    ResetPasswordRequest,
)
from .crud import (
    select_user,
    select_user_by_email,
    add_user,
    add_token,
    insert_token,
    delete_user_tokens,
    get_user_for_update,
    get_user_by_email_for_update,
)
from .auth import hash_password, verify_password, create_access_token, new_token_id
from .cache import cache_manager, make_cache_key, USER_BY_ID_PREFIX
from .config import settings
from .db import Outcome, run_in_transaction
from .errors import (
    ValidationError,
    NotFoundError,
    AuthError,
    BusinessError,
    InternalError,
)
from .models import User
from .logger import logger

LOGGED_OUT_TEXT = "You are now logged out."
SAME_PASSWORD_TEXT = "Please choose a different password."

# ==================== Helper Functions ====================


def _convert_to_user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
    )


async def _cache_user(user_out: UserOut) -> None:
    if settings.CACHE_ENABLED:
        await cache_manager.set(
            make_cache_key(USER_BY_ID_PREFIX, user_out.id),
            user_out.model_dump(mode="json"),
        )


async def _invalidate_user_cache(user_id: int) -> None:
    if settings.CACHE_ENABLED:
        await cache_manager.delete(make_cache_key(USER_BY_ID_PREFIX, user_id))


async def _require_user(user_id: int, field: str = "id") -> User:
    user = await select_user(user_id)
    if not user:
        logger.warning(f"Unknown user id={user_id}")
        raise ValidationError(f"The selected {field} is invalid.")
    return user


async def issue_token(user_id: int) -> str:
    """Persist a new token row for the user and return the signed bearer token."""
    token_id = new_token_id()
    await insert_token(user_id, settings.TOKEN_NAME, token_id)
    return create_access_token(user_id, token_id)


# ==================== Users ====================


async def get_user(user_id: int) -> UserOut:
    """Public profile of a user, cached by id."""
    logger.debug(f"Fetching user: id={user_id}")

    if settings.CACHE_ENABLED:
        cached_data = await cache_manager.get(make_cache_key(USER_BY_ID_PREFIX, user_id))
        if cached_data:
            return UserOut(**cached_data)

    user = await select_user(user_id)
    if not user:
        logger.warning(f"User not found: id={user_id}")
        raise NotFoundError("User not found.")

    user_out = _convert_to_user_out(user)
    await _cache_user(user_out)
    return user_out


# ==================== Registration & Sessions ====================


async def register_user(data: RegisterRequest) -> AuthPayload:
    """Create an account with the placeholder name and issue its first token."""
    logger.info(f"Registering new user: {data.email}")

    if await select_user_by_email(data.email):
        logger.warning(f"Registration failed - email already exists: {data.email}")
        raise ValidationError("The email has already been taken.")

    hashed_password = hash_password(data.password)
    token_id = new_token_id()

    async def _work(session) -> Outcome:
        user = await add_user(session, settings.USER_DEFAULT_NAME, data.email, hashed_password)
        if not user.id:
            raise InternalError()
        await add_token(session, user.id, settings.TOKEN_NAME, token_id)
        return Outcome(payload=_convert_to_user_out(user))

    try:
        outcome = await run_in_transaction(_work)
    except IntegrityError as e:
        logger.warning(f"Registration lost a race on duplicate email: {data.email}")
        raise ValidationError("The email has already been taken.") from e

    user_out = outcome.payload
    logger.info(f"Successfully stored new user id={user_out.id}, token issued")
    await _cache_user(user_out)

    return AuthPayload(token=create_access_token(user_out.id, token_id), details=user_out)


async def authenticate_user(data: LoginRequest) -> AuthPayload:
    """Verify credentials and issue an additional token."""
    logger.info(f"Authentication attempt for user: {data.email}")

    user = await select_user_by_email(data.email)

    if not user:
        logger.warning(f"Authentication failed - user not found: {data.email}")
        raise AuthError()

    if not verify_password(data.password, user.hashed_password):
        logger.warning(f"Authentication failed - invalid password for user id={user.id}")
        raise AuthError()

    token = await issue_token(user.id)
    logger.info(f"Authentication successful for user id={user.id}")

    return AuthPayload(token=token, details=_convert_to_user_out(user))


async def logout_user(user_id: int) -> str:
    """Revoke every token the user holds."""
    logger.info(f"Logging out user id={user_id}")
    user = await _require_user(user_id)

    revoked = await delete_user_tokens(user.id)
    if not revoked:
        logger.error(f"Failed to log out user id={user.id}: no token revoked")
        raise InternalError("Something went wrong.")

    logger.info(f"User id={user.id} logged out, {revoked} token(s) revoked")
    return LOGGED_OUT_TEXT


# ==================== Password Lifecycle ====================


async def change_password(data: UpdatePasswordRequest) -> None:
    """Replace the password after verifying the current one."""
    logger.info(f"Password change requested for user id={data.id}")
    user = await _require_user(data.id)

    if not verify_password(data.current_password, user.hashed_password):
        logger.warning(f"Password change failed - current password mismatch for user id={user.id}")
        raise ValidationError("The current password is incorrect.")

    if verify_password(data.password, user.hashed_password):
        logger.info(f"Password change rejected - new password equals current for user id={user.id}")
        raise BusinessError(SAME_PASSWORD_TEXT)

    new_hash = hash_password(data.password)

    async def _work(session) -> Outcome:
        row = await get_user_for_update(session, user.id)
        if row is None:
            raise InternalError()
        previous_hash = row.hashed_password
        row.hashed_password = new_hash
        await session.flush()
        if row.hashed_password == previous_hash:
            return Outcome(error=BusinessError(SAME_PASSWORD_TEXT))
        return Outcome()

    outcome = await run_in_transaction(_work)
    if not outcome.ok:
        raise outcome.error

    await _invalidate_user_cache(user.id)
    logger.info(f"Password updated for user id={user.id}")


async def reset_password(data: ResetPasswordRequest) -> None:
    """Overwrite the password of the account behind ``email`` (recovery flow).

    No current-password check. Re-setting the same password still succeeds.
    """
    logger.info(f"Password reset requested for: {data.email}")
    if not await select_user_by_email(data.email):
        logger.warning(f"Password reset failed - unknown email: {data.email}")
        raise ValidationError("The selected email is invalid.")

    new_hash = hash_password(data.password)

    async def _work(session) -> Outcome:
        row = await get_user_by_email_for_update(session, data.email)
        if row is None:
            raise InternalError()
        unchanged = verify_password(data.password, row.hashed_password)
        row.hashed_password = new_hash
        await session.flush()
        return Outcome(payload=(row.id, unchanged))

    outcome = await run_in_transaction(_work)
    user_id, unchanged = outcome.payload
    if unchanged:
        logger.info(f"Password reset for user id={user_id} kept the same password")
    else:
        logger.info(f"Password reset for user id={user_id}")
    await _invalidate_user_cache(user_id)
