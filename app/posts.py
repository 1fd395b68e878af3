"""Post operations: create/update/delete with an optional image, and reads.

Writes that touch both ``posts`` and ``images`` run as one transactional unit.
The image file is written and verified on disk before its row is saved, so a
row never points at a missing file. A file superseded by an update is
removed only after the transaction has committed.
"""

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from .schemas import PostOut
from .crud import (
    add_post,
    add_image,
    get_post_for_update,
    get_image_for_post,
    soft_delete_post,
    select_post,
    select_random_post,
    list_user_posts,
)
from .services import get_user
from .config import settings
from .db import Outcome, run_in_transaction
from .errors import (
    ValidationError,
    NotFoundError,
    AuthorizationError,
    BusinessError,
    StorageError,
    InternalError,
)
from .media import media_store, validate_image
from .models import Post
from .logger import logger

NO_POST_TEXT = "No post."
NO_RANDOM_POST_TEXT = "No post at the moment."
POST_NOT_FOUND_TEXT = "Post not found."
POST_NOT_CHANGED_TEXT = "Post not changed."
POST_DELETED_TEXT = "Post deleted."
NAME_COLLISION_TEXT = "Failed to create post. Please try again in a few minutes or contact us for assistance."
WRITE_UNVERIFIED_TEXT = "Failed to create post. Something went wrong. Please try again in a few seconds."
IMAGE_ROW_FAILED_TEXT = (
    "Failed to store image path to database. Please try again in a few minutes or contact us for assistance."
)

# ==================== Helper Functions ====================


def _convert_to_post_out(post: Post) -> PostOut:
    return PostOut.model_validate(post)


def _check_fields(title: str, body: str) -> None:
    if not title or len(title) < settings.POST_TITLE_MIN_LENGTH:
        raise ValidationError(f"The title must be at least {settings.POST_TITLE_MIN_LENGTH} characters.")
    if len(title) > settings.POST_TITLE_MAX_LENGTH:
        raise ValidationError(f"The title must not be greater than {settings.POST_TITLE_MAX_LENGTH} characters.")
    if not body or len(body) < settings.POST_BODY_MIN_LENGTH:
        raise ValidationError(f"The body must be at least {settings.POST_BODY_MIN_LENGTH} characters.")


async def _require_user(user_id: int, not_found: bool = False) -> None:
    """Unknown users are a validation failure, or NotFoundError when ``not_found``."""
    try:
        await get_user(user_id)
    except NotFoundError:
        if not_found:
            raise
        raise ValidationError("The selected user id is invalid.")


async def _require_owned_post(user_id: int, post_id: int) -> Post:
    post = await select_post(post_id)
    if post is None:
        logger.warning(f"Post not found: id={post_id}")
        raise NotFoundError(POST_NOT_FOUND_TEXT)
    if post.user_id != user_id:
        logger.warning(f"User id={user_id} does not own post id={post_id}")
        raise AuthorizationError()
    return post


async def _write_image_file(user_id: int, post_id: int, upload: UploadFile, extension: str) -> str:
    """Store an upload under a fresh name and return its public path.

    Raises StorageError on a name collision or when the file cannot be
    confirmed on disk after writing. Disk I/O runs in the threadpool.
    """
    name = media_store.generate_unique_name(user_id, post_id, extension)
    relative = media_store.relative_path(name)

    if await run_in_threadpool(media_store.exists, relative):
        logger.warning(f"Generated filename {name} already exists in storage")
        raise StorageError(NAME_COLLISION_TEXT)

    await run_in_threadpool(media_store.write_uploaded, upload, name)

    if await run_in_threadpool(media_store.missing, relative):
        logger.error(f"Image {name} was written but is missing from storage")
        raise StorageError(WRITE_UNVERIFIED_TEXT)

    return media_store.public_path(name)


async def _reload(post_id: int) -> PostOut:
    post = await select_post(post_id)
    if post is None:
        raise InternalError()
    return _convert_to_post_out(post)


# ==================== Writes ====================


async def create_post(user_id: int, title: str, body: str, image: UploadFile | None = None) -> PostOut:
    """Insert a post and, when given, its image, as a single unit."""
    logger.info(f"Creating post for user id={user_id}")
    await _require_user(user_id)
    _check_fields(title, body)
    extension = validate_image(image) if image is not None else None

    async def _work(session) -> Outcome:
        post = await add_post(session, user_id, title, body)
        if not post.id:
            logger.error("Failed to store new post: no id after flush")
            raise InternalError()

        if image is not None:
            path = await _write_image_file(user_id, post.id, image, extension)
            row = await add_image(session, post.id, path)
            if not row.id:
                logger.error(f"Failed to store image path for post id={post.id}")
                raise InternalError(IMAGE_ROW_FAILED_TEXT)
            logger.info(f"Image path saved with id={row.id}")
        else:
            logger.debug("No uploaded file, skipping image")

        return Outcome(payload=post.id)

    outcome = await run_in_transaction(_work)
    logger.info(f"Successfully stored new post id={outcome.payload}")
    return await _reload(outcome.payload)


async def update_post(
    user_id: int,
    post_id: int,
    title: str,
    body: str,
    image: UploadFile | None = None,
) -> PostOut:
    """Update title/body and optionally replace the image in place."""
    logger.info(f"Updating post id={post_id} for user id={user_id}")
    await _require_user(user_id, not_found=True)
    await _require_owned_post(user_id, post_id)
    _check_fields(title, body)
    extension = validate_image(image) if image is not None else None

    async def _work(session) -> Outcome:
        post = await get_post_for_update(session, post_id)
        if post is None:
            raise NotFoundError(POST_NOT_FOUND_TEXT)
        if post.user_id != user_id:
            raise AuthorizationError()

        changed = post.title != title or post.body != body
        post.title = title
        post.body = body
        cleanup: list[str] = []

        if image is not None:
            path = await _write_image_file(user_id, post.id, image, extension)
            existing = await get_image_for_post(session, post.id)
            if existing is not None:
                previous_path = existing.path
                existing.path = path
                await session.flush()
                if existing.path == previous_path:
                    raise InternalError(IMAGE_ROW_FAILED_TEXT)
                if previous_path:
                    cleanup.append(previous_path)
                logger.info(f"Image id={existing.id} now points at {path}")
            else:
                row = await add_image(session, post.id, path)
                if not row.id:
                    raise InternalError(IMAGE_ROW_FAILED_TEXT)
                logger.info(f"Image stored with id={row.id}")
            changed = True

        await session.flush()
        if not changed:
            return Outcome(error=BusinessError(POST_NOT_CHANGED_TEXT))
        return Outcome(payload=post.id, cleanup=cleanup)

    outcome = await run_in_transaction(_work)
    if not outcome.ok:
        logger.info(f"Post id={post_id} details were not changed")
        raise outcome.error

    for path in outcome.cleanup:
        await run_in_threadpool(media_store.delete, path)

    logger.info(f"Successfully updated post id={post_id}")
    return await _reload(post_id)


async def delete_post(user_id: int, post_id: int) -> str:
    """Soft delete a post. Its image row and file are kept."""
    logger.info(f"Deleting post id={post_id} for user id={user_id}")
    await _require_user(user_id, not_found=True)
    await _require_owned_post(user_id, post_id)

    async def _work(session) -> Outcome:
        post = await get_post_for_update(session, post_id)
        if post is None:
            raise NotFoundError(POST_NOT_FOUND_TEXT)
        await soft_delete_post(session, post)
        return Outcome(payload=post.id)

    await run_in_transaction(_work)

    deleted = await select_post(post_id, include_deleted=True)
    if deleted is None or not deleted.is_deleted:
        logger.error(f"Failed to soft delete post id={post_id}")
        raise InternalError("Something went wrong.")

    logger.info(f"Successfully soft deleted post id={post_id}")
    return POST_DELETED_TEXT


# ==================== Reads ====================


async def list_posts(user_id: int) -> list[PostOut]:
    """All alive posts of the user, newest first."""
    await _require_user(user_id)
    posts = await list_user_posts(user_id)
    if not posts:
        logger.info(f"No post to show for user id={user_id}")
        raise BusinessError(NO_POST_TEXT)
    return [_convert_to_post_out(p) for p in posts]


async def paginate_posts(user_id: int, offset: int = 0, limit: int = settings.DEFAULT_LIMIT) -> list[PostOut]:
    """A window of the user's alive posts, newest first. ``limit`` is capped at MAX_LIMIT."""
    await _require_user(user_id)
    if offset < 0 or limit < 0:
        raise ValidationError("The offset and limit must be at least 0.")
    limit = min(limit, settings.MAX_LIMIT)

    posts = await list_user_posts(user_id, offset=offset, limit=limit)
    if not posts:
        logger.info(f"No post to show for user id={user_id} (offset={offset}, limit={limit})")
        raise BusinessError(NO_POST_TEXT)
    return [_convert_to_post_out(p) for p in posts]


async def random_post(user_id: int) -> PostOut:
    """One of the user's alive posts, drawn uniformly and independently per call."""
    await _require_user(user_id)
    post = await select_random_post(user_id)
    if post is None:
        logger.info(f"No post at the moment for user id={user_id}")
        raise BusinessError(NO_RANDOM_POST_TEXT)
    return _convert_to_post_out(post)
