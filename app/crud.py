"""Database CRUD operations for users, tokens, posts and images.

Functions taking a ``session`` participate in the caller's transaction (see
``db.run_in_transaction``) and only flush; the others open their own session.
"""

from datetime import datetime, timezone

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import db
from .models import User, AuthToken, Post, Image
from .logger import logger


# ==================== Users ====================


async def select_user(user_id: int) -> User | None:
    """Retrieve a user by ID."""
    async with db.async_session() as session:
        return await session.get(User, user_id)


async def select_user_by_email(email: str) -> User | None:
    """Retrieve a user by email address (exact match)."""
    async with db.async_session() as session:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalars().first()


async def add_user(session: AsyncSession, name: str, email: str, hashed_password: str) -> User:
    """Stage a new user and load its generated columns."""
    user = User(name=name, email=email, hashed_password=hashed_password)
    session.add(user)
    await session.flush()
    await session.refresh(user)
    return user


async def get_user_for_update(session: AsyncSession, user_id: int) -> User | None:
    return await session.get(User, user_id)


async def get_user_by_email_for_update(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalars().first()


# ==================== Tokens ====================


async def add_token(session: AsyncSession, user_id: int, name: str, token_id: str) -> AuthToken:
    token = AuthToken(user_id=user_id, name=name, token_id=token_id)
    session.add(token)
    await session.flush()
    return token


async def insert_token(user_id: int, name: str, token_id: str) -> AuthToken:
    """Persist a token row in its own transaction."""
    async with db.async_session() as session:
        async with session.begin():
            token = await add_token(session, user_id, name, token_id)
        return token


async def select_token(token_id: str) -> AuthToken | None:
    async with db.async_session() as session:
        result = await session.execute(select(AuthToken).where(AuthToken.token_id == token_id))
        return result.scalars().first()


async def delete_user_tokens(user_id: int) -> int:
    """Revoke every token of a user. Returns the number of rows removed."""
    async with db.async_session() as session:
        try:
            async with session.begin():
                result = await session.execute(delete(AuthToken).where(AuthToken.user_id == user_id))
            logger.debug(f"Revoked {result.rowcount} token(s) for user id={user_id}")
            return result.rowcount or 0
        except Exception:
            logger.error(f"Failed to revoke tokens for user id={user_id}", exc_info=True)
            raise


async def count_user_tokens(user_id: int) -> int:
    async with db.async_session() as session:
        result = await session.execute(
            select(func.count()).select_from(AuthToken).where(AuthToken.user_id == user_id)
        )
        return result.scalar() or 0


# ==================== Posts ====================


def alive():
    """Predicate excluding soft-deleted posts. Every normal read applies it."""
    return Post.deleted_at.is_(None)


def _posts_with_image():
    return select(Post).options(selectinload(Post.image))


async def select_post(post_id: int, include_deleted: bool = False) -> Post | None:
    """Retrieve a post with its image. Soft-deleted posts are hidden unless asked for."""
    async with db.async_session() as session:
        stmt = _posts_with_image().where(Post.id == post_id)
        if not include_deleted:
            stmt = stmt.where(alive())
        result = await session.execute(stmt)
        return result.scalars().first()


async def list_user_posts(user_id: int, offset: int | None = None, limit: int | None = None) -> list[Post]:
    """Alive posts of a user, newest first, each with its image."""
    async with db.async_session() as session:
        stmt = (
            _posts_with_image()
            .where(Post.user_id == user_id, alive())
            .order_by(Post.created_at.desc(), Post.id.desc())
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        posts = list(result.scalars().all())
        logger.debug(f"Query executed: returned {len(posts)} posts for user id={user_id}")
        return posts


async def count_user_posts(user_id: int) -> int:
    async with db.async_session() as session:
        result = await session.execute(
            select(func.count()).select_from(Post).where(Post.user_id == user_id, alive())
        )
        return result.scalar() or 0


async def select_random_post(user_id: int) -> Post | None:
    """One alive post of the user picked uniformly at random by the database."""
    async with db.async_session() as session:
        stmt = (
            _posts_with_image()
            .where(Post.user_id == user_id, alive())
            .order_by(func.random())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()


async def add_post(session: AsyncSession, user_id: int, title: str, body: str) -> Post:
    post = Post(user_id=user_id, title=title, body=body)
    session.add(post)
    await session.flush()
    return post


async def get_post_for_update(session: AsyncSession, post_id: int) -> Post | None:
    """Alive post loaded into the caller's transaction, without its image."""
    result = await session.execute(select(Post).where(Post.id == post_id, alive()))
    return result.scalars().first()


async def soft_delete_post(session: AsyncSession, post: Post) -> Post:
    """Set the soft-delete marker. The row and its image stay in place."""
    post.deleted_at = datetime.now(timezone.utc)
    await session.flush()
    return post


# ==================== Images ====================


async def get_image_for_post(session: AsyncSession, post_id: int) -> Image | None:
    result = await session.execute(select(Image).where(Image.post_id == post_id))
    return result.scalars().first()


async def add_image(session: AsyncSession, post_id: int, path: str) -> Image:
    image = Image(post_id=post_id, path=path)
    session.add(image)
    await session.flush()
    return image


async def count_post_images(post_id: int) -> int:
    async with db.async_session() as session:
        result = await session.execute(
            select(func.count()).select_from(Image).where(Image.post_id == post_id)
        )
        return result.scalar() or 0
