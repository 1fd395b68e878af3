"""
Unit tests for database layer (CRUD operations).
Tests CRUD functions with a real database using test fixtures.
"""

import pytest
from app import db
from app.crud import (
    select_user,
    select_user_by_email,
    add_user,
    insert_token,
    select_token,
    delete_user_tokens,
    count_user_tokens,
    add_post,
    add_image,
    select_post,
    list_user_posts,
    count_user_posts,
    select_random_post,
    get_post_for_update,
    get_image_for_post,
    soft_delete_post,
    count_post_images,
)
from app.auth import hash_password


async def create_user(email: str = "test@example.com"):
    async with db.async_session() as session:
        async with session.begin():
            return await add_user(session, "n/a", email, hash_password("password1"))


async def create_post(user_id: int, title: str = "hello world", body: str = "hello body", image_path: str | None = None):
    async with db.async_session() as session:
        async with session.begin():
            post = await add_post(session, user_id, title, body)
            if image_path:
                await add_image(session, post.id, image_path)
            return post.id


async def soft_delete(post_id: int):
    async with db.async_session() as session:
        async with session.begin():
            post = await get_post_for_update(session, post_id)
            await soft_delete_post(session, post)


@pytest.mark.asyncio
class TestUsers:
    """Test user persistence."""

    async def test_add_user_loads_generated_columns(self, test_db_engine):
        user = await create_user()

        assert user.id is not None
        assert user.name == "n/a"
        assert user.created_at is not None

    async def test_select_user(self, test_db_engine):
        created = await create_user()

        user = await select_user(created.id)

        assert user.email == "test@example.com"

    async def test_select_user_not_found(self, test_db_engine):
        assert await select_user(999) is None

    async def test_select_user_by_email_is_exact(self, test_db_engine):
        await create_user("Test@Example.com")

        assert await select_user_by_email("Test@Example.com") is not None
        assert await select_user_by_email("test@example.com") is None


@pytest.mark.asyncio
class TestTokens:
    """Test token rows."""

    async def test_insert_and_select_token(self, test_db_engine):
        user = await create_user()

        await insert_token(user.id, "journal_app_secret_user", "abc123")
        token = await select_token("abc123")

        assert token is not None
        assert token.user_id == user.id

    async def test_delete_user_tokens_removes_all(self, test_db_engine):
        user = await create_user()
        other = await create_user("other@example.com")
        await insert_token(user.id, "t", "one")
        await insert_token(user.id, "t", "two")
        await insert_token(other.id, "t", "three")

        revoked = await delete_user_tokens(user.id)

        assert revoked == 2
        assert await count_user_tokens(user.id) == 0
        assert await count_user_tokens(other.id) == 1

    async def test_delete_user_tokens_none(self, test_db_engine):
        user = await create_user()
        assert await delete_user_tokens(user.id) == 0


@pytest.mark.asyncio
class TestPosts:
    """Test post reads and the soft-delete predicate."""

    async def test_select_post_with_image(self, test_db_engine):
        user = await create_user()
        post_id = await create_post(user.id, image_path="storage/posts/x.png")

        post = await select_post(post_id)

        assert post.title == "hello world"
        assert post.image.path == "storage/posts/x.png"

    async def test_select_post_without_image(self, test_db_engine):
        user = await create_user()
        post_id = await create_post(user.id)

        post = await select_post(post_id)

        assert post.image is None

    async def test_soft_deleted_post_is_hidden(self, test_db_engine):
        user = await create_user()
        post_id = await create_post(user.id)

        await soft_delete(post_id)

        assert await select_post(post_id) is None
        hidden = await select_post(post_id, include_deleted=True)
        assert hidden is not None
        assert hidden.is_deleted

    async def test_list_newest_first_and_alive_only(self, test_db_engine):
        user = await create_user()
        first = await create_post(user.id, title="first post")
        second = await create_post(user.id, title="second post")
        third = await create_post(user.id, title="third post")
        await soft_delete(second)

        posts = await list_user_posts(user.id)

        assert [p.id for p in posts] == [third, first]
        assert await count_user_posts(user.id) == 2

    async def test_list_only_own_posts(self, test_db_engine):
        user = await create_user()
        other = await create_user("other@example.com")
        await create_post(other.id)

        assert await list_user_posts(user.id) == []

    async def test_list_offset_and_limit(self, test_db_engine):
        user = await create_user()
        ids = [await create_post(user.id, title=f"post number {i}") for i in range(5)]

        page = await list_user_posts(user.id, offset=1, limit=2)

        assert [p.id for p in page] == [ids[3], ids[2]]

    async def test_list_limit_zero(self, test_db_engine):
        user = await create_user()
        await create_post(user.id)

        assert await list_user_posts(user.id, offset=0, limit=0) == []

    async def test_random_post_excludes_deleted(self, test_db_engine):
        user = await create_user()
        keep = await create_post(user.id)
        gone = await create_post(user.id)
        await soft_delete(gone)

        for _ in range(10):
            post = await select_random_post(user.id)
            assert post.id == keep

    async def test_random_post_none(self, test_db_engine):
        user = await create_user()
        assert await select_random_post(user.id) is None


@pytest.mark.asyncio
class TestImages:
    """Test image rows."""

    async def test_get_image_for_post(self, test_db_engine):
        user = await create_user()
        post_id = await create_post(user.id, image_path="storage/posts/a.png")

        async with db.async_session() as session:
            image = await get_image_for_post(session, post_id)

        assert image.path == "storage/posts/a.png"
        assert await count_post_images(post_id) == 1

    async def test_soft_delete_keeps_image(self, test_db_engine):
        user = await create_user()
        post_id = await create_post(user.id, image_path="storage/posts/a.png")

        await soft_delete(post_id)

        assert await count_post_images(post_id) == 1

    async def test_random_post_varies_between_calls(self, test_db_engine):
        user = await create_user()
        other = await create_user("other@example.com")
        ids = {await create_post(user.id, title=f"post number {i}") for i in range(3)}
        gone = await create_post(user.id)
        await soft_delete(gone)
        await create_post(other.id)

        seen = {(await select_random_post(user.id)).id for _ in range(60)}

        assert seen <= ids
        assert len(seen) > 1
