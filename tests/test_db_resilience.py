"""
Tests for database connection resilience, retry logic and transactional units.
"""

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from app import db
from app.crud import add_user
from app.models import User


async def count_users() -> int:
    async with db.async_session() as session:
        return (await session.execute(select(func.count()).select_from(User))).scalar_one()


@pytest.mark.asyncio
async def test_check_db_connection_healthy(test_db_engine):
    """Test database health check returns True when DB is available."""
    is_healthy = await db.check_db_connection()
    assert is_healthy is True


@pytest.mark.asyncio
async def test_retry_on_db_error_success():
    """Test retry logic succeeds on first attempt."""
    call_count = 0

    async def successful_func():
        nonlocal call_count
        call_count += 1
        return "success"

    result = await db.retry_on_db_error(successful_func)
    assert result == "success"
    assert call_count == 1


@pytest.mark.asyncio
async def test_retry_on_db_error_retries_on_connection_error():
    """Test retry logic retries on connection errors."""
    call_count = 0

    async def failing_then_success():
        nonlocal call_count
        call_count += 1
        if call_count < 2:
            raise OperationalError("connection reset by peer", None, None)
        return "success"

    result = await db.retry_on_db_error(failing_then_success, max_retries=3, base_delay=0.01)
    assert result == "success"
    assert call_count == 2


@pytest.mark.asyncio
async def test_retry_on_db_error_fails_after_max_retries():
    """Test retry logic fails after max retries exhausted."""
    call_count = 0

    async def always_failing():
        nonlocal call_count
        call_count += 1
        raise OperationalError("connection timeout", None, None)

    with pytest.raises(OperationalError):
        await db.retry_on_db_error(always_failing, max_retries=2, base_delay=0.01)

    assert call_count == 2


@pytest.mark.asyncio
async def test_retry_on_db_error_no_retry_on_constraint_violation():
    """Test retry logic does NOT retry on non-retryable errors."""
    call_count = 0

    async def constraint_error():
        nonlocal call_count
        call_count += 1
        raise OperationalError("unique constraint violated", None, None)

    with pytest.raises(OperationalError):
        await db.retry_on_db_error(constraint_error, max_retries=3, base_delay=0.01)

    assert call_count == 1


@pytest.mark.parametrize("message,expected", [
    ("database is locked", True),
    ("could not serialize access due to concurrent update", True),
    ("deadlock detected", True),
    ("UNIQUE constraint failed: users.email", False),
])
def test_is_retryable(message, expected):
    assert db.is_retryable(Exception(message)) is expected


# ==================== Transactional Units ====================


def test_outcome_defaults():
    outcome = db.Outcome(payload=1)
    assert outcome.ok
    assert outcome.cleanup == []
    assert not db.Outcome(error=ValueError("nope")).ok


@pytest.mark.asyncio
async def test_run_in_transaction_commits(test_db_engine):
    async def work(session):
        user = await add_user(session, "n/a", "commit@example.com", "hash")
        return db.Outcome(payload=user.id)

    outcome = await db.run_in_transaction(work)

    assert outcome.payload is not None
    assert await count_users() == 1


@pytest.mark.asyncio
async def test_run_in_transaction_rolls_back_on_error(test_db_engine):
    async def work(session):
        await add_user(session, "n/a", "rollback@example.com", "hash")
        raise RuntimeError("storage failed")

    with pytest.raises(RuntimeError):
        await db.run_in_transaction(work)

    assert await count_users() == 0


@pytest.mark.asyncio
async def test_run_in_transaction_retries_transient_failure(test_db_engine):
    attempts = 0

    async def work(session):
        nonlocal attempts
        attempts += 1
        await add_user(session, "n/a", f"retry{attempts}@example.com", "hash")
        if attempts < 3:
            raise OperationalError("database is locked", None, None)
        return db.Outcome(payload=attempts)

    outcome = await db.run_in_transaction(work, base_delay=0.01)

    assert outcome.payload == 3
    # Failed attempts left nothing behind
    assert await count_users() == 1


@pytest.mark.asyncio
async def test_run_in_transaction_gives_up_after_three_attempts(test_db_engine):
    attempts = 0

    async def work(session):
        nonlocal attempts
        attempts += 1
        raise OperationalError("database is locked", None, None)

    with pytest.raises(OperationalError):
        await db.run_in_transaction(work, base_delay=0.01)

    assert attempts == 3
