from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from facility_auth.auth import AuthQueries
from facility_auth.common import SystemRole, UserData


@pytest.mark.asyncio
async def test_create_and_get_user(auth_queries: AuthQueries, password_hash: str) -> None:
    """Test creating a user and reading it back by id and email."""
    user = UserData(
        user_id=uuid4(),
        email="Jane.Doe@Example.com",
        system_role=SystemRole.MASTER,
        display_name="Jane",
    )

    assert await auth_queries.create_user(user, password_hash) is None

    by_email = await auth_queries.get_user_by_email("  JANE.DOE@example.COM ")
    by_id = await auth_queries.get_user_by_id(user.user_id)
    assert by_email == by_id
    assert by_id is not None
    assert by_id.email == "jane.doe@example.com"
    assert by_id.system_role is SystemRole.MASTER
    assert by_id.password_hash == password_hash
    assert by_id.totp_enabled is False
    assert by_id.password_locked_until is None


@pytest.mark.asyncio
async def test_duplicate_email_rejected(auth_queries: AuthQueries, make_user) -> None:
    """Test that a second account with the same email is refused."""
    await make_user("taken@example.com")
    duplicate = UserData(
        user_id=uuid4(),
        email="TAKEN@example.com",
        system_role=SystemRole.USER,
    )

    assert await auth_queries.create_user(duplicate, None) == "Failed to create user"


@pytest.mark.asyncio
async def test_unknown_user(auth_queries: AuthQueries) -> None:
    """Test lookups for users that do not exist."""
    assert await auth_queries.get_user_by_email("nobody@example.com") is None
    assert await auth_queries.get_user_by_id(uuid4()) is None


@pytest.mark.asyncio
async def test_password_failures_lock_at_limit(
    auth_queries: AuthQueries,
    make_user,
) -> None:
    """Test that the failure counter locks the login at the limit and resets."""
    user = await make_user()
    locked_until = datetime.now(UTC) + timedelta(minutes=5)

    results = [
        await auth_queries.record_password_failure(user.user_id, 3, locked_until)
        for _ in range(3)
    ]

    assert results == [False, False, True]
    stored = await auth_queries.get_user_by_id(user.user_id)
    assert stored.password_failed_attempts == 0
    assert stored.password_locked_until == locked_until

    await auth_queries.reset_login_counters(user.user_id)
    stored = await auth_queries.get_user_by_id(user.user_id)
    assert stored.password_locked_until is None


@pytest.mark.asyncio
async def test_totp_failures_counted_separately(
    auth_queries: AuthQueries,
    make_user,
) -> None:
    """Test that two-factor failures have their own counter."""
    user = await make_user()
    locked_until = datetime.now(UTC) + timedelta(minutes=5)

    await auth_queries.record_totp_failure(user.user_id, 5, locked_until)
    await auth_queries.record_totp_failure(user.user_id, 5, locked_until)

    stored = await auth_queries.get_user_by_id(user.user_id)
    assert stored.totp_failed_attempts == 2
    assert stored.password_failed_attempts == 0


@pytest.mark.asyncio
async def test_set_totp_secret(auth_queries: AuthQueries, make_user) -> None:
    """Test storing a secret before and after enabling two-factor login."""
    user = await make_user()

    assert await auth_queries.set_totp_secret(user.user_id, "encrypted", enabled=False)
    stored = await auth_queries.get_user_by_id(user.user_id)
    assert stored.totp_secret == "encrypted"
    assert stored.totp_enabled is False

    await auth_queries.set_totp_secret(user.user_id, "encrypted", enabled=True)
    stored = await auth_queries.get_user_by_id(user.user_id)
    assert stored.totp_enabled is True


@pytest.mark.asyncio
async def test_refresh_token_consumed_once(auth_queries: AuthQueries, make_user) -> None:
    """Test that a stored refresh token can only be consumed once."""
    user = await make_user()
    token = b"\x01" * 64
    expires_at = datetime.now(UTC) + timedelta(days=1)

    assert await auth_queries.store_refresh_token(user.user_id, token, expires_at)

    assert not await auth_queries.consume_refresh_token(user.user_id, b"\x02" * 64)
    assert not await auth_queries.consume_refresh_token(uuid4(), token)
    assert await auth_queries.consume_refresh_token(user.user_id, token)
    assert not await auth_queries.consume_refresh_token(user.user_id, token)


@pytest.mark.asyncio
async def test_expired_refresh_tokens(auth_queries: AuthQueries, make_user) -> None:
    """Test that expired tokens are rejected and cleaned up."""
    user = await make_user()
    expired = b"\x03" * 64
    valid = b"\x04" * 64
    await auth_queries.store_refresh_token(
        user.user_id,
        expired,
        datetime.now(UTC) - timedelta(seconds=1),
    )
    await auth_queries.store_refresh_token(
        user.user_id,
        valid,
        datetime.now(UTC) + timedelta(days=1),
    )

    assert not await auth_queries.consume_refresh_token(user.user_id, expired)
    assert await auth_queries.delete_expired_refresh_tokens() == 1
    assert await auth_queries.delete_refresh_tokens(user.user_id) == 1


@pytest.mark.asyncio
async def test_login_history(auth_queries: AuthQueries, make_user) -> None:
    """Test that login attempts are listed newest first."""
    user = await make_user()
    await auth_queries.record_login(
        user.user_id,
        "Web",
        success=False,
        fail_reason="password_invalid",
    )
    await auth_queries.record_login(user.user_id, "Tablet", success=True)

    history = await auth_queries.list_login_history(user.user_id)

    assert [(entry[1], entry[2], entry[3]) for entry in history] == [
        ("Tablet", True, None),
        ("Web", False, "password_invalid"),
    ]
    assert history[0][0].tzinfo is not None


@pytest.mark.asyncio
async def test_update_password_hash(
    auth_queries: AuthQueries,
    password_hasher,
    make_user,
) -> None:
    """Test replacing a stored password hash."""
    user = await make_user(with_password=False)
    new_hash = password_hasher.hash("a new password")

    assert await auth_queries.update_password_hash(user.user_id, new_hash) == 1
    assert await auth_queries.update_password_hash(uuid4(), new_hash) == 0

    stored = await auth_queries.get_user_by_id(user.user_id)
    assert stored.password_hash == new_hash
