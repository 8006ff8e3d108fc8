"""Shared fixtures: a temporary database, seeded records and a fake clock."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from aiosqlite import connect as aiosqlite_connect
from cryptography.fernet import Fernet

from facility_auth.auth import (
    AuthQueries,
    PasswordHasher,
    TotpSecretCipher,
    TotpVerifier,
)
from facility_auth.common import SystemRole, UserData
from facility_auth.permissions import (
    AssignmentQueries,
    PermissionCache,
    PermissionQueries,
    TtlCache,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

    from aiosqlite import Connection

TEST_PEPPER = "test-pepper-not-for-production"
TEST_PASSWORD = "correct horse battery staple"


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_password() -> str:
    return TEST_PASSWORD


@pytest.fixture(scope="session")
def password_hasher() -> PasswordHasher:
    return PasswordHasher(TEST_PEPPER, 10)


@pytest.fixture(scope="session")
def password_hash(password_hasher: PasswordHasher) -> str:
    """Hash of the test password, computed once since bcrypt is slow."""
    return password_hasher.hash(TEST_PASSWORD)


@pytest.fixture
def totp_cipher() -> TotpSecretCipher:
    return TotpSecretCipher(Fernet.generate_key())


@pytest.fixture
def totp_verifier(totp_cipher: TotpSecretCipher, clock: FakeClock) -> TotpVerifier:
    return TotpVerifier(totp_cipher, TtlCache(91, clock=clock), "Test App", clock=clock)


@pytest_asyncio.fixture
async def db_connection(tmp_path: Path) -> AsyncGenerator[Connection, None]:
    """Open a fresh database with every table created."""
    async with aiosqlite_connect(tmp_path / "test.db") as connection:
        await connection.execute("PRAGMA foreign_keys = ON")
        await AuthQueries(connection).initialize_tables()
        await PermissionQueries(connection).initialize_tables()
        yield connection


@pytest.fixture
def auth_queries(db_connection: Connection) -> AuthQueries:
    return AuthQueries(db_connection)


@pytest.fixture
def permission_queries(db_connection: Connection) -> PermissionQueries:
    return PermissionQueries(db_connection)


@pytest.fixture
def permission_cache(permission_queries: PermissionQueries) -> PermissionCache:
    return PermissionCache(permission_queries, TtlCache(300))


@pytest.fixture
def assignment_queries(
    db_connection: Connection,
    permission_cache: PermissionCache,
) -> AssignmentQueries:
    return AssignmentQueries(db_connection, permission_cache)


@pytest.fixture
def make_user(
    auth_queries: AuthQueries,
    password_hash: str,
) -> Callable[..., Awaitable[UserData]]:
    """Return a coroutine function inserting a user with the test password."""

    async def _make_user(
        email: str | None = None,
        system_role: SystemRole = SystemRole.USER,
        *,
        with_password: bool = True,
    ) -> UserData:
        user_id = uuid4()
        user = UserData(
            user_id=user_id,
            email=email or f"{user_id.hex[:8]}@example.com",
            system_role=system_role,
            display_name="Test User",
        )
        error = await auth_queries.create_user(
            user,
            password_hash if with_password else None,
        )
        assert error is None
        stored = await auth_queries.get_user_by_id(user_id)
        assert stored is not None
        return stored

    return _make_user


@pytest.fixture
def make_building(
    assignment_queries: AssignmentQueries,
) -> Callable[..., Awaitable[tuple[UUID, UUID]]]:
    """Return a coroutine function inserting an organization with one building.

    The coroutine returns ``(organization_id, building_id)``.
    """

    async def _make_building(
        timezone: str = "Australia/Sydney",
        *,
        organization_disabled: bool = False,
    ) -> tuple[UUID, UUID]:
        organization_id = uuid4()
        building_id = uuid4()
        assert await assignment_queries.create_organization(
            organization_id,
            "Test Organization",
            disabled=organization_disabled,
        )
        assert await assignment_queries.create_building(
            building_id,
            organization_id,
            "Head Office",
            timezone,
        )
        return organization_id, building_id

    return _make_building
