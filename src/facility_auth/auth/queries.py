"""All queries related to users, login lockout and refresh tokens.

Using the AuthQueries class as a repository for
authentication-related queries.
"""

from __future__ import annotations

import hmac
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from facility_auth.common import SystemRole, UserData

if TYPE_CHECKING:
    from aiosqlite import Connection

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


def _to_db_time(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def _from_db_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class AuthQueries:
    """Repository for authentication-related queries."""

    CREATE_USERS_TABLE = """
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            display_name TEXT,
            password_hash TEXT,
            system_role INTEGER NOT NULL DEFAULT 1, -- 0: no access, 1: user, 2: master
            disabled INTEGER NOT NULL DEFAULT 0,
            deleted INTEGER NOT NULL DEFAULT 0,
            totp_enabled INTEGER NOT NULL DEFAULT 0,
            totp_secret TEXT,
            password_failed_attempts INTEGER NOT NULL DEFAULT 0,
            password_locked_until TEXT,
            totp_failed_attempts INTEGER NOT NULL DEFAULT 0,
            totp_locked_until TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        """

    CREATE_REFRESH_TOKENS_TABLE = """
        CREATE TABLE IF NOT EXISTS refresh_tokens (
            user_id TEXT NOT NULL,
            refresh_token BLOB NOT NULL,
            insert_date_utc TEXT NOT NULL,
            expiry_date_utc TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE
        );
        """

    CREATE_LOGIN_HISTORY_TABLE = """
        CREATE TABLE IF NOT EXISTS login_history (
            user_id TEXT NOT NULL,
            insert_date_utc TEXT NOT NULL,
            login_type TEXT NOT NULL,
            success INTEGER NOT NULL,
            fail_reason TEXT,
            FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE
        );
        """

    CREATE_REFRESH_TOKENS_INDEX = """
        CREATE INDEX IF NOT EXISTS idx_refresh_tokens_user_id
        ON refresh_tokens (user_id);
        """

    USER_COLUMNS = """
        user_id, email, system_role, display_name, disabled, password_hash,
        totp_enabled, totp_secret, password_failed_attempts,
        password_locked_until, totp_failed_attempts, totp_locked_until
        """

    GET_USER_BY_EMAIL = f"""
        SELECT {USER_COLUMNS} FROM users WHERE email = ? AND deleted = 0
        """

    GET_USER_BY_ID = f"""
        SELECT {USER_COLUMNS} FROM users WHERE user_id = ? AND deleted = 0
        """

    ADD_USER = """
        INSERT INTO users (user_id, email, display_name, password_hash, system_role)
        VALUES (?, ?, ?, ?, ?)
        """

    UPDATE_PASSWORD_HASH = """
        UPDATE users SET password_hash = ? WHERE user_id = ? AND deleted = 0
        """

    INCREMENT_PASSWORD_FAILURES = """
        UPDATE users SET password_failed_attempts = password_failed_attempts + 1
        WHERE user_id = ?
        """

    GET_PASSWORD_FAILURES = """
        SELECT password_failed_attempts FROM users WHERE user_id = ?
        """

    LOCK_PASSWORD_LOGIN = """
        UPDATE users SET password_failed_attempts = 0, password_locked_until = ?
        WHERE user_id = ?
        """

    INCREMENT_TOTP_FAILURES = """
        UPDATE users SET totp_failed_attempts = totp_failed_attempts + 1
        WHERE user_id = ?
        """

    GET_TOTP_FAILURES = """
        SELECT totp_failed_attempts FROM users WHERE user_id = ?
        """

    LOCK_TOTP_LOGIN = """
        UPDATE users SET totp_failed_attempts = 0, totp_locked_until = ?
        WHERE user_id = ?
        """

    RESET_LOGIN_COUNTERS = """
        UPDATE users SET
            password_failed_attempts = 0,
            password_locked_until = NULL,
            totp_failed_attempts = 0,
            totp_locked_until = NULL
        WHERE user_id = ?
        """

    SET_TOTP_SECRET = """
        UPDATE users SET totp_secret = ?, totp_enabled = ?
        WHERE user_id = ? AND deleted = 0
        """

    ADD_REFRESH_TOKEN = """
        INSERT INTO refresh_tokens
            (user_id, refresh_token, insert_date_utc, expiry_date_utc)
        VALUES (?, ?, ?, ?)
        """

    GET_REFRESH_TOKEN_CANDIDATES = """
        SELECT rowid, refresh_token FROM refresh_tokens
        WHERE user_id = ? AND expiry_date_utc > ?
        """

    DELETE_REFRESH_TOKEN = """
        DELETE FROM refresh_tokens WHERE rowid = ?
        """

    DELETE_USER_REFRESH_TOKENS = """
        DELETE FROM refresh_tokens WHERE user_id = ?
        """

    DELETE_EXPIRED_REFRESH_TOKENS = """
        DELETE FROM refresh_tokens WHERE expiry_date_utc <= ?
        """

    ADD_LOGIN_HISTORY = """
        INSERT INTO login_history
            (user_id, insert_date_utc, login_type, success, fail_reason)
        VALUES (?, ?, ?, ?, ?)
        """

    GET_LOGIN_HISTORY = """
        SELECT insert_date_utc, login_type, success, fail_reason FROM login_history
        WHERE user_id = ? ORDER BY rowid DESC LIMIT ?
        """

    def __init__(self, connection: Connection) -> None:
        """Create an AuthQueries instance.

        :param connection: Database connection
        """
        self.connection = connection

    async def initialize_tables(self) -> None:
        """Create users, refresh_tokens and login_history tables if they do not exist.

        This method should be called during application startup.
        """
        try:
            await self.connection.execute(AuthQueries.CREATE_USERS_TABLE)
            await self.connection.execute(AuthQueries.CREATE_REFRESH_TOKENS_TABLE)
            await self.connection.execute(AuthQueries.CREATE_REFRESH_TOKENS_INDEX)
            await self.connection.execute(AuthQueries.CREATE_LOGIN_HISTORY_TABLE)
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error initializing auth tables")
            raise

    @staticmethod
    def _row_to_user(row: tuple) -> UserData:
        (
            user_id,
            email,
            system_role,
            display_name,
            disabled,
            password_hash,
            totp_enabled,
            totp_secret,
            password_failed_attempts,
            password_locked_until,
            totp_failed_attempts,
            totp_locked_until,
        ) = row
        return UserData(
            user_id=UUID(user_id),
            email=email,
            system_role=SystemRole.parse(system_role),
            display_name=display_name,
            disabled=bool(disabled),
            password_hash=password_hash,
            totp_enabled=bool(totp_enabled),
            totp_secret=totp_secret,
            password_failed_attempts=password_failed_attempts,
            password_locked_until=_from_db_time(password_locked_until),
            totp_failed_attempts=totp_failed_attempts,
            totp_locked_until=_from_db_time(totp_locked_until),
        )

    async def get_user_by_email(self, email: str) -> UserData | None:
        """Look up a user by email, case-insensitively.

        :param email: The email address to look up
        :return: The user record, or None if no such user exists
        """
        result = await self.connection.execute(
            AuthQueries.GET_USER_BY_EMAIL,
            (email.strip().lower(),),
        )
        row = await result.fetchone()
        return self._row_to_user(row) if row else None

    async def get_user_by_id(self, user_id: UUID) -> UserData | None:
        """Look up a user by id.

        :param user_id: The user's id
        :return: The user record, or None if no such user exists
        """
        result = await self.connection.execute(
            AuthQueries.GET_USER_BY_ID,
            (str(user_id),),
        )
        row = await result.fetchone()
        return self._row_to_user(row) if row else None

    async def create_user(
        self,
        user: UserData,
        password_hash: str | None,
    ) -> str | None:
        """Create a new user.

        :param user: The user to create, its email is stored lower case
        :param password_hash: A hash from ``PasswordHasher``, None for SSO-only
        :return: An error message if creation failed, None otherwise
        """
        try:
            await self.connection.execute(
                AuthQueries.ADD_USER,
                (
                    str(user.user_id),
                    user.email.strip().lower(),
                    user.display_name,
                    password_hash,
                    int(user.system_role),
                ),
            )
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error creating user %s", user.user_id)
            return "Failed to create user"
        return None

    async def update_password_hash(self, user_id: UUID, password_hash: str) -> int:
        """Replace a user's password hash.

        :return: Number of rows updated
        """
        try:
            result = await self.connection.execute(
                AuthQueries.UPDATE_PASSWORD_HASH,
                (password_hash, str(user_id)),
            )
            await self.connection.commit()
            return result.rowcount if result else 0
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error updating password for user %s", user_id)
            return 0

    async def _record_failure(  # noqa: PLR0913
        self,
        user_id: UUID,
        increment_sql: str,
        count_sql: str,
        lock_sql: str,
        max_attempts: int,
        locked_until: datetime,
    ) -> bool:
        try:
            await self.connection.execute(increment_sql, (str(user_id),))
            result = await self.connection.execute(count_sql, (str(user_id),))
            row = await result.fetchone()
            locked = row is not None and row[0] >= max_attempts
            if locked:
                await self.connection.execute(
                    lock_sql,
                    (_to_db_time(locked_until), str(user_id)),
                )
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error recording failed login for user %s", user_id)
            return False
        return locked

    async def record_password_failure(
        self,
        user_id: UUID,
        max_attempts: int,
        locked_until: datetime,
    ) -> bool:
        """Count a failed password attempt, locking the login at the limit.

        :param user_id: The user's id
        :param max_attempts: Failures allowed before locking
        :param locked_until: When a lock placed now should end
        :return: True if this failure locked the account
        """
        return await self._record_failure(
            user_id,
            AuthQueries.INCREMENT_PASSWORD_FAILURES,
            AuthQueries.GET_PASSWORD_FAILURES,
            AuthQueries.LOCK_PASSWORD_LOGIN,
            max_attempts,
            locked_until,
        )

    async def record_totp_failure(
        self,
        user_id: UUID,
        max_attempts: int,
        locked_until: datetime,
    ) -> bool:
        """Count a failed two-factor code, locking two-factor login at the limit.

        :return: True if this failure locked the account
        """
        return await self._record_failure(
            user_id,
            AuthQueries.INCREMENT_TOTP_FAILURES,
            AuthQueries.GET_TOTP_FAILURES,
            AuthQueries.LOCK_TOTP_LOGIN,
            max_attempts,
            locked_until,
        )

    async def reset_login_counters(self, user_id: UUID) -> None:
        """Clear failure counters and lockouts after a successful login."""
        try:
            await self.connection.execute(
                AuthQueries.RESET_LOGIN_COUNTERS,
                (str(user_id),),
            )
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error resetting login counters for user %s", user_id)

    async def set_totp_secret(
        self,
        user_id: UUID,
        encrypted_secret: str | None,
        *,
        enabled: bool,
    ) -> int:
        """Store a user's encrypted TOTP secret and whether 2FA is enforced.

        :return: Number of rows updated
        """
        try:
            result = await self.connection.execute(
                AuthQueries.SET_TOTP_SECRET,
                (encrypted_secret, int(enabled), str(user_id)),
            )
            await self.connection.commit()
            return result.rowcount if result else 0
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error storing TOTP secret for user %s", user_id)
            return 0

    async def store_refresh_token(
        self,
        user_id: UUID,
        refresh_token: bytes,
        expires_at: datetime,
    ) -> bool:
        """Persist a refresh token as raw bytes.

        :return: True if stored
        """
        try:
            await self.connection.execute(
                AuthQueries.ADD_REFRESH_TOKEN,
                (
                    str(user_id),
                    refresh_token,
                    _to_db_time(datetime.now(UTC)),
                    _to_db_time(expires_at),
                ),
            )
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error storing refresh token for user %s", user_id)
            return False
        return True

    async def consume_refresh_token(self, user_id: UUID, refresh_token: bytes) -> bool:
        """Delete a matching unexpired refresh token, reporting whether it existed.

        Stored tokens are compared in constant time. Deletion is a single row
        delete, so when two requests race on the same token only the one
        whose delete removes the row succeeds.

        :param user_id: The token owner's id
        :param refresh_token: The raw token bytes presented by the client
        :return: True if this call consumed the token
        """
        try:
            result = await self.connection.execute(
                AuthQueries.GET_REFRESH_TOKEN_CANDIDATES,
                (str(user_id), _to_db_time(datetime.now(UTC))),
            )
            rows = await result.fetchall()
            matched_rowid = None
            for rowid, stored_token in rows:
                if hmac.compare_digest(bytes(stored_token), refresh_token):
                    matched_rowid = rowid
            if matched_rowid is None:
                return False

            result = await self.connection.execute(
                AuthQueries.DELETE_REFRESH_TOKEN,
                (matched_rowid,),
            )
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error consuming refresh token for user %s", user_id)
            return False
        return result.rowcount == 1

    async def delete_refresh_tokens(self, user_id: UUID) -> int:
        """Delete all refresh tokens of a user.

        :return: Number of rows deleted
        """
        try:
            result = await self.connection.execute(
                AuthQueries.DELETE_USER_REFRESH_TOKENS,
                (str(user_id),),
            )
            await self.connection.commit()
            return result.rowcount if result else 0
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error deleting refresh tokens for user %s", user_id)
            return 0

    async def delete_expired_refresh_tokens(self) -> int:
        """Delete refresh tokens past their expiry.

        :return: Number of rows deleted
        """
        try:
            result = await self.connection.execute(
                AuthQueries.DELETE_EXPIRED_REFRESH_TOKENS,
                (_to_db_time(datetime.now(UTC)),),
            )
            await self.connection.commit()
            return result.rowcount if result else 0
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error deleting expired refresh tokens")
            return 0

    async def record_login(
        self,
        user_id: UUID,
        login_type: str,
        *,
        success: bool,
        fail_reason: str | None = None,
    ) -> None:
        """Append an entry to a user's login history."""
        try:
            await self.connection.execute(
                AuthQueries.ADD_LOGIN_HISTORY,
                (
                    str(user_id),
                    _to_db_time(datetime.now(UTC)),
                    login_type,
                    int(success),
                    fail_reason,
                ),
            )
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error recording login history for user %s", user_id)

    async def list_login_history(
        self,
        user_id: UUID,
        limit: int = 20,
    ) -> list[tuple[datetime, str, bool, str | None]]:
        """Return a user's most recent login attempts, newest first.

        :return: [(timestamp, login_type, success, fail_reason), ...]
        """
        result = await self.connection.execute(
            AuthQueries.GET_LOGIN_HISTORY,
            (str(user_id), limit),
        )
        rows = await result.fetchall()
        return [
            (_from_db_time(inserted), login_type, bool(success), fail_reason)
            for inserted, login_type, success, fail_reason in rows
        ]
