"""Email, password and two-factor code verification for logins.

Outcomes are reported as a :class:`VerifyCredentialsResult` rather than
raised. A missing user and a wrong password map to the same client message
so that logins cannot be used to discover which emails have accounts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from facility_auth.common import GENERAL_ERRORS_FIELD, SystemRole, ValidationMessage

from .totp import VerifyTotpCodeResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from facility_auth.common import UserData

    from .password_hasher import PasswordHasher
    from .queries import AuthQueries
    from .totp import TotpVerifier

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

DEFAULT_MAX_FAILED_ATTEMPTS = 5
DEFAULT_LOCKOUT_MINUTES = 5

TOTP_CODE_FIELD = "totpCode"


class VerifyCredentialsResult(Enum):
    UNKNOWN_ERROR = "unknown_error"
    OK = "ok"
    USER_DID_NOT_EXIST = "user_did_not_exist"
    PASSWORD_INVALID = "password_invalid"
    PASSWORD_NOT_SET = "password_not_set"
    PASSWORD_LOGIN_LOCKED_OUT = "password_login_locked_out"
    TOTP_CODE_REQUIRED = "totp_code_required"
    TOTP_LOCKED_OUT = "totp_locked_out"
    TOTP_CODE_INVALID = "totp_code_invalid"
    TOTP_CODE_ALREADY_USED = "totp_code_already_used"
    NO_ACCESS = "no_access"


class LoginType(str, Enum):
    WEB = "Web"
    TABLET = "Tablet"


_INVALID_EMAIL_OR_PASSWORD = ValidationMessage(
    GENERAL_ERRORS_FIELD,
    "Invalid email or password.",
    "error.login.invalidEmailOrPassword",
)
_UNKNOWN_ERROR = ValidationMessage(
    GENERAL_ERRORS_FIELD,
    "An unknown error occurred.",
    "error.unknown",
)

_CREDENTIAL_ERRORS: dict[VerifyCredentialsResult, ValidationMessage | None] = {
    VerifyCredentialsResult.OK: None,
    VerifyCredentialsResult.USER_DID_NOT_EXIST: _INVALID_EMAIL_OR_PASSWORD,
    VerifyCredentialsResult.PASSWORD_INVALID: _INVALID_EMAIL_OR_PASSWORD,
    VerifyCredentialsResult.NO_ACCESS: ValidationMessage(
        GENERAL_ERRORS_FIELD,
        "Your account does not have access to this system.",
        "error.login.accountHasNoAccess",
    ),
    VerifyCredentialsResult.PASSWORD_NOT_SET: ValidationMessage(
        GENERAL_ERRORS_FIELD,
        "Your account does not have a password set. "
        "Please login using Single Sign On instead.",
        "error.login.accountNoPasswordSet",
    ),
    VerifyCredentialsResult.PASSWORD_LOGIN_LOCKED_OUT: ValidationMessage(
        GENERAL_ERRORS_FIELD,
        "Your account has been locked out after too many failed login attempts. "
        "Please wait a few minutes before trying again.",
        "error.login.passwordLoginLockedOut",
    ),
    VerifyCredentialsResult.TOTP_CODE_REQUIRED: ValidationMessage(
        TOTP_CODE_FIELD,
        "Two-factor authentication code is required.",
        "error.login.totpCodeRequired",
    ),
    VerifyCredentialsResult.TOTP_LOCKED_OUT: ValidationMessage(
        GENERAL_ERRORS_FIELD,
        "Your account has been locked out after too many failed two-factor "
        "authentication code attempts. Please wait a few minutes before trying again.",
        "error.login.totpLockedOut",
    ),
    VerifyCredentialsResult.TOTP_CODE_INVALID: ValidationMessage(
        TOTP_CODE_FIELD,
        "The two-factor authentication code was invalid.",
        "error.login.totpCodeInvalid",
    ),
    VerifyCredentialsResult.TOTP_CODE_ALREADY_USED: ValidationMessage(
        TOTP_CODE_FIELD,
        "Successful login has already been made with the specified two-factor "
        "authentication code. Please wait until a new code has been generated in "
        "your authenticator app before logging in again.",
        "error.login.totpCodeAlreadyUsed",
    ),
    VerifyCredentialsResult.UNKNOWN_ERROR: _UNKNOWN_ERROR,
}


def credential_error(result: VerifyCredentialsResult) -> ValidationMessage | None:
    """Map a verification outcome to the error shown to the client.

    :return: None for OK, otherwise the message for the outcome
    """
    return _CREDENTIAL_ERRORS.get(result, _UNKNOWN_ERROR)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CredentialVerifier:
    """Runs the login checks in order and tracks failed attempts.

    :param auth_queries: User repository
    :param password_hasher: Hasher matching stored password hashes
    :param totp_verifier: Verifier for two-factor codes
    :param max_failed_attempts: Failures allowed before a lockout
    :param lockout_minutes: Length of a lockout
    :param clock: Returns the current UTC time
    """

    def __init__(  # noqa: PLR0913
        self,
        auth_queries: AuthQueries,
        password_hasher: PasswordHasher,
        totp_verifier: TotpVerifier,
        max_failed_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS,
        lockout_minutes: int = DEFAULT_LOCKOUT_MINUTES,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.auth_queries = auth_queries
        self.password_hasher = password_hasher
        self.totp_verifier = totp_verifier
        self.max_failed_attempts = max_failed_attempts
        self.lockout = timedelta(minutes=lockout_minutes)
        self._clock = clock
        self._dummy_hash: str | None = None

    async def _burn_password_check(self, password: str) -> None:
        """Spend the same bcrypt work as a real check for unknown users."""
        if self._dummy_hash is None:
            self._dummy_hash = await asyncio.to_thread(self.password_hasher.hash, "")
        await asyncio.to_thread(self.password_hasher.verify, password, self._dummy_hash)

    async def verify_credentials(
        self,
        email: str,
        password: str,
        totp_code: str | None,
        login_type: LoginType = LoginType.WEB,
    ) -> tuple[VerifyCredentialsResult, UserData | None]:
        """Verify a login attempt.

        :param email: The email address entered
        :param password: The password entered
        :param totp_code: The two-factor code entered, if any
        :param login_type: Where the login came from, kept in login history
        :return: The outcome, with the user record when it is OK
        """
        user = await self.auth_queries.get_user_by_email(email)
        if user is None:
            await self._burn_password_check(password)
            return VerifyCredentialsResult.USER_DID_NOT_EXIST, None

        result = await self._verify_user(user, password, totp_code)
        await self.auth_queries.record_login(
            user.user_id,
            login_type.value,
            success=result is VerifyCredentialsResult.OK,
            fail_reason=None if result is VerifyCredentialsResult.OK else result.value,
        )
        if result is not VerifyCredentialsResult.OK:
            LOGGER.debug("Login failed for user %s: %s", user.user_id, result.value)
            return result, None

        LOGGER.debug("User %s logged in", user.user_id)
        return result, user

    async def _verify_user(
        self,
        user: UserData,
        password: str,
        totp_code: str | None,
    ) -> VerifyCredentialsResult:
        now = self._clock()

        if not user.password_hash:
            return VerifyCredentialsResult.PASSWORD_NOT_SET

        if user.password_locked_until and user.password_locked_until > now:
            return VerifyCredentialsResult.PASSWORD_LOGIN_LOCKED_OUT

        password_ok = await asyncio.to_thread(
            self.password_hasher.verify,
            password,
            user.password_hash,
        )
        if not password_ok:
            locked = await self.auth_queries.record_password_failure(
                user.user_id,
                self.max_failed_attempts,
                now + self.lockout,
            )
            if locked:
                LOGGER.info("Password login locked for user %s", user.user_id)
            return VerifyCredentialsResult.PASSWORD_INVALID

        if user.disabled or user.system_role == SystemRole.NO_ACCESS:
            return VerifyCredentialsResult.NO_ACCESS

        if user.totp_enabled and user.totp_secret:
            totp_result = await self._verify_totp(user, totp_code, now)
            if totp_result is not VerifyCredentialsResult.OK:
                return totp_result

        await self.auth_queries.reset_login_counters(user.user_id)
        return VerifyCredentialsResult.OK

    async def _verify_totp(
        self,
        user: UserData,
        totp_code: str | None,
        now: datetime,
    ) -> VerifyCredentialsResult:
        if not totp_code:
            return VerifyCredentialsResult.TOTP_CODE_REQUIRED

        if user.totp_locked_until and user.totp_locked_until > now:
            return VerifyCredentialsResult.TOTP_LOCKED_OUT

        result = self.totp_verifier.verify_code(
            user.user_id,
            totp_code,
            user.totp_secret,
        )
        if result is VerifyTotpCodeResult.CODE_ALREADY_USED:
            return VerifyCredentialsResult.TOTP_CODE_ALREADY_USED
        if result is VerifyTotpCodeResult.CODE_INVALID:
            locked = await self.auth_queries.record_totp_failure(
                user.user_id,
                self.max_failed_attempts,
                now + self.lockout,
            )
            if locked:
                LOGGER.info("Two-factor login locked for user %s", user.user_id)
            return VerifyCredentialsResult.TOTP_CODE_INVALID
        return VerifyCredentialsResult.OK
