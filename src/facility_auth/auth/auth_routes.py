"""Authentication routes for the FastAPI application.

Provides endpoints for session and tablet login, token refresh, logout,
account info and two-factor setup.
"""

import logging
import re
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException, status

from facility_auth.common import (
    GENERAL_ERRORS_FIELD,
    Principal,
    SystemRole,
    ValidationMessage,
    error_exception,
)

from .credentials import (
    TOTP_CODE_FIELD,
    CredentialVerifier,
    LoginType,
    VerifyCredentialsResult,
    credential_error,
)
from .models import AccountInfo, MessageResponse, TokenResponse, TwoFactorSetupResponse
from .queries import AuthQueries
from .token_issuer import TokenIssuer, populate_user_privileges
from .totp import TOTP_DIGITS, TotpVerifier, VerifyTotpCodeResult
from .validation import Validate

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

MAX_EMAIL_LENGTH = 254
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

REFRESH_TOKEN_INVALID = ValidationMessage(
    GENERAL_ERRORS_FIELD,
    "The refresh token is invalid or has expired.",
    "error.auth.refreshTokenIsInvalid",
)


def _validate_login_input(
    email: str,
    password: str,
    totp_code: str | None,
) -> list[ValidationMessage]:
    errors = []
    if not email:
        errors.append(
            ValidationMessage("email", "Email is required.", "error.login.emailIsRequired"),
        )
    elif len(email) > MAX_EMAIL_LENGTH:
        errors.append(
            ValidationMessage(
                "email",
                f"Email must be {MAX_EMAIL_LENGTH} characters or less.",
                f'error.login.emailLength|{{"length":"{MAX_EMAIL_LENGTH}"}}',
            ),
        )
    elif not _EMAIL_PATTERN.match(email):
        errors.append(
            ValidationMessage(
                "email",
                "Email format is invalid.",
                "error.login.emailIsInvalidFormat",
            ),
        )

    if not password:
        errors.append(
            ValidationMessage(
                "password",
                "Password is required.",
                "error.login.passwordIsRequired",
            ),
        )

    if totp_code and len(totp_code) != TOTP_DIGITS:
        errors.append(
            ValidationMessage(
                TOTP_CODE_FIELD,
                f"Code should be {TOTP_DIGITS} digits long.",
                f'error.login.totpLength|{{"length":"{TOTP_DIGITS}"}}',
            ),
        )
    return errors


async def _login(  # noqa: PLR0913
    credential_verifier: CredentialVerifier,
    token_issuer: TokenIssuer,
    email: str,
    password: str,
    totp_code: str | None,
    login_type: LoginType,
) -> TokenResponse:
    email = email.strip().lower()
    errors = _validate_login_input(email, password, totp_code)
    if errors:
        raise error_exception(errors)

    result, user = await credential_verifier.verify_credentials(
        email,
        password,
        totp_code,
        login_type,
    )
    if result is not VerifyCredentialsResult.OK or user is None:
        if result is VerifyCredentialsResult.OK:
            result = VerifyCredentialsResult.UNKNOWN_ERROR
        raise error_exception([credential_error(result)])

    try:
        return await token_issuer.issue_token(
            user.user_id,
            lambda privileges: populate_user_privileges(privileges, user),
        )
    except RuntimeError:
        LOGGER.exception("Failed to issue token for user %s", user.user_id)
        raise error_exception(
            [credential_error(VerifyCredentialsResult.UNKNOWN_ERROR)],
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        ) from None


async def _refresh(
    token_issuer: TokenIssuer,
    user_id: str,
    refresh_token: str,
) -> TokenResponse:
    try:
        parsed_user_id = UUID(user_id)
        token_bytes = bytes.fromhex(refresh_token)
    except ValueError:
        raise error_exception([REFRESH_TOKEN_INVALID]) from None

    try:
        tokens = await token_issuer.refresh_token(parsed_user_id, token_bytes)
    except RuntimeError:
        LOGGER.exception("Failed to refresh token for user %s", parsed_user_id)
        raise error_exception(
            [credential_error(VerifyCredentialsResult.UNKNOWN_ERROR)],
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        ) from None

    if tokens is None:
        raise error_exception([REFRESH_TOKEN_INVALID])
    return tokens


async def _init_two_factor(
    auth_queries: AuthQueries,
    totp_verifier: TotpVerifier,
    principal: Principal,
) -> TwoFactorSetupResponse:
    user = await auth_queries.get_user_by_id(principal.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.totp_enabled:
        raise error_exception(
            [
                ValidationMessage(
                    GENERAL_ERRORS_FIELD,
                    "Two-factor authentication is already enabled.",
                    "error.totp.alreadyEnabled",
                ),
            ],
        )

    encrypted_secret = totp_verifier.generate_encrypted_secret()
    if not await auth_queries.set_totp_secret(
        user.user_id,
        encrypted_secret,
        enabled=False,
    ):
        raise error_exception(
            [credential_error(VerifyCredentialsResult.UNKNOWN_ERROR)],
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    setup = totp_verifier.init_two_factor(user.email, encrypted_secret)
    LOGGER.debug("Started two-factor setup for user %s", user.user_id)
    return TwoFactorSetupResponse(
        provisioning_uri=setup.provisioning_uri,
        secret=setup.secret,
        hash_function=setup.hash_function,
        period=setup.period,
        digits=setup.digits,
    )


async def _enable_two_factor(
    auth_queries: AuthQueries,
    totp_verifier: TotpVerifier,
    principal: Principal,
    totp_code: str,
) -> MessageResponse:
    user = await auth_queries.get_user_by_id(principal.user_id)
    if user is None or not user.totp_secret:
        raise error_exception(
            [
                ValidationMessage(
                    GENERAL_ERRORS_FIELD,
                    "Two-factor authentication setup has not been started.",
                    "error.totp.setupNotStarted",
                ),
            ],
        )

    result = totp_verifier.verify_code(user.user_id, totp_code, user.totp_secret)
    if result is VerifyTotpCodeResult.CODE_INVALID:
        raise error_exception([credential_error(VerifyCredentialsResult.TOTP_CODE_INVALID)])
    if result is VerifyTotpCodeResult.CODE_ALREADY_USED:
        raise error_exception(
            [credential_error(VerifyCredentialsResult.TOTP_CODE_ALREADY_USED)],
        )

    await auth_queries.set_totp_secret(user.user_id, user.totp_secret, enabled=True)
    LOGGER.debug("Enabled two-factor authentication for user %s", user.user_id)
    return MessageResponse(message="Two-factor authentication enabled")


def configure_auth_router(  # noqa: PLR0913
    router: APIRouter,
    validate: Validate,
    auth_queries: AuthQueries,
    credential_verifier: CredentialVerifier,
    session_issuer: TokenIssuer,
    tablet_issuer: TokenIssuer,
    totp_verifier: TotpVerifier,
) -> APIRouter:
    """Configure the authentication router.

    :param router: The APIRouter to configure
    :param validate: Token validation dependencies
    :param auth_queries: The AuthQueries instance for database operations
    :param credential_verifier: Login credential checks
    :param session_issuer: Issuer for session tokens with refresh tokens
    :param tablet_issuer: Issuer for long-lived tablet tokens
    :param totp_verifier: Two-factor code verification and provisioning
    :return: The configured APIRouter
    """
    require_user = validate.system_role(SystemRole.USER)

    @router.post("/login", response_model=TokenResponse)
    async def login(
        email: Annotated[str, Form()],
        password: Annotated[str, Form()],
        totp_code: Annotated[str | None, Form()] = None,
    ) -> TokenResponse:
        return await _login(
            credential_verifier,
            session_issuer,
            email,
            password,
            totp_code,
            LoginType.WEB,
        )

    @router.post("/login/tablet", response_model=TokenResponse)
    async def login_tablet(
        email: Annotated[str, Form()],
        password: Annotated[str, Form()],
        totp_code: Annotated[str | None, Form()] = None,
    ) -> TokenResponse:
        return await _login(
            credential_verifier,
            tablet_issuer,
            email,
            password,
            totp_code,
            LoginType.TABLET,
        )

    @router.post("/refresh", response_model=TokenResponse)
    async def refresh(
        user_id: Annotated[str, Form()],
        refresh_token: Annotated[str, Form()],
    ) -> TokenResponse:
        return await _refresh(session_issuer, user_id, refresh_token)

    @router.post("/logout", response_model=MessageResponse)
    async def logout(
        principal: Annotated[Principal, Depends(validate.jwt_token)],
    ) -> MessageResponse:
        """Revoke refresh tokens. Access tokens expire on their own."""
        revoked = await session_issuer.revoke_refresh_tokens(principal.user_id)
        LOGGER.debug("User %s logged out, %d tokens revoked", principal.user_id, revoked)
        return MessageResponse(message="Success")

    @router.get("/account", response_model=AccountInfo)
    def get_account_info(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> AccountInfo:
        return AccountInfo.from_principal(principal)

    @router.post("/totp/init", response_model=TwoFactorSetupResponse)
    async def init_two_factor(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> TwoFactorSetupResponse:
        return await _init_two_factor(auth_queries, totp_verifier, principal)

    @router.post("/totp/enable", response_model=MessageResponse)
    async def enable_two_factor(
        totp_code: Annotated[str, Form()],
        principal: Annotated[Principal, Depends(require_user)],
    ) -> MessageResponse:
        return await _enable_two_factor(auth_queries, totp_verifier, principal, totp_code)

    return router
