"""JWT access tokens and single-use refresh tokens.

Two variants are issued:

* **session**: a short-lived access token plus an opaque refresh token. The
  refresh token is 64 random bytes stored server side and consumed on use.
* **tablet**: an access token valid for ten years and no refresh token.
  Tablets log in again instead of refreshing.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

import jwt

from facility_auth.common import Principal, SystemRole

from .models import TokenResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from facility_auth.common import UserData

    from .queries import AuthQueries

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

DEFAULT_JWT_ALGORITHM = "HS512"
DEFAULT_ACCESS_TOKEN_MINUTES = 15
DEFAULT_REFRESH_TOKEN_MINUTES = 60 * 24 * 14
TABLET_TOKEN_LIFETIME = timedelta(days=365 * 10)
REFRESH_TOKEN_LENGTH_BYTES = 64
ACCESS_TOKEN_TYPE = "access_token"


class TokenVariant(Enum):
    SESSION = "session"
    TABLET = "tablet"


@dataclass
class UserPrivileges:
    """Claims and roles collected before a token is signed."""

    claims: dict[str, Any] = field(default_factory=dict)
    roles: list[str] = field(default_factory=list)


def populate_user_privileges(privileges: UserPrivileges, user: UserData) -> None:
    """Fill the standard user claims: id, display name, email and system role."""
    privileges.claims["uid"] = str(user.user_id)
    if user.display_name:
        privileges.claims["display_name"] = user.display_name
    privileges.claims["email"] = user.email
    privileges.claims["system_role"] = int(user.system_role)
    privileges.roles.append(user.system_role.name)


class TokenIssuer:
    """Issues and refreshes tokens of one variant.

    :param auth_queries: Repository storing refresh tokens and users
    :param signing_key: Secret key for JWT signing
    :param algorithm: JWT signing algorithm
    :param access_token_minutes: Session access token lifetime
    :param refresh_token_minutes: Session refresh token lifetime
    :param variant: Session or tablet tokens
    """

    def __init__(  # noqa: PLR0913
        self,
        auth_queries: AuthQueries,
        signing_key: str,
        algorithm: str = DEFAULT_JWT_ALGORITHM,
        access_token_minutes: int = DEFAULT_ACCESS_TOKEN_MINUTES,
        refresh_token_minutes: int = DEFAULT_REFRESH_TOKEN_MINUTES,
        variant: TokenVariant = TokenVariant.SESSION,
    ) -> None:
        self.auth_queries = auth_queries
        self.signing_key = signing_key
        self.algorithm = algorithm
        self.access_token_lifetime = timedelta(minutes=access_token_minutes)
        self.refresh_token_lifetime = timedelta(minutes=refresh_token_minutes)
        self.variant = variant

    def _create_access_token(
        self,
        user_id: UUID,
        privileges: UserPrivileges,
        lifetime: timedelta,
    ) -> str:
        now = datetime.now(UTC)
        payload = {
            **privileges.claims,
            "sub": str(user_id),
            "roles": privileges.roles,
            "iat": now,
            "exp": now + lifetime,
            "type": ACCESS_TOKEN_TYPE,
        }
        return jwt.encode(payload, self.signing_key, algorithm=self.algorithm)

    async def issue_token(
        self,
        user_id: UUID,
        populate_privileges: Callable[[UserPrivileges], None],
    ) -> TokenResponse:
        """Issue a token for a user whose credentials were already verified.

        :param user_id: The user's id
        :param populate_privileges: Callback adding claims, typically
            ``lambda p: populate_user_privileges(p, user)``
        :return: The access token, and a hex encoded refresh token for sessions
        :raises RuntimeError: If the refresh token could not be stored
        """
        privileges = UserPrivileges()
        populate_privileges(privileges)

        if self.variant is TokenVariant.TABLET:
            access_token = self._create_access_token(
                user_id,
                privileges,
                TABLET_TOKEN_LIFETIME,
            )
            LOGGER.debug("Issued tablet token for user %s", user_id)
            return TokenResponse(
                access_token=access_token,
                expires_in=int(TABLET_TOKEN_LIFETIME.total_seconds()),
                user_id=str(user_id),
            )

        access_token = self._create_access_token(
            user_id,
            privileges,
            self.access_token_lifetime,
        )
        refresh_token = secrets.token_bytes(REFRESH_TOKEN_LENGTH_BYTES)
        stored = await self.auth_queries.store_refresh_token(
            user_id,
            refresh_token,
            datetime.now(UTC) + self.refresh_token_lifetime,
        )
        if not stored:
            msg = f"Failed to store refresh token for user {user_id}"
            raise RuntimeError(msg)

        LOGGER.debug("Issued session token for user %s", user_id)
        return TokenResponse(
            access_token=access_token,
            expires_in=int(self.access_token_lifetime.total_seconds()),
            refresh_token=refresh_token.hex(),
            user_id=str(user_id),
        )

    async def refresh_token(
        self,
        user_id: UUID,
        refresh_token: bytes,
    ) -> TokenResponse | None:
        """Exchange a refresh token for a new token pair.

        The presented token is consumed, so replaying it fails. Claims are
        rebuilt from the current user record.

        :param user_id: The token owner's id
        :param refresh_token: The raw refresh token bytes
        :return: New tokens, or None if the token is invalid, expired, already
            used, or the user can no longer log in
        """
        if self.variant is TokenVariant.TABLET:
            return None

        if not await self.auth_queries.consume_refresh_token(user_id, refresh_token):
            LOGGER.debug("Refresh token rejected for user %s", user_id)
            return None

        user = await self.auth_queries.get_user_by_id(user_id)
        if user is None or user.disabled or user.system_role == SystemRole.NO_ACCESS:
            LOGGER.debug("User %s can no longer refresh tokens", user_id)
            return None

        return await self.issue_token(
            user_id,
            lambda privileges: populate_user_privileges(privileges, user),
        )

    async def revoke_refresh_tokens(self, user_id: UUID) -> int:
        """Delete every refresh token of a user, ending their sessions.

        :return: Number of tokens revoked
        """
        return await self.auth_queries.delete_refresh_tokens(user_id)

    def verify_access_token(self, token: str) -> Principal | None:
        """Verify and decode an access token.

        :param token: The JWT token string to verify
        :return: The principal if the token is valid, None otherwise
        """
        try:
            payload = jwt.decode(token, self.signing_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return None

        uid = payload.get("uid")
        email = payload.get("email")
        if uid is None or email is None:
            return None

        try:
            user_id = UUID(uid)
        except ValueError:
            return None

        return Principal(
            user_id=user_id,
            email=email,
            system_role=SystemRole.parse(payload.get("system_role")),
            display_name=payload.get("display_name"),
        )
