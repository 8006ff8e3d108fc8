"""Fundamental user data structures for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from .roles import SystemRole


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request, as decoded from an access token.

    :param user_id: The user's id
    :param email: The user's email address
    :param system_role: The user's system-wide role at token issue time
    :param display_name: Optional display name
    """

    user_id: UUID
    email: str
    system_role: SystemRole
    display_name: str | None = None


@dataclass
class UserData:
    """A user's stored record, as needed by the login flow."""

    user_id: UUID
    email: str
    system_role: SystemRole
    display_name: str | None = None
    disabled: bool = False
    password_hash: str | None = None
    totp_enabled: bool = False
    totp_secret: str | None = field(default=None, repr=False)
    password_failed_attempts: int = 0
    password_locked_until: datetime | None = None
    totp_failed_attempts: int = 0
    totp_locked_until: datetime | None = None

    def to_principal(self) -> Principal:
        """Project the stored record onto the fields a token carries."""
        return Principal(
            user_id=self.user_id,
            email=self.email,
            system_role=self.system_role,
            display_name=self.display_name,
        )
