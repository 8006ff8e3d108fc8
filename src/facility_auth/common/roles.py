"""Organization and system roles with their permission hierarchy."""

from __future__ import annotations

from enum import IntEnum


class UnknownRoleError(RuntimeError):
    """Raised when a role value reaches a check that has no rule for it.

    This signals a programming error, never a user-facing denial.
    """


class OrganizationRole(IntEnum):
    """A user's role within one organization.

    TABLET is a parallel tier: it only satisfies a TABLET requirement and is
    satisfied by TABLET and SUPER_ADMIN.
    """

    NO_ACCESS = 0
    TABLET = 1
    USER = 2
    ADMIN = 3
    SUPER_ADMIN = 4

    def check_permission(self, minimum_role: OrganizationRole) -> bool:
        """Check if this role meets the minimum required role.

        :param minimum_role: The minimum role an action requires
        :return: True if this role satisfies the requirement, False otherwise
        :raises UnknownRoleError: If no rule exists for the required role
        """
        try:
            allowed = _SATISFIED_BY[OrganizationRole(minimum_role)]
        except (KeyError, ValueError) as e:
            msg = f"Unknown OrganizationRole: {minimum_role!r}"
            raise UnknownRoleError(msg) from e
        return self in allowed


_SATISFIED_BY: dict[OrganizationRole, frozenset[OrganizationRole]] = {
    OrganizationRole.NO_ACCESS: frozenset(
        {
            OrganizationRole.NO_ACCESS,
            OrganizationRole.TABLET,
            OrganizationRole.USER,
            OrganizationRole.ADMIN,
            OrganizationRole.SUPER_ADMIN,
        },
    ),
    OrganizationRole.TABLET: frozenset(
        {OrganizationRole.TABLET, OrganizationRole.SUPER_ADMIN},
    ),
    OrganizationRole.USER: frozenset(
        {OrganizationRole.USER, OrganizationRole.ADMIN, OrganizationRole.SUPER_ADMIN},
    ),
    OrganizationRole.ADMIN: frozenset(
        {OrganizationRole.ADMIN, OrganizationRole.SUPER_ADMIN},
    ),
    OrganizationRole.SUPER_ADMIN: frozenset({OrganizationRole.SUPER_ADMIN}),
}


class SystemRole(IntEnum):
    """A user's system-wide role. MASTER overrides organization checks."""

    NO_ACCESS = 0
    USER = 1
    MASTER = 2

    @classmethod
    def parse(cls, value: int | str | None) -> SystemRole:
        """Parse a stored or claimed system role, defaulting to NO_ACCESS.

        :param value: Raw role value from a database row or token claim
        :return: The parsed role, NO_ACCESS if missing or not a known value
        """
        if value is None:
            return cls.NO_ACCESS
        try:
            return cls(int(value))
        except ValueError:
            return cls.NO_ACCESS
