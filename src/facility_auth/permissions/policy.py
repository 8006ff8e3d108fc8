"""Authorization checks for organization and building scoped requests.

Each check runs a fixed sequence and returns an :class:`AuthorizationResult`:

1. Missing ids are reported per field and stop the check.
2. The permission snapshot is looked up. No snapshot means no permission.
3. A disabled organization denies unless explicitly allowed.
4. The snapshot's role is compared against the required minimum.

Denials are returned, never raised. Only an impossible role value raises
:class:`~facility_auth.common.UnknownRoleError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fastapi import status

from facility_auth.common import (
    GENERAL_ERRORS_FIELD,
    OrganizationRole,
    SystemRole,
    UnknownRoleError,
    ValidationMessage,
    error_exception,
)

if TYPE_CHECKING:
    from uuid import UUID

    from .cache_service import PermissionCache

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

ORGANIZATION_ID_REQUIRED = ValidationMessage(
    "organizationId",
    "Organization Id is required.",
    "error.organizationIdIsRequired",
)
BUILDING_ID_REQUIRED = ValidationMessage(
    "buildingId",
    "Building Id is required.",
    "error.buildingIdIsRequired",
)
NO_PERMISSION = ValidationMessage(
    GENERAL_ERRORS_FIELD,
    "You do not have permission to perform this action.",
    "error.doNotHavePermission",
)


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of an authorization check.

    :param allowed: True if the request may proceed
    :param fatal: True if the denial cannot be fixed by correcting input
    :param errors: Per-field errors explaining a denial
    """

    allowed: bool
    fatal: bool = False
    errors: tuple[ValidationMessage, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_status(self) -> None:
        """Raise an HTTPException if the check denied the request.

        Fatal denials become 403 responses, validation failures 400.
        """
        if self.allowed:
            return
        raise error_exception(
            list(self.errors),
            fatal=self.fatal,
            status_code=(
                status.HTTP_403_FORBIDDEN
                if self.fatal
                else status.HTTP_400_BAD_REQUEST
            ),
        )


ALLOWED = AuthorizationResult(allowed=True)
PERMISSION_DENIED = AuthorizationResult(
    allowed=False,
    fatal=True,
    errors=(NO_PERMISSION,),
)


def _missing_ids(
    organization_id: UUID | None,
    building_id: UUID | None = None,
    *,
    check_building: bool = False,
) -> AuthorizationResult | None:
    errors = []
    if organization_id is None:
        errors.append(ORGANIZATION_ID_REQUIRED)
    if check_building and building_id is None:
        errors.append(BUILDING_ID_REQUIRED)
    if errors:
        return AuthorizationResult(allowed=False, errors=tuple(errors))
    return None


def _deny(reason: str, user_id: UUID, organization_id: UUID) -> AuthorizationResult:
    LOGGER.debug(
        "Denied user %s for organization %s: %s",
        user_id,
        organization_id,
        reason,
    )
    return PERMISSION_DENIED


async def authorize_organization(
    cache: PermissionCache,
    organization_id: UUID | None,
    user_id: UUID,
    minimum_role: OrganizationRole,
    *,
    allow_disabled_organization: bool = False,
) -> AuthorizationResult:
    """Check that a user holds at least a role within an organization.

    :param cache: Permission cache to resolve the user's snapshot from
    :param organization_id: The organization the request targets
    :param user_id: The requesting user
    :param minimum_role: The lowest role that may perform the action
    :param allow_disabled_organization: Allow access to a disabled organization
    :return: The authorization result
    :raises UnknownRoleError: If ``minimum_role`` is not a known role
    """
    missing = _missing_ids(organization_id)
    if missing is not None:
        return missing

    permission = await cache.get_organization_permission(user_id, organization_id)
    if permission is None:
        return _deny("no permission", user_id, organization_id)

    if permission.organization_disabled and not allow_disabled_organization:
        return _deny("organization disabled", user_id, organization_id)

    if not permission.organization_role.check_permission(minimum_role):
        return _deny("role below minimum", user_id, organization_id)

    return ALLOWED


async def authorize_master_or_organization(
    cache: PermissionCache,
    organization_id: UUID | None,
    user_id: UUID,
    minimum_role: OrganizationRole,
    *,
    allow_disabled_organization: bool = False,
) -> AuthorizationResult:
    """Like :func:`authorize_organization`, but Master users always pass.

    A Master user is allowed for any organization id, including one that is
    disabled or does not exist.
    """
    missing = _missing_ids(organization_id)
    if missing is not None:
        return missing

    permission = await cache.get_master_or_organization_permission(
        user_id,
        organization_id,
    )
    if permission is None:
        return _deny("no permission", user_id, organization_id)

    if permission.system_role == SystemRole.MASTER:
        return ALLOWED

    if permission.organization_disabled and not allow_disabled_organization:
        return _deny("organization disabled", user_id, organization_id)

    if not permission.organization_role.check_permission(minimum_role):
        return _deny("role below minimum", user_id, organization_id)

    return ALLOWED


async def authorize_building(
    cache: PermissionCache,
    organization_id: UUID | None,
    building_id: UUID | None,
    user_id: UUID,
    *,
    allow_disabled_organization: bool = False,
) -> AuthorizationResult:
    """Check that a user is assigned to a building.

    Both ids are validated before any lookup, so missing both reports two
    errors.
    """
    missing = _missing_ids(organization_id, building_id, check_building=True)
    if missing is not None:
        return missing

    permission = await cache.get_building_permission(
        user_id,
        organization_id,
        building_id,
    )
    if permission is None:
        return _deny(f"not assigned to building {building_id}", user_id, organization_id)

    if permission.organization_disabled and not allow_disabled_organization:
        return _deny("organization disabled", user_id, organization_id)

    return ALLOWED


async def authorize_building_or_super_admin(
    cache: PermissionCache,
    organization_id: UUID | None,
    building_id: UUID | None,
    user_id: UUID,
    *,
    allow_disabled_organization: bool = False,
) -> AuthorizationResult:
    """Check building access, letting organization super admins see any building.

    A SUPER_ADMIN is allowed for every existing building of the organization
    without an individual assignment. USER and ADMIN need an assignment.

    :raises UnknownRoleError: If the snapshot holds any other role
    """
    missing = _missing_ids(organization_id, building_id, check_building=True)
    if missing is not None:
        return missing

    permission = await cache.get_organization_permission(user_id, organization_id)
    if permission is None:
        return _deny("no permission", user_id, organization_id)

    if permission.organization_disabled and not allow_disabled_organization:
        return _deny("organization disabled", user_id, organization_id)

    role = permission.organization_role
    if role == OrganizationRole.SUPER_ADMIN:
        if await cache.building_exists(building_id, organization_id):
            return ALLOWED
        return _deny(f"building {building_id} not found", user_id, organization_id)

    if role in (OrganizationRole.USER, OrganizationRole.ADMIN):
        return await authorize_building(
            cache,
            organization_id,
            building_id,
            user_id,
            allow_disabled_organization=allow_disabled_organization,
        )

    msg = f"Unexpected OrganizationRole {role!r} for building access"
    raise UnknownRoleError(msg)
