"""Routes reporting the caller's resolved permissions.

Each route runs the matching authorization check first, so they double as
the reference for how feature routes guard themselves.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from facility_auth.auth import Validate
from facility_auth.common import OrganizationRole, Principal, SystemRole

from .cache_service import PermissionCache
from .models import BuildingPermissionResponse, OrganizationPermissionResponse
from .policy import (
    PERMISSION_DENIED,
    authorize_building,
    authorize_building_or_super_admin,
    authorize_master_or_organization,
    authorize_organization,
)

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


async def _organization_permission(
    cache: PermissionCache,
    principal: Principal,
    organization_id: UUID,
    minimum_role: OrganizationRole,
    allow_disabled_organization: bool,  # noqa: FBT001
) -> OrganizationPermissionResponse:
    result = await authorize_organization(
        cache,
        organization_id,
        principal.user_id,
        minimum_role,
        allow_disabled_organization=allow_disabled_organization,
    )
    result.raise_for_status()

    permission = await cache.get_organization_permission(
        principal.user_id,
        organization_id,
    )
    if permission is None:
        PERMISSION_DENIED.raise_for_status()
    return OrganizationPermissionResponse.from_permission(permission)


async def _master_organization_permission(
    cache: PermissionCache,
    principal: Principal,
    organization_id: UUID,
    minimum_role: OrganizationRole,
) -> OrganizationPermissionResponse:
    result = await authorize_master_or_organization(
        cache,
        organization_id,
        principal.user_id,
        minimum_role,
    )
    result.raise_for_status()

    permission = await cache.get_master_or_organization_permission(
        principal.user_id,
        organization_id,
    )
    if permission is None:
        PERMISSION_DENIED.raise_for_status()
    return OrganizationPermissionResponse.from_permission(permission)


async def _building_permission(
    cache: PermissionCache,
    principal: Principal,
    organization_id: UUID,
    building_id: UUID,
) -> BuildingPermissionResponse:
    """Report building access. Super admins see unassigned buildings too."""
    # tablet and no-access members never reach the building check
    member = await authorize_organization(
        cache,
        organization_id,
        principal.user_id,
        OrganizationRole.USER,
    )
    member.raise_for_status()

    result = await authorize_building_or_super_admin(
        cache,
        organization_id,
        building_id,
        principal.user_id,
    )
    result.raise_for_status()

    permission = await cache.get_building_permission(
        principal.user_id,
        organization_id,
        building_id,
    )
    if permission is not None:
        return BuildingPermissionResponse.from_permission(permission)

    return BuildingPermissionResponse(
        building_id=building_id,
        organization_id=organization_id,
        building_timezone=await cache.get_building_timezone(
            building_id,
            organization_id,
        ),
        assigned=False,
    )


async def _building_assignment(
    cache: PermissionCache,
    principal: Principal,
    organization_id: UUID,
    building_id: UUID,
) -> BuildingPermissionResponse:
    result = await authorize_building(
        cache,
        organization_id,
        building_id,
        principal.user_id,
    )
    result.raise_for_status()

    permission = await cache.get_building_permission(
        principal.user_id,
        organization_id,
        building_id,
    )
    if permission is None:
        PERMISSION_DENIED.raise_for_status()
    return BuildingPermissionResponse.from_permission(permission)


def configure_permission_router(
    router: APIRouter,
    validate: Validate,
    cache: PermissionCache,
) -> APIRouter:
    """Configure the permission router.

    :param router: The APIRouter to configure
    :param validate: Token validation dependencies
    :param cache: The permission cache the checks resolve against
    :return: The configured APIRouter
    """
    require_user = validate.system_role(SystemRole.USER)

    @router.get(
        "/organizations/{organization_id}",
        response_model=OrganizationPermissionResponse,
    )
    async def get_organization_permission(
        organization_id: UUID,
        principal: Annotated[Principal, Depends(require_user)],
        minimum_role: OrganizationRole = OrganizationRole.NO_ACCESS,
        allow_disabled_organization: bool = False,  # noqa: FBT001, FBT002
    ) -> OrganizationPermissionResponse:
        return await _organization_permission(
            cache,
            principal,
            organization_id,
            minimum_role,
            allow_disabled_organization,
        )

    @router.get(
        "/organizations/{organization_id}/buildings/{building_id}",
        response_model=BuildingPermissionResponse,
    )
    async def get_building_permission(
        organization_id: UUID,
        building_id: UUID,
        principal: Annotated[Principal, Depends(require_user)],
    ) -> BuildingPermissionResponse:
        return await _building_permission(cache, principal, organization_id, building_id)

    @router.get(
        "/organizations/{organization_id}/buildings/{building_id}/assignment",
        response_model=BuildingPermissionResponse,
    )
    async def get_building_assignment(
        organization_id: UUID,
        building_id: UUID,
        principal: Annotated[Principal, Depends(require_user)],
    ) -> BuildingPermissionResponse:
        return await _building_assignment(cache, principal, organization_id, building_id)

    @router.get(
        "/master/organizations/{organization_id}",
        response_model=OrganizationPermissionResponse,
    )
    async def get_master_organization_permission(
        organization_id: UUID,
        principal: Annotated[Principal, Depends(require_user)],
        minimum_role: OrganizationRole = OrganizationRole.NO_ACCESS,
    ) -> OrganizationPermissionResponse:
        return await _master_organization_permission(
            cache,
            principal,
            organization_id,
            minimum_role,
        )

    return router
