"""Permission snapshots resolved for a user within an organization."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from pydantic import BaseModel

from facility_auth.common import OrganizationRole, SystemRole


@dataclass
class UserOrganizationPermission:
    """A user's access to one organization.

    Built from the user/organization assignment. A missing snapshot means
    the user has no access; there is no "denied" snapshot.

    :param user_id: The user's id
    :param organization_id: The organization's id
    :param organization_disabled: True if the organization itself is disabled
    :param organization_role: The user's role within the organization
    :param system_role: The user's system-wide role
    :param building_permissions: The buildings the user is assigned to
    """

    user_id: UUID
    organization_id: UUID
    organization_disabled: bool
    organization_role: OrganizationRole
    system_role: SystemRole
    building_permissions: dict[UUID, UserBuildingPermission] = field(
        default_factory=dict,
    )

    def add_building_permission(self, permission: UserBuildingPermission) -> None:
        """Attach a building permission and point it back at this snapshot."""
        permission.organization_permission = self
        self.building_permissions[permission.building_id] = permission


@dataclass
class UserBuildingPermission:
    """A user's assignment to one building within an organization."""

    user_id: UUID
    building_id: UUID
    building_timezone: str
    organization_id: UUID
    organization_disabled: bool
    function_id: UUID
    allow_booking_desk_for_visitor: bool = False
    allow_booking_restricted_rooms: bool = False
    allow_booking_anyone_anywhere: bool = False
    # owned by the organization snapshot, excluded from repr/eq to avoid cycles
    organization_permission: UserOrganizationPermission | None = field(
        default=None,
        repr=False,
        compare=False,
    )


class BuildingPermissionResponse(BaseModel):
    building_id: UUID
    organization_id: UUID
    building_timezone: str | None
    assigned: bool
    function_id: UUID | None = None
    allow_booking_desk_for_visitor: bool = False
    allow_booking_restricted_rooms: bool = False
    allow_booking_anyone_anywhere: bool = False

    @classmethod
    def from_permission(
        cls,
        permission: UserBuildingPermission,
    ) -> BuildingPermissionResponse:
        return cls(
            building_id=permission.building_id,
            organization_id=permission.organization_id,
            building_timezone=permission.building_timezone,
            assigned=True,
            function_id=permission.function_id,
            allow_booking_desk_for_visitor=permission.allow_booking_desk_for_visitor,
            allow_booking_restricted_rooms=permission.allow_booking_restricted_rooms,
            allow_booking_anyone_anywhere=permission.allow_booking_anyone_anywhere,
        )


class OrganizationPermissionResponse(BaseModel):
    organization_id: UUID
    organization_disabled: bool
    organization_role: int
    system_role: int
    buildings: list[BuildingPermissionResponse]

    @classmethod
    def from_permission(
        cls,
        permission: UserOrganizationPermission,
    ) -> OrganizationPermissionResponse:
        return cls(
            organization_id=permission.organization_id,
            organization_disabled=permission.organization_disabled,
            organization_role=int(permission.organization_role),
            system_role=int(permission.system_role),
            buildings=[
                BuildingPermissionResponse.from_permission(building)
                for building in permission.building_permissions.values()
            ],
        )
