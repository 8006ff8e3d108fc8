"""Database access for organization, building and assignment records.

``PermissionQueries`` is the read side the permission cache loads from.
``AssignmentQueries`` is the write side; every method that changes a role,
a disabled flag or an assignment invalidates the affected cached snapshots
before it returns.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from facility_auth.common import OrganizationRole, SystemRole

from .models import UserBuildingPermission, UserOrganizationPermission

if TYPE_CHECKING:
    from aiosqlite import Connection

    from .cache_service import PermissionCache

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class PermissionSource(Protocol):
    """Authoritative permission data the cache loads from."""

    async def fetch_organization_permission(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> UserOrganizationPermission | None: ...

    async def fetch_system_role_and_organization_disabled(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> tuple[SystemRole | None, bool | None]: ...

    async def fetch_building_timezone(
        self,
        building_id: UUID,
        organization_id: UUID,
    ) -> str | None: ...

    async def building_exists(
        self,
        building_id: UUID,
        organization_id: UUID,
    ) -> bool: ...


class PermissionQueries:
    """Repository for permission-related reads."""

    CREATE_ORGANIZATIONS_TABLE = """
        CREATE TABLE IF NOT EXISTS organizations (
            organization_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            disabled INTEGER NOT NULL DEFAULT 0,
            deleted INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        """

    CREATE_BUILDINGS_TABLE = """
        CREATE TABLE IF NOT EXISTS buildings (
            building_id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            name TEXT NOT NULL,
            timezone TEXT NOT NULL,
            deleted INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (organization_id) REFERENCES organizations (organization_id)
        );
        """

    CREATE_USER_ORGANIZATIONS_TABLE = """
        CREATE TABLE IF NOT EXISTS user_organizations (
            user_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            organization_role INTEGER NOT NULL DEFAULT 2, -- see OrganizationRole
            user_organization_disabled INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (user_id, organization_id),
            FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE,
            FOREIGN KEY (organization_id) REFERENCES organizations (organization_id)
        );
        """

    CREATE_USER_BUILDINGS_TABLE = """
        CREATE TABLE IF NOT EXISTS user_buildings (
            user_id TEXT NOT NULL,
            building_id TEXT NOT NULL,
            function_id TEXT NOT NULL,
            allow_booking_desk_for_visitor INTEGER NOT NULL DEFAULT 0,
            allow_booking_restricted_rooms INTEGER NOT NULL DEFAULT 0,
            allow_booking_anyone_anywhere INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (user_id, building_id),
            FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE,
            FOREIGN KEY (building_id) REFERENCES buildings (building_id)
        );
        """

    GET_ORGANIZATION_PERMISSION = """
        SELECT users.system_role,
               organizations.disabled,
               user_organizations.organization_role
        FROM users
        INNER JOIN user_organizations
            ON users.user_id = user_organizations.user_id
        INNER JOIN organizations
            ON user_organizations.organization_id = organizations.organization_id
            AND organizations.deleted = 0
        WHERE users.user_id = ?
        AND users.deleted = 0
        AND users.disabled = 0
        AND users.system_role > 0
        AND organizations.organization_id = ?
        AND user_organizations.user_organization_disabled = 0
        """

    GET_BUILDING_PERMISSIONS = """
        SELECT user_buildings.building_id,
               buildings.timezone,
               organizations.disabled,
               user_buildings.function_id,
               user_buildings.allow_booking_desk_for_visitor,
               user_buildings.allow_booking_restricted_rooms,
               user_buildings.allow_booking_anyone_anywhere
        FROM user_buildings
        INNER JOIN buildings
            ON user_buildings.building_id = buildings.building_id
            AND buildings.deleted = 0
        INNER JOIN organizations
            ON buildings.organization_id = organizations.organization_id
            AND organizations.deleted = 0
        WHERE user_buildings.user_id = ?
        AND organizations.organization_id = ?
        """

    GET_USER_SYSTEM_ROLE = """
        SELECT system_role FROM users
        WHERE user_id = ? AND deleted = 0 AND disabled = 0
        """

    GET_ORGANIZATION_DISABLED = """
        SELECT disabled FROM organizations
        WHERE organization_id = ? AND deleted = 0
        """

    GET_BUILDING_TIMEZONE = """
        SELECT timezone FROM buildings
        WHERE building_id = ? AND organization_id = ? AND deleted = 0
        """

    def __init__(self, connection: Connection) -> None:
        """Create a PermissionQueries instance.

        :param connection: Database connection
        """
        self.connection = connection

    async def initialize_tables(self) -> None:
        """Create organization, building and assignment tables if needed.

        The users table is created by ``AuthQueries`` and must exist first.
        """
        try:
            await self.connection.execute(PermissionQueries.CREATE_ORGANIZATIONS_TABLE)
            await self.connection.execute(PermissionQueries.CREATE_BUILDINGS_TABLE)
            await self.connection.execute(
                PermissionQueries.CREATE_USER_ORGANIZATIONS_TABLE,
            )
            await self.connection.execute(PermissionQueries.CREATE_USER_BUILDINGS_TABLE)
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error initializing permission tables")
            raise

    async def fetch_organization_permission(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> UserOrganizationPermission | None:
        """Load a user's organization permission with its building permissions.

        Returns None when any of these hold: the user does not exist, is
        deleted, disabled or has no system access; the organization does not
        exist or is deleted; the user is not assigned to the organization or
        the assignment is disabled.

        :param user_id: The user's id
        :param organization_id: The organization's id
        :return: The permission snapshot, or None for no access
        """
        result = await self.connection.execute(
            PermissionQueries.GET_ORGANIZATION_PERMISSION,
            (str(user_id), str(organization_id)),
        )
        row = await result.fetchone()
        if row is None:
            return None

        system_role, organization_disabled, organization_role = row
        permission = UserOrganizationPermission(
            user_id=user_id,
            organization_id=organization_id,
            organization_disabled=bool(organization_disabled),
            organization_role=OrganizationRole(int(organization_role)),
            system_role=SystemRole.parse(system_role),
        )

        result = await self.connection.execute(
            PermissionQueries.GET_BUILDING_PERMISSIONS,
            (str(user_id), str(organization_id)),
        )
        for (
            building_id,
            timezone,
            building_organization_disabled,
            function_id,
            allow_desk_for_visitor,
            allow_restricted_rooms,
            allow_anyone_anywhere,
        ) in await result.fetchall():
            permission.add_building_permission(
                UserBuildingPermission(
                    user_id=user_id,
                    building_id=UUID(building_id),
                    building_timezone=timezone,
                    organization_id=organization_id,
                    organization_disabled=bool(building_organization_disabled),
                    function_id=UUID(function_id),
                    allow_booking_desk_for_visitor=bool(allow_desk_for_visitor),
                    allow_booking_restricted_rooms=bool(allow_restricted_rooms),
                    allow_booking_anyone_anywhere=bool(allow_anyone_anywhere),
                ),
            )

        return permission

    async def fetch_system_role_and_organization_disabled(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> tuple[SystemRole | None, bool | None]:
        """Return the user's system role and the organization's disabled flag.

        :return: (system role or None if the user does not exist,
            disabled flag or None if the organization does not exist)
        """
        result = await self.connection.execute(
            PermissionQueries.GET_USER_SYSTEM_ROLE,
            (str(user_id),),
        )
        role_row = await result.fetchone()
        if role_row is None:
            return None, None

        result = await self.connection.execute(
            PermissionQueries.GET_ORGANIZATION_DISABLED,
            (str(organization_id),),
        )
        disabled_row = await result.fetchone()
        organization_disabled = None if disabled_row is None else bool(disabled_row[0])
        return SystemRole.parse(role_row[0]), organization_disabled

    async def fetch_building_timezone(
        self,
        building_id: UUID,
        organization_id: UUID,
    ) -> str | None:
        """Return the building's timezone name, or None if it does not exist."""
        result = await self.connection.execute(
            PermissionQueries.GET_BUILDING_TIMEZONE,
            (str(building_id), str(organization_id)),
        )
        row = await result.fetchone()
        return row[0] if row and row[0] else None

    async def building_exists(self, building_id: UUID, organization_id: UUID) -> bool:
        """Check whether a non-deleted building exists in the organization."""
        return await self.fetch_building_timezone(building_id, organization_id) is not None


class AssignmentQueries:
    """Repository for writes that change what a user may access.

    Each write commits, then invalidates the cached snapshots it affects.
    """

    ADD_ORGANIZATION = """
        INSERT INTO organizations (organization_id, name, disabled) VALUES (?, ?, ?)
        """

    ADD_BUILDING = """
        INSERT INTO buildings (building_id, organization_id, name, timezone)
        VALUES (?, ?, ?, ?)
        """

    UPSERT_USER_ORGANIZATION = """
        INSERT INTO user_organizations (user_id, organization_id, organization_role)
        VALUES (?, ?, ?)
        ON CONFLICT (user_id, organization_id)
        DO UPDATE SET organization_role = excluded.organization_role
        """

    SET_USER_ORGANIZATION_DISABLED = """
        UPDATE user_organizations SET user_organization_disabled = ?
        WHERE user_id = ? AND organization_id = ?
        """

    DELETE_USER_ORGANIZATION = """
        DELETE FROM user_organizations WHERE user_id = ? AND organization_id = ?
        """

    DELETE_USER_BUILDINGS_IN_ORGANIZATION = """
        DELETE FROM user_buildings
        WHERE user_id = ?
        AND building_id IN (SELECT building_id FROM buildings WHERE organization_id = ?)
        """

    UPSERT_USER_BUILDING = """
        INSERT INTO user_buildings (
            user_id, building_id, function_id,
            allow_booking_desk_for_visitor,
            allow_booking_restricted_rooms,
            allow_booking_anyone_anywhere
        ) VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id, building_id) DO UPDATE SET
            function_id = excluded.function_id,
            allow_booking_desk_for_visitor = excluded.allow_booking_desk_for_visitor,
            allow_booking_restricted_rooms = excluded.allow_booking_restricted_rooms,
            allow_booking_anyone_anywhere = excluded.allow_booking_anyone_anywhere
        """

    DELETE_USER_BUILDING = """
        DELETE FROM user_buildings WHERE user_id = ? AND building_id = ?
        """

    SET_ORGANIZATION_DISABLED = """
        UPDATE organizations SET disabled = ? WHERE organization_id = ? AND deleted = 0
        """

    DELETE_ORGANIZATION = """
        UPDATE organizations SET deleted = 1 WHERE organization_id = ? AND deleted = 0
        """

    DELETE_BUILDING = """
        UPDATE buildings SET deleted = 1
        WHERE building_id = ? AND organization_id = ? AND deleted = 0
        """

    SET_USER_SYSTEM_ROLE = """
        UPDATE users SET system_role = ? WHERE user_id = ? AND deleted = 0
        """

    SET_USER_DISABLED = """
        UPDATE users SET disabled = ? WHERE user_id = ? AND deleted = 0
        """

    def __init__(self, connection: Connection, cache: PermissionCache) -> None:
        """Create an AssignmentQueries instance.

        :param connection: Database connection
        :param cache: Permission cache to invalidate after writes
        """
        self.connection = connection
        self.cache = cache

    async def _write(self, description: str, *statements: tuple[str, tuple]) -> int:
        """Run statements in one transaction.

        :return: Rows affected by the last statement, 0 on failure
        """
        try:
            result = None
            for sql, params in statements:
                result = await self.connection.execute(sql, params)
            await self.connection.commit()
        except Exception:
            await self.connection.rollback()
            LOGGER.exception("Error while trying to %s", description)
            return 0
        else:
            return result.rowcount if result else 0

    async def create_organization(
        self,
        organization_id: UUID,
        name: str,
        *,
        disabled: bool = False,
    ) -> bool:
        """Create an organization. No snapshot can reference it yet."""
        return bool(
            await self._write(
                "create organization",
                (
                    AssignmentQueries.ADD_ORGANIZATION,
                    (str(organization_id), name, int(disabled)),
                ),
            ),
        )

    async def create_building(
        self,
        building_id: UUID,
        organization_id: UUID,
        name: str,
        timezone: str,
    ) -> bool:
        """Create a building within an organization."""
        created = await self._write(
            "create building",
            (
                AssignmentQueries.ADD_BUILDING,
                (str(building_id), str(organization_id), name, timezone),
            ),
        )
        if created:
            self.cache.invalidate_building(building_id, organization_id)
        return bool(created)

    async def set_organization_role(
        self,
        user_id: UUID,
        organization_id: UUID,
        role: OrganizationRole,
    ) -> bool:
        """Assign a user to an organization, or change their role in it."""
        changed = await self._write(
            "set organization role",
            (
                AssignmentQueries.UPSERT_USER_ORGANIZATION,
                (str(user_id), str(organization_id), int(role)),
            ),
        )
        self.cache.invalidate_user_organization(user_id, [organization_id])
        return bool(changed)

    async def set_user_organization_disabled(
        self,
        user_id: UUID,
        organization_id: UUID,
        *,
        disabled: bool,
    ) -> bool:
        """Disable or re-enable a user's access to one organization."""
        changed = await self._write(
            "set user organization disabled",
            (
                AssignmentQueries.SET_USER_ORGANIZATION_DISABLED,
                (int(disabled), str(user_id), str(organization_id)),
            ),
        )
        self.cache.invalidate_user_organization(user_id, [organization_id])
        return bool(changed)

    async def remove_from_organization(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> bool:
        """Remove a user from an organization and all of its buildings."""
        changed = await self._write(
            "remove user from organization",
            (
                AssignmentQueries.DELETE_USER_BUILDINGS_IN_ORGANIZATION,
                (str(user_id), str(organization_id)),
            ),
            (
                AssignmentQueries.DELETE_USER_ORGANIZATION,
                (str(user_id), str(organization_id)),
            ),
        )
        self.cache.invalidate_user_organization(user_id, [organization_id])
        return bool(changed)

    async def assign_building(  # noqa: PLR0913
        self,
        user_id: UUID,
        organization_id: UUID,
        building_id: UUID,
        function_id: UUID,
        *,
        allow_booking_desk_for_visitor: bool = False,
        allow_booking_restricted_rooms: bool = False,
        allow_booking_anyone_anywhere: bool = False,
    ) -> bool:
        """Assign a user to a building, or update the assignment."""
        changed = await self._write(
            "assign building",
            (
                AssignmentQueries.UPSERT_USER_BUILDING,
                (
                    str(user_id),
                    str(building_id),
                    str(function_id),
                    int(allow_booking_desk_for_visitor),
                    int(allow_booking_restricted_rooms),
                    int(allow_booking_anyone_anywhere),
                ),
            ),
        )
        self.cache.invalidate_user_organization(user_id, [organization_id])
        return bool(changed)

    async def unassign_building(
        self,
        user_id: UUID,
        organization_id: UUID,
        building_id: UUID,
    ) -> bool:
        """Remove a user's assignment to a building."""
        changed = await self._write(
            "unassign building",
            (AssignmentQueries.DELETE_USER_BUILDING, (str(user_id), str(building_id))),
        )
        self.cache.invalidate_user_organization(user_id, [organization_id])
        return bool(changed)

    async def set_organization_disabled(
        self,
        organization_id: UUID,
        *,
        disabled: bool,
    ) -> bool:
        """Disable or re-enable an organization for every member."""
        changed = await self._write(
            "set organization disabled",
            (
                AssignmentQueries.SET_ORGANIZATION_DISABLED,
                (int(disabled), str(organization_id)),
            ),
        )
        self.cache.invalidate_organization(organization_id)
        return bool(changed)

    async def delete_organization(self, organization_id: UUID) -> bool:
        """Soft-delete an organization."""
        changed = await self._write(
            "delete organization",
            (AssignmentQueries.DELETE_ORGANIZATION, (str(organization_id),)),
        )
        self.cache.invalidate_organization(organization_id)
        return bool(changed)

    async def delete_building(self, building_id: UUID, organization_id: UUID) -> bool:
        """Soft-delete a building."""
        changed = await self._write(
            "delete building",
            (
                AssignmentQueries.DELETE_BUILDING,
                (str(building_id), str(organization_id)),
            ),
        )
        self.cache.invalidate_building(building_id, organization_id)
        return bool(changed)

    async def set_user_system_role(self, user_id: UUID, role: SystemRole) -> bool:
        """Change a user's system-wide role."""
        changed = await self._write(
            "set user system role",
            (AssignmentQueries.SET_USER_SYSTEM_ROLE, (int(role), str(user_id))),
        )
        self.cache.invalidate_user(user_id)
        return bool(changed)

    async def set_user_disabled(self, user_id: UUID, *, disabled: bool) -> bool:
        """Disable or re-enable a user everywhere."""
        changed = await self._write(
            "set user disabled",
            (AssignmentQueries.SET_USER_DISABLED, (int(disabled), str(user_id))),
        )
        self.cache.invalidate_user(user_id)
        return bool(changed)
