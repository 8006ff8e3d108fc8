"""Cached permission lookups.

Snapshots are loaded from a :class:`PermissionSource` on a miss and kept for
a bounded TTL. "No access" results are cached as ``None`` as well, so a
denied user does not hit the database on every request. Writes that change
access call one of the ``invalidate_*`` hooks before they return.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from facility_auth.common import OrganizationRole, SystemRole

from .cache import TtlCache
from .models import UserBuildingPermission, UserOrganizationPermission

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable

    from .queries import PermissionSource

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

DEFAULT_PERMISSION_TTL_SECONDS = 300
BUILDING_TIMEZONE_TTL_SECONDS = 6 * 60 * 60

_ORGANIZATION_PERMISSION = "organization_permission"
_BUILDING_TIMEZONE = "building_timezone"


class PermissionCache:
    """Resolves and caches a user's organization and building permissions.

    :param source: Authoritative permission data
    :param cache: Backing store whose default TTL is the snapshot lifetime,
        a fresh one is created if omitted
    """

    def __init__(
        self,
        source: PermissionSource,
        cache: TtlCache | None = None,
    ) -> None:
        self.source = source
        self.cache = (
            cache if cache is not None else TtlCache(DEFAULT_PERMISSION_TTL_SECONDS)
        )

    @staticmethod
    def _organization_key(user_id: UUID, organization_id: UUID) -> tuple:
        return (_ORGANIZATION_PERMISSION, user_id, organization_id)

    async def get_organization_permission(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> UserOrganizationPermission | None:
        """Return the user's organization snapshot, or None for no access.

        :param user_id: The user's id
        :param organization_id: The organization's id
        """
        return await self.cache.get_or_set(
            self._organization_key(user_id, organization_id),
            lambda: self.source.fetch_organization_permission(user_id, organization_id),
        )

    async def get_building_permission(
        self,
        user_id: UUID,
        organization_id: UUID,
        building_id: UUID,
    ) -> UserBuildingPermission | None:
        """Return the user's permission for one building, or None.

        Building permissions are owned by the organization snapshot, so this
        shares its cache entry and its invalidation.
        """
        permission = await self.get_organization_permission(user_id, organization_id)
        if permission is None:
            return None
        return permission.building_permissions.get(building_id)

    async def get_master_or_organization_permission(
        self,
        user_id: UUID,
        organization_id: UUID,
    ) -> UserOrganizationPermission | None:
        """Return the organization snapshot, or a synthetic one for Master users.

        A Master user without an assignment gets an uncached snapshot with
        ``SystemRole.MASTER`` and ``OrganizationRole.NO_ACCESS``. This holds
        even if the organization does not exist.
        """
        permission = await self.get_organization_permission(user_id, organization_id)
        if permission is not None:
            return permission

        (
            system_role,
            organization_disabled,
        ) = await self.source.fetch_system_role_and_organization_disabled(
            user_id,
            organization_id,
        )
        if system_role != SystemRole.MASTER:
            return None

        return UserOrganizationPermission(
            user_id=user_id,
            organization_id=organization_id,
            organization_disabled=bool(organization_disabled),
            organization_role=OrganizationRole.NO_ACCESS,
            system_role=SystemRole.MASTER,
        )

    async def get_building_timezone(
        self,
        building_id: UUID,
        organization_id: UUID,
    ) -> str | None:
        """Return a building's timezone name, cached for six hours."""
        return await self.cache.get_or_set(
            (_BUILDING_TIMEZONE, building_id, organization_id),
            lambda: self.source.fetch_building_timezone(building_id, organization_id),
            ttl=BUILDING_TIMEZONE_TTL_SECONDS,
        )

    async def building_exists(self, building_id: UUID, organization_id: UUID) -> bool:
        """Check whether a building exists in the organization. Not cached."""
        return await self.source.building_exists(building_id, organization_id)

    def _remove_snapshots(self, predicate) -> int:
        def matches(key: Hashable) -> bool:
            return (
                isinstance(key, tuple)
                and key[0] == _ORGANIZATION_PERMISSION
                and predicate(key[1], key[2])
            )

        return self.cache.remove_where(matches)

    def invalidate_user_organization(
        self,
        user_id: UUID,
        organization_ids: Iterable[UUID],
    ) -> None:
        """Drop a user's snapshots for the given organizations."""
        for organization_id in organization_ids:
            self.cache.remove(self._organization_key(user_id, organization_id))
        LOGGER.debug("Invalidated organization permissions for user %s", user_id)

    def invalidate_user(self, user_id: UUID) -> None:
        """Drop every snapshot belonging to a user."""
        removed = self._remove_snapshots(lambda uid, _: uid == user_id)
        LOGGER.debug("Invalidated %d permission snapshots for user %s", removed, user_id)

    def invalidate_organization(self, organization_id: UUID) -> None:
        """Drop every user's snapshot for an organization."""
        removed = self._remove_snapshots(lambda _, oid: oid == organization_id)
        LOGGER.debug(
            "Invalidated %d permission snapshots for organization %s",
            removed,
            organization_id,
        )

    def invalidate_building(self, building_id: UUID, organization_id: UUID) -> None:
        """Drop a building's timezone and the snapshots that list the building."""
        self.cache.remove((_BUILDING_TIMEZONE, building_id, organization_id))
        self.invalidate_organization(organization_id)
