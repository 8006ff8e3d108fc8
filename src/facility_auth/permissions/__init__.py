"""Organization and building permission resolution and checks."""

from .cache import TtlCache
from .cache_service import PermissionCache
from .models import UserBuildingPermission, UserOrganizationPermission
from .permission_routes import configure_permission_router
from .policy import (
    AuthorizationResult,
    authorize_building,
    authorize_building_or_super_admin,
    authorize_master_or_organization,
    authorize_organization,
)
from .queries import AssignmentQueries, PermissionQueries, PermissionSource

__all__ = [
    "AssignmentQueries",
    "AuthorizationResult",
    "PermissionCache",
    "PermissionQueries",
    "PermissionSource",
    "TtlCache",
    "UserBuildingPermission",
    "UserOrganizationPermission",
    "authorize_building",
    "authorize_building_or_super_admin",
    "authorize_master_or_organization",
    "authorize_organization",
    "configure_permission_router",
]
