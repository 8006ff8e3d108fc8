"""Common data structures used throughout the app."""

from .errors import (
    GENERAL_ERRORS_FIELD,
    ErrorMessage,
    ErrorResponse,
    ValidationMessage,
    error_exception,
)
from .roles import OrganizationRole, SystemRole, UnknownRoleError
from .user import Principal, UserData

__all__ = [
    "GENERAL_ERRORS_FIELD",
    "ErrorMessage",
    "ErrorResponse",
    "OrganizationRole",
    "Principal",
    "SystemRole",
    "UnknownRoleError",
    "UserData",
    "ValidationMessage",
    "error_exception",
]
