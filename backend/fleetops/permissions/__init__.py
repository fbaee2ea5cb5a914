# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    TRIP_PERMISSIONS,
    EXPENSE_PERMISSIONS,
    ACCOUNTING_PERMISSIONS,
    USER_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import DEFAULT_ROLES, DEFAULT_ROLE_PERMISSIONS

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "TRIP_PERMISSIONS",
    "EXPENSE_PERMISSIONS",
    "ACCOUNTING_PERMISSIONS",
    "USER_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
]
