# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- TRIPS --

TRIP_PERMISSIONS = [
    (
        "VIEW_TRIPS",
        "View Trips",
        "View trips and pre-flight transition checks",
        PermissionCategory.TRIPS,
    ),
    (
        "EDIT_TRIPS",
        "Edit Trips",
        "Create trips and edit data-entry fields of open trips",
        PermissionCategory.TRIPS,
    ),
    (
        "MANAGE_TRIP_WORKFLOW",
        "Manage Trip Workflow",
        "Confirm, dispatch, start and complete trips",
        PermissionCategory.TRIPS,
    ),
    (
        "CLOSE_TRIPS",
        "Close Trips",
        "Close completed trips (locks financial fields permanently)",
        PermissionCategory.TRIPS,
    ),
    (
        "CANCEL_TRIPS",
        "Cancel Trips",
        "Cancel trips that are not closed",
        PermissionCategory.TRIPS,
    ),
    (
        "VIEW_TRIP_AUDIT",
        "View Trip Audit",
        "View the trip audit trail, including blocked attempts",
        PermissionCategory.TRIPS,
    ),
]


# -- EXPENSES --

EXPENSE_PERMISSIONS = [
    (
        "VIEW_EXPENSES",
        "View Expenses",
        "View expenses and their allocations",
        PermissionCategory.EXPENSES,
    ),
    (
        "MANAGE_EXPENSES",
        "Manage Expenses",
        "Create, assign and cancel expenses",
        PermissionCategory.EXPENSES,
    ),
    (
        "CONFIRM_EXPENSES",
        "Confirm Expenses",
        "Confirm draft expenses so they count toward trip profit",
        PermissionCategory.EXPENSES,
    ),
    (
        "ALLOCATE_EXPENSES",
        "Allocate Expenses",
        "Split expenses across trips by percentage",
        PermissionCategory.EXPENSES,
    ),
]


# -- ACCOUNTING --

ACCOUNTING_PERMISSIONS = [
    (
        "VIEW_FINANCIALS",
        "View Financials",
        "View trip revenue, expense and profit aggregates",
        PermissionCategory.ACCOUNTING,
    ),
    (
        "MANAGE_PERIODS",
        "Manage Accounting Periods",
        "Create and close accounting periods",
        PermissionCategory.ACCOUNTING,
    ),
]


# -- USERS / SYSTEM --

USER_PERMISSIONS = [
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users and assign roles",
        PermissionCategory.USERS,
    ),
]

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full system access",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    TRIP_PERMISSIONS
    + EXPENSE_PERMISSIONS
    + ACCOUNTING_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
