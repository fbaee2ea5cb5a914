# Overview: Default role -> permission mappings (principle of least privilege).

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = [
    ("admin", "Full system access"),
    ("manager", "Operations and finance oversight, closes trips"),
    ("dispatcher", "Trip data entry and workflow up to completion"),
    ("accountant", "Expense confirmation, allocation and trip closing"),
    ("viewer", "Read-only access"),
]


DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "manager": [
        "VIEW_TRIPS",
        "EDIT_TRIPS",
        "MANAGE_TRIP_WORKFLOW",
        "CLOSE_TRIPS",
        "CANCEL_TRIPS",
        "VIEW_TRIP_AUDIT",
        "VIEW_EXPENSES",
        "MANAGE_EXPENSES",
        "CONFIRM_EXPENSES",
        "ALLOCATE_EXPENSES",
        "VIEW_FINANCIALS",
    ],
    "dispatcher": [
        "VIEW_TRIPS",
        "EDIT_TRIPS",
        "MANAGE_TRIP_WORKFLOW",
        "VIEW_EXPENSES",
        "MANAGE_EXPENSES",
    ],
    "accountant": [
        "VIEW_TRIPS",
        "CLOSE_TRIPS",
        "VIEW_TRIP_AUDIT",
        "VIEW_EXPENSES",
        "MANAGE_EXPENSES",
        "CONFIRM_EXPENSES",
        "ALLOCATE_EXPENSES",
        "VIEW_FINANCIALS",
        "MANAGE_PERIODS",
    ],
    "viewer": [
        "VIEW_TRIPS",
        "VIEW_EXPENSES",
    ],
}
