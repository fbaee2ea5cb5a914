# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    TRIPS = "TRIPS"
    EXPENSES = "EXPENSES"
    ACCOUNTING = "ACCOUNTING"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
