from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .trips import Trip, TripAuditLog
from .expenses import Expense, ExpenseAllocation
from .accounting import AccountingPeriod

__all__ = [
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'Trip', 'TripAuditLog',
    'Expense', 'ExpenseAllocation',
    'AccountingPeriod',
]
