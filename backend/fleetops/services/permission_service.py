# Overview: Service-layer operations for role-based permission checks and security event logging.

"""
Permission Checking and Security Event Logging

DESIGN PRINCIPLES:
- Fail closed: deny by default, require an explicit grant through a role
- Log denials only: granted checks are not logged
"""

from ..extensions import db
from ..models import Permission, Role, RolePermission, SecurityEvent, UserRole
from ..permissions import DEFAULT_ROLE_PERMISSIONS, PERMISSION_DEFINITIONS
from fleetops.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Append a security event and commit.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGIN
    - LOGOUT
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> set[str]:
    """Union of permission codes over all of the user's roles."""
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .all()
    )
    return {code for (code,) in rows}


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Raise PermissionDeniedError unless the user holds `permission_code`.
    Denials are written to security_events.

    Usage:
        require_permission(user.id, "CLOSE_TRIPS", resource=request.path)
    """
    if user_has_permission(user_id, permission_code):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name.asc())
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Create Permission rows for every code in PERMISSION_DEFINITIONS.
    Idempotent.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()

        if not existing:
            db.session.add(Permission(
                code=code,
                name=name,
                description=description,
                category=category
            ))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Link roles to their DEFAULT_ROLE_PERMISSIONS. Idempotent; roles or
    permissions missing from the database are skipped.
    """
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()
        if not role:
            continue

        for permission_code in permission_codes:
            permission = db.session.query(Permission).filter_by(code=permission_code).first()
            if not permission:
                continue

            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id
            ).first()

            if not existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created_count += 1

    db.session.commit()
    return created_count
