# Overview: Service-layer operations for back-office user accounts and password checks.

"""
Authentication Service

WHY: Every trip transition, expense confirmation and close must be
attributable to a named user. No shared logins.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper + lower + digit + special char
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..extensions import db
from ..models import Role, User, UserRole
from ..permissions import DEFAULT_ROLES
from fleetops.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Raise PasswordValidationError unless the password has at least 8
    characters and contains an uppercase letter, a lowercase letter, a digit
    and a special character.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    full_name: str | None = None,
) -> User:
    """
    Create a back-office user.

    Raises:
        ValueError: If the username or email is already taken
        PasswordValidationError: If the password is too weak
    """
    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching username (or email) and password,
    stamping last_login_at; None otherwise.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign role to user. Idempotent."""
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(
        user_id=user_id,
        role_id=role.id
    ).first()

    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)

    db.session.add(user_role)
    db.session.commit()
    return user_role


def create_default_roles() -> int:
    """Create the standard back-office roles if they don't exist."""
    created = 0
    for name, desc in DEFAULT_ROLES:
        existing = db.session.query(Role).filter_by(name=name).first()
        if not existing:
            db.session.add(Role(name=name, description=desc))
            created += 1

    db.session.commit()
    return created
