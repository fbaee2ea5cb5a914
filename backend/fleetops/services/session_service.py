# Overview: Service-layer operations for bearer session tokens.

"""
Session Token Management Service

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable on logout
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from fleetops.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """Result of a successful validate_session."""
    user: User
    session: SessionToken


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 of the token for storage.

    WHY SHA-256 not bcrypt: tokens are already high-entropy.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create a session for an active user.

    Returns (session_record, plaintext_token). Only the hash is persisted.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str, now) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a live token, or None if the token is
    unknown, revoked, expired, idle too long, or belongs to a deactivated
    user. Touches last_used_at on success.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout", now)
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated", now)
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke a session. Returns False if no live session matches."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason, utcnow())
    return True
