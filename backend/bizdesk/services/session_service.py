# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management

- Cryptographically secure random tokens (32 bytes, hex)
- Only the SHA-256 of a token is stored
- 24-hour absolute timeout, 2-hour idle timeout
- Revocable on logout
- business_id is captured at login and is immutable for the session
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Business, SessionToken, User
from bizdesk.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    business_id: int


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for the user. Returns (session_record, plaintext_token);
    the client receives the plaintext, the database stores only its hash.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    business = db.session.get(Business, user.business_id)
    if not business or not business.is_active:
        raise ValidationError("Business is not active")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        business_id=user.business_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, now) -> None:
    session.is_revoked = True
    session.revoked_at = now
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Returns None for unknown, expired, revoked or idle tokens, and for
    deactivated users or businesses. Updates last_used_at otherwise.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, now)
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, now)
        return None

    business = db.session.get(Business, session.business_id)
    if not business or not business.is_active:
        _revoke(session, now)
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session, business_id=session.business_id)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False
    _revoke(session, utcnow())
    return True


def cleanup_expired_sessions() -> int:
    """Delete expired or revoked sessions older than 30 days."""
    cutoff = utcnow() - timedelta(days=30)
    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
