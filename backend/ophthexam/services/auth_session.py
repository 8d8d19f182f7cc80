from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone

from jose import jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from ophthexam.core.config import Settings
from ophthexam.db.base import utcnow
from ophthexam.db.models import AuthSession

ACCESS_TOKEN_ALGORITHM = "HS256"


def hash_value(value: str | None) -> str | None:
    if value is None:
        return None
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_auth_session(
    *,
    db: Session,
    user_id: str,
    settings: Settings,
    ip_address: str | None,
    user_agent: str | None,
) -> AuthSession:
    session = AuthSession(
        user_id=user_id,
        session_expires_at=utcnow() + timedelta(minutes=settings.access_token_ttl_minutes),
        revoked_at=None,
        last_seen_at=utcnow(),
        ip_hash=hash_value(ip_address),
        user_agent_hash=hash_value(user_agent),
    )
    db.add(session)
    db.flush()
    return session


def issue_access_token(session: AuthSession, settings: Settings) -> str:
    claims = {
        "sub": session.user_id,
        "sid": session.id,
        "iat": int(utcnow().timestamp()),
        "exp": int(ensure_utc(session.session_expires_at).timestamp()),
    }
    return jwt.encode(claims, settings.session_signing_key, algorithm=ACCESS_TOKEN_ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> dict:
    """Verify signature and expiry; raises ``jose.JWTError`` when either fails."""
    return jwt.decode(token, settings.session_signing_key, algorithms=[ACCESS_TOKEN_ALGORITHM])


def get_active_session(db: Session, session_id: str) -> AuthSession | None:
    row = db.scalar(select(AuthSession).where(AuthSession.id == session_id))
    if row is None or row.revoked_at is not None:
        return None
    if ensure_utc(row.session_expires_at) <= utcnow():
        return None
    return row


def revoke_session(db: Session, session_id: str) -> AuthSession | None:
    row = db.scalar(select(AuthSession).where(AuthSession.id == session_id))
    if row is None:
        return None
    if row.revoked_at is None:
        row.revoked_at = utcnow()
    db.flush()
    return row
