from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ophthexam.core.config import Settings, get_settings
from ophthexam.db.base import utcnow
from ophthexam.db.models import User
from ophthexam.db.session import get_db
from ophthexam.services.audit import record_auth_failure
from ophthexam.services.auth_session import decode_access_token, get_active_session


class AuthContext(BaseModel):
    user_id: str
    email: str
    session_id: str | None = None


class AuthenticationError(Exception):
    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


def extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate_token(db: Session, token: str, settings: Settings) -> AuthContext:
    try:
        claims = decode_access_token(token, settings)
    except JWTError as exc:
        raise AuthenticationError("TOKEN_INVALID", "Invalid token") from exc

    session_id = claims.get("sid")
    if not session_id:
        raise AuthenticationError("TOKEN_INVALID", "Invalid token payload")

    auth_session = get_active_session(db, session_id)
    if auth_session is None:
        raise AuthenticationError("SESSION_INVALID", "Session expired or revoked")

    user = db.get(User, auth_session.user_id)
    if user is None or user.id != claims.get("sub"):
        raise AuthenticationError("SESSION_USER_NOT_FOUND", "Session user not found")

    auth_session.last_seen_at = utcnow()
    db.commit()
    return AuthContext(user_id=user.id, email=user.email, session_id=auth_session.id)


def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthContext | None:
    token = extract_bearer_token(request)
    if token is None:
        return None
    try:
        return authenticate_token(db, token, settings)
    except AuthenticationError as exc:
        record_auth_failure(reason=exc.reason, metadata={"path": request.url.path})
        raise HTTPException(status_code=401, detail=exc.message) from exc


def get_current_user(
    request: Request,
    user: AuthContext | None = Depends(get_optional_user),
) -> AuthContext:
    if user is None:
        record_auth_failure(reason="BEARER_MISSING", metadata={"path": request.url.path})
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return user


def dev_auth_route_available(settings: Settings) -> bool:
    return settings.is_local_dev and settings.enable_dev_auth
