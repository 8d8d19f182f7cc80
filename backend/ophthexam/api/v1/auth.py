from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response
from pydantic import ValidationError
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.orm import Session

from ophthexam.api.deps import RequestUser, get_authenticated_user, resolve_session_state
from ophthexam.core.config import Settings, get_settings
from ophthexam.core.enums import AppRole, ProfileStatus
from ophthexam.core.rate_limit import limiter
from ophthexam.core.security import AuthContext, dev_auth_route_available, get_current_user, get_optional_user
from ophthexam.db.models import Profile, User, UserRole
from ophthexam.db.session import get_db
from ophthexam.schemas.auth import (
    DevLoginRequest,
    DevLoginResponse,
    GuardRead,
    LogoutResponse,
    ProfileRead,
    SessionRead,
)
from ophthexam.services.audit import write_audit_log
from ophthexam.services.auth_session import create_auth_session, issue_access_token, revoke_session
from ophthexam.services.session import evaluate_route_guard

router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


def profile_read(profile: Profile | None) -> ProfileRead | None:
    if profile is None:
        return None
    return ProfileRead(
        id=profile.id,
        user_id=profile.user_id,
        full_name=profile.full_name,
        status=profile.status,
        crm=profile.crm,
        crm_uf=profile.crm_uf,
        clinic_name=profile.clinic_name,
    )


def _ensure_role(db: Session, user_id: str, role: AppRole) -> None:
    existing = db.scalar(select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == role.value))
    if existing is None:
        db.add(UserRole(user_id=user_id, role=role.value))


@router.post("/dev-login", response_model=DevLoginResponse)
@limiter.limit(settings.rate_limit_auth_per_minute, key_func=get_remote_address)
def dev_login(
    request: Request,
    response: Response,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    if not dev_auth_route_available(cfg):
        raise HTTPException(status_code=404, detail="Not found")

    try:
        parsed_payload = DevLoginRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    email = parsed_payload.email.lower()
    is_bootstrap_admin = email in cfg.bootstrap_admin_emails_list

    user = db.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, full_name=parsed_payload.full_name or email)
        db.add(user)
        db.flush()

    profile = db.scalar(select(Profile).where(Profile.user_id == user.id))
    if profile is None:
        profile = Profile(
            user_id=user.id,
            full_name=parsed_payload.full_name or email,
            crm=parsed_payload.crm or "",
            crm_uf=(parsed_payload.crm_uf or "").upper(),
            status=ProfileStatus.APPROVED.value if is_bootstrap_admin else ProfileStatus.PENDING.value,
        )
        db.add(profile)
        db.flush()

    _ensure_role(db, user.id, AppRole.DOCTOR)
    if is_bootstrap_admin:
        _ensure_role(db, user.id, AppRole.ADMIN)

    auth_session = create_auth_session(
        db=db,
        user_id=user.id,
        settings=cfg,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    write_audit_log(
        db,
        user_id=user.id,
        action="LOGIN_COMPLETED",
        resource_type="auth",
        resource_id=auth_session.id,
        metadata={"email": user.email, "mode": "dev-login"},
    )
    db.commit()

    return DevLoginResponse(
        user_id=user.id,
        email=user.email,
        access_token=issue_access_token(auth_session, cfg),
        expires_in=cfg.access_token_ttl_minutes * 60,
        profile_status=profile.status,
        is_admin=is_bootstrap_admin,
    )


@router.post("/logout", response_model=LogoutResponse)
@limiter.limit(settings.rate_limit_auth_per_minute, key_func=get_remote_address)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_current_user),
):
    if auth.session_id:
        revoke_session(db, auth.session_id)

    write_audit_log(
        db,
        user_id=auth.user_id,
        action="LOGOUT",
        resource_type="auth",
        resource_id=auth.session_id,
        metadata={},
    )
    db.commit()
    return LogoutResponse(ok=True, message="Logged out")


@router.get("/session", response_model=SessionRead)
@limiter.limit(settings.rate_limit_auth_per_minute, key_func=get_remote_address)
def get_session(
    request: Request,
    response: Response,
    req_user: RequestUser = Depends(get_authenticated_user),
):
    return SessionRead(
        authenticated=True,
        user_id=req_user.db_user.id,
        email=req_user.db_user.email,
        is_admin=req_user.is_admin,
        profile=profile_read(req_user.profile),
    )


@router.get("/guard", response_model=GuardRead)
@limiter.limit(settings.rate_limit_auth_per_minute, key_func=get_remote_address)
def evaluate_guard(
    request: Request,
    response: Response,
    path: str = Query(default="/dashboard", min_length=1),
    require_admin: bool = False,
    require_approved: bool = True,
    db: Session = Depends(get_db),
    auth: AuthContext | None = Depends(get_optional_user),
):
    state = resolve_session_state(db, auth)
    decision = evaluate_route_guard(
        state,
        path,
        require_approved=require_approved,
        require_admin=require_admin,
    )
    return GuardRead(render=decision.render, redirect_to=decision.redirect_to, from_path=decision.from_path)
