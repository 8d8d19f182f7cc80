from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from ophthexam.core.security import AuthContext, get_current_user
from ophthexam.db.models import Exam, Patient, Profile, User
from ophthexam.db.session import get_db
from ophthexam.services.audit import record_auth_failure
from ophthexam.services.session import (
    AUTH_ROUTE,
    GuardDecision,
    SessionSnapshot,
    SessionState,
    evaluate_route_guard,
    session_manager_for,
)


@dataclass
class RequestUser:
    auth: AuthContext
    db_user: User
    profile: Profile | None
    is_admin: bool


def resolve_session_state(db: Session, auth: AuthContext | None) -> SessionState:
    manager = session_manager_for(db)
    snapshot = (
        SessionSnapshot(user_id=auth.user_id, email=auth.email, session_id=auth.session_id)
        if auth is not None
        else None
    )
    return manager.handle_auth_event("INITIAL_SESSION", snapshot)


def _guarded_user(
    request: Request,
    db: Session,
    auth: AuthContext,
    *,
    require_approved: bool,
    require_admin: bool,
) -> RequestUser:
    state = resolve_session_state(db, auth)
    decision: GuardDecision = evaluate_route_guard(
        state,
        request.url.path,
        require_approved=require_approved,
        require_admin=require_admin,
    )
    if not decision.render:
        if decision.redirect_to == AUTH_ROUTE:
            raise HTTPException(status_code=401, detail="Authentication required")
        record_auth_failure(
            reason="GUARD_DENIED",
            metadata={"path": request.url.path, "redirect_to": decision.redirect_to, "user_id": auth.user_id},
        )
        raise HTTPException(
            status_code=403,
            detail={"message": "Access denied", "redirect_to": decision.redirect_to},
        )

    db_user = db.get(User, auth.user_id)
    if db_user is None:
        raise HTTPException(status_code=401, detail="Authenticated user is not provisioned")
    profile = db.get(Profile, state.profile.id) if state.profile is not None else None
    return RequestUser(auth=auth, db_user=db_user, profile=profile, is_admin=state.is_admin)


def get_request_user(
    request: Request,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RequestUser:
    """Authenticated doctor whose profile is approved."""
    req_user = _guarded_user(request, db, auth, require_approved=True, require_admin=False)
    if req_user.profile is None:
        raise HTTPException(status_code=403, detail="Profile required")
    return req_user


def get_admin_user(
    request: Request,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RequestUser:
    return _guarded_user(request, db, auth, require_approved=False, require_admin=True)


def get_authenticated_user(
    request: Request,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RequestUser:
    """Any signed-in user, regardless of approval status."""
    return _guarded_user(request, db, auth, require_approved=False, require_admin=False)


def assert_patient_owned_by_doctor(db: Session, patient_id: str, profile_id: str) -> Patient:
    patient = db.scalar(
        select(Patient).where(
            Patient.id == patient_id,
            Patient.created_by == profile_id,
        )
    )
    if not patient:
        record_auth_failure(
            reason="OWNERSHIP_DENIED",
            metadata={"patient_id": patient_id, "profile_id": profile_id},
        )
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


def find_owned_exam(db: Session, exam_id: str, profile_id: str) -> Exam | None:
    return db.scalar(select(Exam).where(Exam.id == exam_id, Exam.doctor_id == profile_id))


def assert_exam_owned_by_doctor(db: Session, exam_id: str, profile_id: str) -> Exam:
    exam = find_owned_exam(db, exam_id, profile_id)
    if not exam:
        record_auth_failure(
            reason="OWNERSHIP_DENIED",
            metadata={"exam_id": exam_id, "profile_id": profile_id},
        )
        raise HTTPException(status_code=404, detail="Exam not found")
    return exam
