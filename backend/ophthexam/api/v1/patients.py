from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from slowapi.util import get_remote_address
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ophthexam.api.deps import RequestUser, assert_patient_owned_by_doctor, get_request_user
from ophthexam.core.config import get_settings
from ophthexam.core.rate_limit import limiter, user_or_ip_key
from ophthexam.db.models import Patient
from ophthexam.db.session import get_db
from ophthexam.schemas.patient import PatientCreate, PatientRead
from ophthexam.services.audit import write_audit_log

router = APIRouter(prefix="/patients", tags=["patients"])
settings = get_settings()


@router.get("", response_model=list[PatientRead])
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def list_patients(
    request: Request,
    response: Response,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0, le=10_000),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    rows = db.scalars(
        select(Patient)
        .where(Patient.created_by == req_user.profile.id)
        .order_by(desc(Patient.created_at))
        .limit(limit)
        .offset(offset)
    ).all()
    return list(rows)


@router.post("", response_model=PatientRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def create_patient(
    request: Request,
    response: Response,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    try:
        parsed_payload = PatientCreate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    patient = Patient(**parsed_payload.model_dump(), created_by=req_user.profile.id)
    db.add(patient)
    db.flush()

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="PATIENT_CREATED",
        resource_type="patient",
        resource_id=patient.id,
        metadata={"record_number": patient.record_number},
    )

    db.commit()
    db.refresh(patient)
    return patient


@router.get("/{patient_id}", response_model=PatientRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_patient(
    request: Request,
    response: Response,
    patient_id: str,
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    patient = assert_patient_owned_by_doctor(db, patient_id, req_user.profile.id)

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="PATIENT_READ",
        resource_type="patient",
        resource_id=patient.id,
        metadata={},
    )
    db.commit()
    return patient
