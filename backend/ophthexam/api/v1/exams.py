from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from slowapi.util import get_remote_address
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ophthexam.api.deps import (
    RequestUser,
    assert_exam_owned_by_doctor,
    assert_patient_owned_by_doctor,
    get_request_user,
)
from ophthexam.core.config import get_settings
from ophthexam.core.enums import ExamStatus
from ophthexam.core.rate_limit import limiter, user_or_ip_key
from ophthexam.db.base import utcnow
from ophthexam.db.models import Exam
from ophthexam.db.session import get_db
from ophthexam.schemas.exam import ExamCreate, ExamRead
from ophthexam.services.audit import write_audit_log

router = APIRouter(prefix="/exams", tags=["exams"])
settings = get_settings()


@router.get("", response_model=list[ExamRead])
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def list_exams(
    request: Request,
    response: Response,
    exam_status: ExamStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0, le=10_000),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    stmt = select(Exam).where(Exam.doctor_id == req_user.profile.id)
    if exam_status is not None:
        stmt = stmt.where(Exam.status == exam_status.value)
    rows = db.scalars(stmt.order_by(desc(Exam.exam_date)).limit(limit).offset(offset)).all()
    return list(rows)


@router.post("", response_model=ExamRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def create_exam(
    request: Request,
    response: Response,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    try:
        parsed_payload = ExamCreate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    patient = assert_patient_owned_by_doctor(db, parsed_payload.patient_id, req_user.profile.id)

    exam = Exam(
        patient_id=patient.id,
        doctor_id=req_user.profile.id,
        exam_type=parsed_payload.exam_type.value,
        eye=parsed_payload.eye.value,
        exam_date=parsed_payload.exam_date or utcnow(),
        status=ExamStatus.PENDING.value,
        equipment=parsed_payload.equipment,
        clinical_indication=parsed_payload.clinical_indication,
    )
    db.add(exam)
    db.flush()

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="EXAM_CREATED",
        resource_type="exam",
        resource_id=exam.id,
        metadata={"patient_id": patient.id, "exam_type": exam.exam_type},
    )

    db.commit()
    db.refresh(exam)
    return exam


@router.get("/{exam_id}", response_model=ExamRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_exam(
    request: Request,
    response: Response,
    exam_id: str,
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    return assert_exam_owned_by_doctor(db, exam_id, req_user.profile.id)
