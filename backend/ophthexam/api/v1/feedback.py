from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.orm import Session

from ophthexam.api.deps import RequestUser, assert_exam_owned_by_doctor, get_admin_user, get_request_user
from ophthexam.core.config import get_settings
from ophthexam.core.rate_limit import limiter, user_or_ip_key
from ophthexam.db.models import AiFeedback
from ophthexam.db.session import get_db
from ophthexam.schemas.feedback import (
    DiagnosisAccuracyRead,
    ExamTypeAccuracyRead,
    FeedbackCreate,
    FeedbackMutationResponse,
    FeedbackRead,
    FeedbackStatsRead,
    FeedbackUpdate,
    LearningInsightsRead,
    PendingCountRead,
    SuggestionsRead,
    ValidationMetricsRead,
)
from ophthexam.services.audit import write_audit_log
from ophthexam.services.feedback import (
    SUBMIT_FAILED,
    accuracy_by_exam_type,
    count_exams_without_feedback,
    delete_feedback,
    diagnosis_accuracy,
    feedback_stats,
    fetch_feedback,
    improvement_suggestions,
    learning_insights,
    submit_feedback,
    update_feedback,
    validation_metrics,
)

router = APIRouter(prefix="/feedback", tags=["feedback"])
settings = get_settings()


def _mutation_failed(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=FeedbackMutationResponse(ok=False, message=message).model_dump(mode="json"),
    )


def _owned_feedback(db: Session, feedback_id: str, doctor_id: str) -> AiFeedback:
    row = db.scalar(select(AiFeedback).where(AiFeedback.id == feedback_id, AiFeedback.doctor_id == doctor_id))
    if row is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return row


@router.get("", response_model=FeedbackRead | None)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_feedback(
    request: Request,
    response: Response,
    exam_id: str = Query(min_length=1),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    result = fetch_feedback(db, exam_id=exam_id, doctor_id=req_user.profile.id)
    if not result.ok:
        raise HTTPException(status_code=500, detail="Could not load feedback")
    return result.value


@router.get("/pending-count", response_model=PendingCountRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_pending_count(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    result = count_exams_without_feedback(db, doctor_id=req_user.profile.id)
    return PendingCountRead(count=result.value or 0)


@router.get("/stats", response_model=FeedbackStatsRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_feedback_stats(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    return FeedbackStatsRead(**feedback_stats(db))


@router.get("/stats/by-exam-type", response_model=list[ExamTypeAccuracyRead])
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_accuracy_by_exam_type(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    return accuracy_by_exam_type(db)


@router.get("/stats/diagnoses", response_model=list[DiagnosisAccuracyRead])
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_diagnosis_accuracy(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    return diagnosis_accuracy(db)


@router.get("/insights", response_model=LearningInsightsRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_learning_insights(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    return learning_insights(db)


@router.get("/insights/suggestions", response_model=SuggestionsRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_improvement_suggestions(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    return SuggestionsRead(suggestions=improvement_suggestions(db))


@router.get("/validation-metrics", response_model=ValidationMetricsRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def get_validation_metrics(
    request: Request,
    response: Response,
    limit: int = Query(default=500, ge=1, le=5000),
    db: Session = Depends(get_db),
    admin: RequestUser = Depends(get_admin_user),
):
    return validation_metrics(db, limit=limit)


@router.post("", response_model=FeedbackMutationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def create_feedback(
    request: Request,
    response: Response,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    try:
        parsed_payload = FeedbackCreate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    doctor_id = req_user.profile.id
    exam = assert_exam_owned_by_doctor(db, parsed_payload.exam_id, doctor_id)

    existing = fetch_feedback(db, exam_id=exam.id, doctor_id=doctor_id)
    if existing.value is not None:
        return _mutation_failed(status.HTTP_409_CONFLICT, SUBMIT_FAILED)

    data = parsed_payload.model_dump(mode="json", exclude={"exam_id"}, exclude_none=True)
    result = submit_feedback(db, exam_id=exam.id, doctor_id=doctor_id, data=data)
    if not result.ok:
        return _mutation_failed(status.HTTP_500_INTERNAL_SERVER_ERROR, result.message or SUBMIT_FAILED)

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="FEEDBACK_SUBMITTED",
        resource_type="ai_feedback",
        resource_id=result.value.id if result.value else None,
        metadata={"exam_id": exam.id},
    )
    db.commit()
    return FeedbackMutationResponse(
        ok=True,
        message=result.message,
        feedback=FeedbackRead.model_validate(result.value) if result.value else None,
    )


@router.patch("/{feedback_id}", response_model=FeedbackMutationResponse)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def patch_feedback(
    request: Request,
    response: Response,
    feedback_id: str,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    try:
        parsed_payload = FeedbackUpdate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    feedback = _owned_feedback(db, feedback_id, req_user.profile.id)
    changes = parsed_payload.model_dump(mode="json", exclude_unset=True)
    if changes.get("is_reference_case", False) is None:
        changes.pop("is_reference_case")

    result = update_feedback(db, feedback=feedback, changes=changes)
    if not result.ok:
        return _mutation_failed(status.HTTP_500_INTERNAL_SERVER_ERROR, result.message)

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="FEEDBACK_UPDATED",
        resource_type="ai_feedback",
        resource_id=feedback.id,
        metadata={"fields": sorted(changes)},
    )
    db.commit()
    return FeedbackMutationResponse(
        ok=True,
        message=result.message,
        feedback=FeedbackRead.model_validate(result.value),
    )


@router.delete("/{feedback_id}", response_model=FeedbackMutationResponse)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def remove_feedback(
    request: Request,
    response: Response,
    feedback_id: str,
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
):
    feedback = _owned_feedback(db, feedback_id, req_user.profile.id)
    exam_id = feedback.exam_id

    result = delete_feedback(db, feedback=feedback)
    if not result.ok:
        return _mutation_failed(status.HTTP_500_INTERNAL_SERVER_ERROR, result.message)

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="FEEDBACK_DELETED",
        resource_type="ai_feedback",
        resource_id=feedback_id,
        metadata={"exam_id": exam_id},
    )
    db.commit()
    return FeedbackMutationResponse(ok=True, message=result.message)
