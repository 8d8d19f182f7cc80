from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ophthexam.core.config import get_settings
from ophthexam.core.rate_limit import limiter
from ophthexam.db.models import Report
from ophthexam.db.session import get_db
from ophthexam.schemas.report import SharedReportRead
from ophthexam.services.sharing import SharedReportExpired, SharedReportNotFound, resolve_shared_report

router = APIRouter(prefix="/shared-reports", tags=["shared-reports"])
settings = get_settings()


def _shared_snapshot(report: Report) -> SharedReportRead:
    exam = report.exam
    patient = exam.patient
    analysis = exam.analyses[0] if exam.analyses else None
    doctor = report.approver or exam.doctor

    return SharedReportRead(
        patient={
            "name": patient.name,
            "birth_date": patient.birth_date,
            "gender": patient.gender,
            "record_number": patient.record_number,
        },
        exam={
            "id": exam.id,
            "exam_type": exam.exam_type,
            "eye": exam.eye,
            "exam_date": exam.exam_date,
            "equipment": exam.equipment,
            "clinical_indication": exam.clinical_indication,
        },
        analysis=(
            {
                "quality_score": analysis.quality_score,
                "findings": analysis.findings,
                "biomarkers": analysis.biomarkers,
                "measurements": analysis.measurements,
                "diagnosis": analysis.diagnosis or [],
                "recommendations": analysis.recommendations or [],
                "risk_classification": analysis.risk_classification,
            }
            if analysis is not None
            else None
        ),
        doctor=(
            {
                "full_name": doctor.full_name,
                "crm": doctor.crm,
                "crm_uf": doctor.crm_uf,
                "clinic_name": doctor.clinic_name,
            }
            if doctor is not None
            else None
        ),
        report={
            "id": report.id,
            "doctor_notes": report.doctor_notes,
            "final_diagnosis": report.final_diagnosis,
            "approved_at": report.approved_at,
            "share_expires_at": report.share_expires_at,
        },
        image_url=exam.images[0].image_url if exam.images else None,
    )


@router.get("/{token}", response_model=SharedReportRead)
@limiter.limit(settings.rate_limit_read_per_user, key_func=get_remote_address)
def get_shared_report(
    request: Request,
    response: Response,
    token: str,
    db: Session = Depends(get_db),
):
    try:
        report = resolve_shared_report(db, token)
    except SharedReportNotFound as exc:
        raise HTTPException(status_code=404, detail="Shared report not found") from exc
    except SharedReportExpired as exc:
        raise HTTPException(status_code=410, detail="Share link expired") from exc
    return _shared_snapshot(report)
