from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ophthexam.api.deps import RequestUser, assert_exam_owned_by_doctor, get_request_user
from ophthexam.core.config import Settings, get_settings
from ophthexam.core.rate_limit import limiter, user_or_ip_key
from ophthexam.db.session import get_db
from ophthexam.schemas.report import ReportPdfUploadRead
from ophthexam.services.audit import write_audit_log
from ophthexam.services.report_pdf import (
    build_report_data,
    embed_remote_images,
    generate_pdf_filename,
    render_report_pdf,
    update_report_pdf_url,
    upload_report_pdf,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/exams", tags=["reports"])
settings = get_settings()


def _render_exam_pdf(db: Session, exam, cfg: Settings) -> tuple[bytes, str]:
    data = build_report_data(db, exam)
    data = embed_remote_images(data, timeout=cfg.image_fetch_timeout_seconds)
    pdf_bytes = render_report_pdf(data)
    filename = generate_pdf_filename(data.patient.name, data.exam.exam_type, data.exam.exam_date)
    return pdf_bytes, filename


@router.get("/{exam_id}/report/pdf")
@limiter.limit(settings.rate_limit_read_per_user, key_func=user_or_ip_key)
def download_report_pdf(
    request: Request,
    response: Response,
    exam_id: str,
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
    cfg: Settings = Depends(get_settings),
):
    exam = assert_exam_owned_by_doctor(db, exam_id, req_user.profile.id)
    pdf_bytes, filename = _render_exam_pdf(db, exam, cfg)

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="REPORT_PDF_DOWNLOADED",
        resource_type="exam",
        resource_id=exam.id,
        metadata={"filename": filename},
    )
    db.commit()

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{exam_id}/report/pdf", response_model=ReportPdfUploadRead)
@limiter.limit(settings.rate_limit_mutating_per_ip, key_func=get_remote_address)
@limiter.limit(settings.rate_limit_mutating_per_user, key_func=user_or_ip_key)
def store_report_pdf(
    request: Request,
    response: Response,
    exam_id: str,
    db: Session = Depends(get_db),
    req_user: RequestUser = Depends(get_request_user),
    cfg: Settings = Depends(get_settings),
):
    exam = assert_exam_owned_by_doctor(db, exam_id, req_user.profile.id)
    pdf_bytes, _filename = _render_exam_pdf(db, exam, cfg)

    pdf_url, upload_error = upload_report_pdf(pdf_bytes=pdf_bytes, exam_id=exam.id, settings=cfg)
    if upload_error is not None or pdf_url is None:
        raise HTTPException(status_code=502, detail="Report PDF upload failed")

    update_error = update_report_pdf_url(db, exam_id=exam.id, pdf_url=pdf_url)
    if update_error is not None:
        raise HTTPException(status_code=500, detail="Could not record report PDF URL")

    write_audit_log(
        db,
        user_id=req_user.db_user.id,
        action="REPORT_PDF_STORED",
        resource_type="exam",
        resource_id=exam.id,
        metadata={"storage_mode": cfg.resolved_storage_mode},
    )
    db.commit()
    logger.info("report_pdf_stored", exam_id=exam.id, storage_mode=cfg.resolved_storage_mode)
    return ReportPdfUploadRead(exam_id=exam.id, pdf_url=pdf_url)
