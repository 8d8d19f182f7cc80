from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ophthexam.db.base import utcnow
from ophthexam.db.models import Exam, Report
from ophthexam.services.auth_session import ensure_utc

logger = structlog.get_logger(__name__)

SHARE_PATH = "/laudo"


@dataclass(frozen=True)
class ShareLink:
    share_url: str
    expires_at: datetime
    token: str


class SharedReportNotFound(LookupError):
    pass


class SharedReportExpired(LookupError):
    pass


def generate_share_token(length: int = 32) -> str:
    """Hex token of exactly ``length`` characters, every character random."""
    if length <= 0:
        raise ValueError("length must be positive")
    return secrets.token_hex((length + 1) // 2)[:length]


def compute_share_expiry(expires_in_hours: float, *, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=expires_in_hours)


def build_share_url(origin: str, token: str) -> str:
    return f"{origin.rstrip('/')}{SHARE_PATH}/{token}"


def issue_share_token(
    db: Session,
    *,
    exam_id: str,
    expires_in_hours: float,
    origin: str,
    token_length: int = 32,
) -> ShareLink:
    """Store a fresh share token on the exam's report, creating the report if needed.

    Database errors propagate to the caller after the session is rolled back.
    """
    token = generate_share_token(token_length)
    expires_at = compute_share_expiry(expires_in_hours)
    logger.info("share_token_requested", exam_id=exam_id, expires_in_hours=expires_in_hours)

    try:
        report = db.scalar(select(Report).where(Report.exam_id == exam_id))
        if report is not None:
            logger.info("share_token_update_report", report_id=report.id)
            report.share_token = token
            report.share_expires_at = expires_at
        else:
            logger.info("share_token_create_report", exam_id=exam_id)
            db.add(Report(exam_id=exam_id, share_token=token, share_expires_at=expires_at))
        db.commit()
    except Exception:
        db.rollback()
        raise

    link = ShareLink(share_url=build_share_url(origin, token), expires_at=expires_at, token=token)
    logger.info("share_token_issued", exam_id=exam_id, expires_at=expires_at.isoformat())
    return link


def resolve_shared_report(db: Session, token: str, *, now: datetime | None = None) -> Report:
    report = db.scalar(
        select(Report)
        .where(Report.share_token == token)
        .options(
            selectinload(Report.exam).selectinload(Exam.patient),
            selectinload(Report.exam).selectinload(Exam.images),
            selectinload(Report.exam).selectinload(Exam.analyses),
            selectinload(Report.approver),
        )
    )
    if report is None:
        raise SharedReportNotFound(token)
    if report.share_expires_at is not None and ensure_utc(report.share_expires_at) < (now or utcnow()):
        raise SharedReportExpired(token)
    return report
