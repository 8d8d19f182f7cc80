from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ophthexam.core.enums import ExamStatus
from ophthexam.db.base import utcnow
from ophthexam.db.models import Exam

logger = structlog.get_logger(__name__)


@dataclass
class ReclaimResult:
    cleaned_count: int = 0
    exam_ids: list[str] = field(default_factory=list)


def reclaim_stuck_exams(db: Session, *, threshold_minutes: int, commit: bool = True) -> ReclaimResult:
    """Reset exams stuck in ``analyzing`` for longer than the threshold back to ``pending``.

    Selection (row-locked where the database supports it) and update run in
    one transaction.
    """
    cutoff = utcnow() - timedelta(minutes=threshold_minutes)
    logger.info("stuck_exam_reclaim_started", threshold_minutes=threshold_minutes)

    try:
        stuck_ids = list(
            db.scalars(
                select(Exam.id)
                .where(Exam.status == ExamStatus.ANALYZING.value, Exam.updated_at < cutoff)
                .order_by(Exam.updated_at.asc())
                .with_for_update()
            ).all()
        )
        reclaimed: list[str] = []
        if stuck_ids:
            # Rows that left ``analyzing`` since the select are not touched or reported.
            updated = set(
                db.scalars(
                    update(Exam)
                    .where(Exam.id.in_(stuck_ids), Exam.status == ExamStatus.ANALYZING.value)
                    .values(status=ExamStatus.PENDING.value, updated_at=utcnow())
                    .returning(Exam.id),
                    execution_options={"synchronize_session": False},
                ).all()
            )
            reclaimed = [exam_id for exam_id in stuck_ids if exam_id in updated]
        if commit:
            db.commit()
    except Exception:
        db.rollback()
        raise

    if reclaimed:
        logger.info("stuck_exams_reclaimed", cleaned_count=len(reclaimed), exam_ids=reclaimed)
    else:
        logger.info("stuck_exams_none_found")
    return ReclaimResult(cleaned_count=len(reclaimed), exam_ids=reclaimed)
