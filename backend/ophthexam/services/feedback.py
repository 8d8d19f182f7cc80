from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.exc import MultipleResultsFound, SQLAlchemyError
from sqlalchemy.orm import Session

from ophthexam.core.enums import AccuracyRating, ExamStatus
from ophthexam.db.base import utcnow
from ophthexam.db.models import AiAnalysis, AiFeedback, Exam

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SUBMIT_OK = "Feedback enviado com sucesso!"
SUBMIT_FAILED = "Erro ao enviar feedback"
UPDATE_OK = "Feedback atualizado!"
UPDATE_FAILED = "Erro ao atualizar feedback"
DELETE_OK = "Feedback removido"
DELETE_FAILED = "Erro ao remover feedback"

# Analysis checks prefix each warning with the offending field in brackets.
WARNING_FIELD_RE = re.compile(r"\[([^\]]+)\]")

# Columns a doctor may set; identity columns are fixed at insert time.
EDITABLE_FIELDS = frozenset(
    {
        "ai_analysis_id",
        "overall_rating",
        "accuracy_rating",
        "quality_feedback",
        "quality_correct",
        "diagnosis_feedback",
        "diagnosis_added",
        "diagnosis_removed",
        "diagnosis_correct",
        "general_comments",
        "teaching_notes",
        "is_reference_case",
        "case_difficulty",
        "pathology_tags",
    }
)


@dataclass
class StoreResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: str | None = None
    message: str | None = None


def fetch_feedback(db: Session, *, exam_id: str, doctor_id: str) -> StoreResult[AiFeedback]:
    try:
        row = db.scalars(
            select(AiFeedback).where(AiFeedback.exam_id == exam_id, AiFeedback.doctor_id == doctor_id)
        ).one_or_none()
    except MultipleResultsFound:
        logger.error("feedback_duplicate_rows", exam_id=exam_id, doctor_id=doctor_id)
        return StoreResult(ok=False, error="Multiple feedback rows for exam and doctor")
    except SQLAlchemyError as exc:
        logger.error("feedback_fetch_failed", exam_id=exam_id, doctor_id=doctor_id, error=str(exc))
        return StoreResult(ok=False, error=str(exc))
    return StoreResult(ok=True, value=row)


def submit_feedback(db: Session, *, exam_id: str, doctor_id: str, data: dict[str, Any]) -> StoreResult[AiFeedback]:
    values = {key: value for key, value in data.items() if key in EDITABLE_FIELDS}
    try:
        db.add(AiFeedback(exam_id=exam_id, doctor_id=doctor_id, **values))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("feedback_insert_failed", exam_id=exam_id, doctor_id=doctor_id, error=str(exc))
        return StoreResult(ok=False, error=str(exc), message=SUBMIT_FAILED)

    refreshed = fetch_feedback(db, exam_id=exam_id, doctor_id=doctor_id)
    logger.info("feedback_submitted", exam_id=exam_id, doctor_id=doctor_id)
    return StoreResult(ok=True, value=refreshed.value, message=SUBMIT_OK)


def update_feedback(db: Session, *, feedback: AiFeedback, changes: dict[str, Any]) -> StoreResult[AiFeedback]:
    try:
        for key, value in changes.items():
            if key in EDITABLE_FIELDS:
                setattr(feedback, key, value)
        feedback.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("feedback_update_failed", feedback_id=feedback.id, error=str(exc))
        return StoreResult(ok=False, error=str(exc), message=UPDATE_FAILED)
    return StoreResult(ok=True, value=feedback, message=UPDATE_OK)


def delete_feedback(db: Session, *, feedback: AiFeedback) -> StoreResult[None]:
    feedback_id = feedback.id
    try:
        db.delete(feedback)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("feedback_delete_failed", feedback_id=feedback_id, error=str(exc))
        return StoreResult(ok=False, error=str(exc), message=DELETE_FAILED)
    return StoreResult(ok=True, message=DELETE_OK)


def count_exams_without_feedback(db: Session, *, doctor_id: str) -> StoreResult[int]:
    """Completed, analysed exams of the doctor that the doctor has not rated yet."""
    has_analysis = exists().where(AiAnalysis.exam_id == Exam.id)
    has_feedback = exists().where(AiFeedback.exam_id == Exam.id, AiFeedback.doctor_id == doctor_id)
    try:
        count = db.scalar(
            select(func.count(Exam.id)).where(
                Exam.doctor_id == doctor_id,
                Exam.status == ExamStatus.COMPLETED.value,
                has_analysis,
                ~has_feedback,
            )
        )
    except SQLAlchemyError as exc:
        logger.error("feedback_pending_count_failed", doctor_id=doctor_id, error=str(exc))
        return StoreResult(ok=False, value=0, error=str(exc))
    return StoreResult(ok=True, value=int(count or 0))


def feedback_stats(db: Session) -> dict[str, float | int]:
    rows = db.execute(
        select(AiFeedback.overall_rating, AiFeedback.accuracy_rating, AiFeedback.is_reference_case)
    ).all()
    total = len(rows)
    if total == 0:
        return {
            "total_feedbacks": 0,
            "avg_rating": 0.0,
            "correct_rate": 0.0,
            "partial_rate": 0.0,
            "incorrect_rate": 0.0,
            "reference_cases_count": 0,
        }

    ratings = [row.overall_rating for row in rows if row.overall_rating is not None]
    accuracy = [row.accuracy_rating for row in rows]
    return {
        "total_feedbacks": total,
        "avg_rating": sum(ratings) / len(ratings) if ratings else 0.0,
        "correct_rate": accuracy.count(AccuracyRating.CORRECT.value) / total * 100,
        "partial_rate": accuracy.count(AccuracyRating.PARTIALLY_CORRECT.value) / total * 100,
        "incorrect_rate": accuracy.count(AccuracyRating.INCORRECT.value) / total * 100,
        "reference_cases_count": sum(1 for row in rows if row.is_reference_case),
    }


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _tally(rows, column: str) -> Counter:
    counts: Counter = Counter()
    for row in rows:
        counts.update(getattr(row, column) or [])
    return counts


def accuracy_by_exam_type(db: Session) -> list[dict[str, Any]]:
    rows = db.execute(
        select(Exam.exam_type, AiFeedback.accuracy_rating).join(Exam, Exam.id == AiFeedback.exam_id)
    ).all()

    per_type: dict[str, Counter] = {}
    for row in rows:
        per_type.setdefault(row.exam_type, Counter())[row.accuracy_rating] += 1

    out = []
    for exam_type, counts in per_type.items():
        correct = counts[AccuracyRating.CORRECT.value]
        partial = counts[AccuracyRating.PARTIALLY_CORRECT.value]
        incorrect = counts[AccuracyRating.INCORRECT.value]
        total = correct + partial + incorrect
        out.append(
            {
                "exam_type": exam_type,
                "correct": correct,
                "partial": partial,
                "incorrect": incorrect,
                "total": total,
                "correct_rate": _rate(correct, total),
            }
        )
    return out


def diagnosis_accuracy(db: Session) -> list[dict[str, Any]]:
    """Per diagnosis, how often doctors confirmed it versus removed it."""
    rows = db.execute(select(AiFeedback.diagnosis_correct, AiFeedback.diagnosis_removed)).all()
    confirmed = _tally(rows, "diagnosis_correct")
    removed = _tally(rows, "diagnosis_removed")

    out = []
    for diagnosis in dict.fromkeys([*confirmed, *removed]):
        total = confirmed[diagnosis] + removed[diagnosis]
        out.append(
            {
                "diagnosis": diagnosis,
                "correct_count": confirmed[diagnosis],
                "removed_count": removed[diagnosis],
                "accuracy": _rate(confirmed[diagnosis], total),
            }
        )
    out.sort(key=lambda item: item["correct_count"] + item["removed_count"], reverse=True)
    return out


def learning_insights(db: Session) -> dict[str, Any]:
    rows = db.execute(
        select(
            AiFeedback.diagnosis_removed,
            AiFeedback.diagnosis_added,
            AiFeedback.quality_feedback,
            AiFeedback.case_difficulty,
            AiFeedback.pathology_tags,
        )
    ).all()

    quality_votes = [row.quality_feedback for row in rows if row.quality_feedback is not None]
    difficulty = Counter(row.case_difficulty for row in rows if row.case_difficulty)
    return {
        "most_missed_diagnoses": [
            {"diagnosis": name, "miss_count": count}
            for name, count in _tally(rows, "diagnosis_removed").most_common(10)
        ],
        "most_added_diagnoses": [
            {"diagnosis": name, "add_count": count}
            for name, count in _tally(rows, "diagnosis_added").most_common(10)
        ],
        "quality_disagreement_rate": _rate(quality_votes.count("disagree"), len(quality_votes)),
        "difficulty_distribution": dict(difficulty),
        "top_pathology_tags": [
            {"tag": tag, "count": count} for tag, count in _tally(rows, "pathology_tags").most_common(15)
        ],
    }


def validation_metrics(db: Session, *, limit: int = 500) -> dict[str, Any]:
    """Success rate of the analysis output checks stored under ``raw_response._validation``."""
    rows = db.execute(
        select(AiAnalysis.raw_response, AiAnalysis.analyzed_at)
        .order_by(AiAnalysis.analyzed_at.desc())
        .limit(limit)
    ).all()

    total = valid = 0
    warnings: Counter = Counter()
    daily: dict[str, list[int]] = {}
    for row in rows:
        validation = (row.raw_response or {}).get("_validation")
        if not isinstance(validation, dict):
            continue
        total += 1
        is_valid = bool(validation.get("isValid"))
        valid += is_valid
        for warning in validation.get("warnings") or []:
            match = WARNING_FIELD_RE.search(str(warning))
            warnings[match.group(1) if match else "unknown"] += 1
        day = daily.setdefault(row.analyzed_at.date().isoformat(), [0, 0])
        day[0] += is_valid
        day[1] += 1

    return {
        "total_validations": total,
        "success_rate": _rate(valid, total),
        "common_warnings": [{"field": field, "count": count} for field, count in warnings.most_common(10)],
        "validation_trend": [
            {"date": day, "success_rate": _rate(ok, seen)} for day, (ok, seen) in sorted(daily.items())
        ][-30:],
    }


def improvement_suggestions(db: Session) -> list[str]:
    insights = learning_insights(db)
    stats = feedback_stats(db)
    suggestions = []

    for item in insights["most_missed_diagnoses"][:3]:
        if item["miss_count"] >= 3:
            suggestions.append(
                f'Melhorar detecção de "{item["diagnosis"]}" - removido {item["miss_count"]} vezes pelos médicos'
            )
    for item in insights["most_added_diagnoses"][:3]:
        if item["add_count"] >= 3:
            suggestions.append(
                f'IA não detectou "{item["diagnosis"]}" em {item["add_count"]} casos'
                " - considerar ajuste de sensibilidade"
            )
    if insights["quality_disagreement_rate"] > 20:
        suggestions.append(
            f"Taxa de discordância de qualidade: {insights['quality_disagreement_rate']:.1f}%"
            " - revisar critérios de avaliação de qualidade"
        )
    # An empty table has no accuracy signal yet.
    if stats["total_feedbacks"] and stats["correct_rate"] < 70:
        suggestions.append(
            f"Taxa de acerto geral: {stats['correct_rate']:.1f}% - considerar retreinamento do modelo"
        )
    if stats["partial_rate"] > 30:
        suggestions.append(
            f"{stats['partial_rate']:.1f}% das análises são parcialmente corretas - refinar detalhes das detecções"
        )
    return suggestions
