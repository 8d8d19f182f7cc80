from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ophthexam.core.enums import AccuracyRating


class FeedbackFields(BaseModel):
    ai_analysis_id: str | None = None
    overall_rating: int | None = Field(default=None, ge=1, le=5)
    accuracy_rating: AccuracyRating | None = None
    quality_feedback: str | None = Field(default=None, max_length=4000)
    quality_correct: str | None = Field(default=None, max_length=64)
    diagnosis_feedback: str | None = Field(default=None, max_length=4000)
    diagnosis_added: list[str] | None = None
    diagnosis_removed: list[str] | None = None
    diagnosis_correct: list[str] | None = None
    general_comments: str | None = Field(default=None, max_length=4000)
    teaching_notes: str | None = Field(default=None, max_length=4000)
    is_reference_case: bool | None = None
    case_difficulty: str | None = Field(default=None, max_length=32)
    pathology_tags: list[str] | None = None


class FeedbackCreate(FeedbackFields):
    exam_id: str = Field(min_length=1)


class FeedbackUpdate(FeedbackFields):
    pass


class FeedbackRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    exam_id: str
    doctor_id: str
    ai_analysis_id: str | None
    overall_rating: int | None
    accuracy_rating: str | None
    quality_feedback: str | None
    quality_correct: str | None
    diagnosis_feedback: str | None
    diagnosis_added: list[str] | None
    diagnosis_removed: list[str] | None
    diagnosis_correct: list[str] | None
    general_comments: str | None
    teaching_notes: str | None
    is_reference_case: bool
    case_difficulty: str | None
    pathology_tags: list[str] | None
    created_at: datetime
    updated_at: datetime | None


class FeedbackMutationResponse(BaseModel):
    ok: bool
    message: str
    feedback: FeedbackRead | None = None


class PendingCountRead(BaseModel):
    count: int


class FeedbackStatsRead(BaseModel):
    total_feedbacks: int
    avg_rating: float
    correct_rate: float
    partial_rate: float
    incorrect_rate: float
    reference_cases_count: int


class ExamTypeAccuracyRead(BaseModel):
    exam_type: str
    correct: int
    partial: int
    incorrect: int
    total: int
    correct_rate: float


class DiagnosisAccuracyRead(BaseModel):
    diagnosis: str
    correct_count: int
    removed_count: int
    accuracy: float


class MissedDiagnosis(BaseModel):
    diagnosis: str
    miss_count: int


class AddedDiagnosis(BaseModel):
    diagnosis: str
    add_count: int


class TagCount(BaseModel):
    tag: str
    count: int


class LearningInsightsRead(BaseModel):
    most_missed_diagnoses: list[MissedDiagnosis]
    most_added_diagnoses: list[AddedDiagnosis]
    quality_disagreement_rate: float
    difficulty_distribution: dict[str, int]
    top_pathology_tags: list[TagCount]


class WarningCount(BaseModel):
    field: str
    count: int


class ValidationTrendPoint(BaseModel):
    date: str
    success_rate: float


class ValidationMetricsRead(BaseModel):
    total_validations: int
    success_rate: float
    common_warnings: list[WarningCount]
    validation_trend: list[ValidationTrendPoint]


class SuggestionsRead(BaseModel):
    suggestions: list[str]
