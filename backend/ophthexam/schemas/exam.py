from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ophthexam.core.enums import ExamStatus, ExamType, EyeType


class ExamCreate(BaseModel):
    patient_id: str
    exam_type: ExamType
    eye: EyeType
    exam_date: datetime | None = None
    equipment: str | None = Field(default=None, max_length=255)
    clinical_indication: str | None = Field(default=None, max_length=4000)


class ExamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str | None
    exam_type: ExamType
    eye: EyeType
    exam_date: datetime
    status: ExamStatus
    equipment: str | None
    clinical_indication: str | None
    created_at: datetime
    updated_at: datetime
