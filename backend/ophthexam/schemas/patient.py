from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PatientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    birth_date: date | None = None
    gender: Literal["M", "F"] | None = None
    record_number: str | None = Field(default=None, max_length=64)
    phone: str | None = Field(default=None, max_length=32)
    notes: str | None = Field(default=None, max_length=2000)


class PatientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    birth_date: date | None
    gender: str | None
    record_number: str | None
    phone: str | None
    notes: str | None
    created_at: datetime
