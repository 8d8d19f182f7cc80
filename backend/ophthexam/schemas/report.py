from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ReportExam(BaseModel):
    id: str
    exam_type: str
    eye: str
    exam_date: datetime | date
    equipment: str | None = None
    clinical_indication: str | None = None
    status: str


class ReportPatient(BaseModel):
    name: str
    birth_date: date | None = None
    record_number: str | None = None
    gender: str | None = None


class ReportAnalysis(BaseModel):
    quality_score: str | None = None
    findings: Any = None
    biomarkers: Any = None
    measurements: dict[str, Any] | None = None
    diagnosis: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    risk_classification: str | None = None


class ReportProfile(BaseModel):
    full_name: str
    crm: str = ""
    crm_uf: str = ""
    clinic_name: str | None = None
    clinic_address: str | None = None
    clinic_phone: str | None = None
    clinic_cnpj: str | None = None
    clinic_logo_url: str | None = None
    signature_url: str | None = None
    include_logo_in_pdf: bool = False
    include_signature_in_pdf: bool = False


class ReportData(BaseModel):
    exam: ReportExam
    patient: ReportPatient
    analysis: ReportAnalysis | None = None
    doctor_notes: str | None = None
    profile: ReportProfile
    image_url: str | None = None
    approved_at: datetime | None = None


class ReportPdfUploadRead(BaseModel):
    exam_id: str
    pdf_url: str


class SharedReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    patient: dict[str, Any]
    exam: dict[str, Any]
    analysis: dict[str, Any] | None
    doctor: dict[str, Any] | None
    report: dict[str, Any]
    image_url: str | None
