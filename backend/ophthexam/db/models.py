from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ophthexam.core.enums import ExamStatus, ProfileStatus, Specialty
from ophthexam.db.base import Base, TimestampMixin, UpdatedAtMixin, UUIDPrimaryKeyMixin, utcnow


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    auth_sessions = relationship("AuthSession", back_populates="user")
    profile = relationship("Profile", back_populates="user", uselist=False)
    roles = relationship("UserRole", back_populates="user")


class AuthSession(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "auth_sessions"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    session_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ip_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    user_agent_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    user = relationship("User", back_populates="auth_sessions")

    __table_args__ = (
        Index("ix_auth_sessions_user_id", "user_id"),
        Index("ix_auth_sessions_session_expires_at", "session_expires_at"),
    )


class Profile(Base, UUIDPrimaryKeyMixin, TimestampMixin, UpdatedAtMixin):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    crm: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    crm_uf: Mapped[str] = mapped_column(String(2), default="", nullable=False)
    specialty: Mapped[str] = mapped_column(String(32), default=Specialty.OFTALMOLOGIA.value, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ProfileStatus.PENDING.value, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    clinic_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    clinic_address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    clinic_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    clinic_cnpj: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    clinic_logo_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    signature_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    include_logo_in_pdf: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    include_signature_in_pdf: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user = relationship("User", back_populates="profile")


class UserRole(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)

    user = relationship("User", back_populates="roles")

    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_id_role"),)


class Patient(Base, UUIDPrimaryKeyMixin, TimestampMixin, UpdatedAtMixin):
    __tablename__ = "patients"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    record_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(ForeignKey("profiles.id"), nullable=True)

    exams = relationship("Exam", back_populates="patient")


class Exam(Base, UUIDPrimaryKeyMixin, TimestampMixin, UpdatedAtMixin):
    __tablename__ = "exams"

    patient_id: Mapped[str] = mapped_column(ForeignKey("patients.id"), nullable=False)
    doctor_id: Mapped[Optional[str]] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    exam_type: Mapped[str] = mapped_column(String(32), nullable=False)
    eye: Mapped[str] = mapped_column(String(8), nullable=False)
    exam_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ExamStatus.PENDING.value, nullable=False)
    equipment: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    clinical_indication: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    patient = relationship("Patient", back_populates="exams")
    doctor = relationship("Profile")
    images = relationship("ExamImage", back_populates="exam", order_by="ExamImage.sequence")
    analyses = relationship("AiAnalysis", back_populates="exam", order_by="AiAnalysis.analyzed_at.desc()")
    report = relationship("Report", back_populates="exam", uselist=False)

    __table_args__ = (
        Index("ix_exams_doctor_id", "doctor_id"),
        Index("ix_exams_status_updated_at", "status", "updated_at"),
    )


class ExamImage(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "exam_images"

    exam_id: Mapped[str] = mapped_column(ForeignKey("exams.id"), nullable=False)
    eye: Mapped[str] = mapped_column(String(8), nullable=False)
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    exam = relationship("Exam", back_populates="images")


class AiAnalysis(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "ai_analysis"

    exam_id: Mapped[str] = mapped_column(ForeignKey("exams.id"), nullable=False)
    quality_score: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    findings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    biomarkers: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    measurements: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    diagnosis: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    recommendations: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    risk_classification: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    raw_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    exam = relationship("Exam", back_populates="analyses")


class Report(Base, UUIDPrimaryKeyMixin, TimestampMixin, UpdatedAtMixin):
    __tablename__ = "reports"

    exam_id: Mapped[str] = mapped_column(ForeignKey("exams.id"), unique=True, nullable=False)
    ai_analysis_id: Mapped[Optional[str]] = mapped_column(ForeignKey("ai_analysis.id"), nullable=True)
    doctor_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_diagnosis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(ForeignKey("profiles.id"), nullable=True)

    pdf_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    share_token: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    share_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    exam = relationship("Exam", back_populates="report")
    approver = relationship("Profile")


class AiFeedback(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "ai_feedback"

    exam_id: Mapped[str] = mapped_column(ForeignKey("exams.id"), nullable=False)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    ai_analysis_id: Mapped[Optional[str]] = mapped_column(ForeignKey("ai_analysis.id"), nullable=True)

    overall_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    accuracy_rating: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    quality_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_correct: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    diagnosis_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    diagnosis_added: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    diagnosis_removed: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    diagnosis_correct: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    general_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    teaching_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_reference_case: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    case_difficulty: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    pathology_tags: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("exam_id", "doctor_id", name="uq_ai_feedback_exam_id_doctor_id"),
        Index("ix_ai_feedback_doctor_id", "doctor_id"),
    )


class AuditLog(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "audit_logs"

    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
