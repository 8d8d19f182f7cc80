"""initial schema"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_col() -> sa.Column:
    return sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True)


def _fk(column: str, table: str, *, nullable: bool) -> sa.Column:
    return sa.Column(column, sa.Uuid(as_uuid=False), sa.ForeignKey(f"{table}.id"), nullable=nullable)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid_col(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        _created_at(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "auth_sessions",
        _uuid_col(),
        _fk("user_id", "users", nullable=False),
        sa.Column("session_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_hash", sa.String(length=128), nullable=True),
        sa.Column("user_agent_hash", sa.String(length=128), nullable=True),
        _created_at(),
    )
    op.create_index("ix_auth_sessions_user_id", "auth_sessions", ["user_id"])
    op.create_index("ix_auth_sessions_session_expires_at", "auth_sessions", ["session_expires_at"])

    op.create_table(
        "profiles",
        _uuid_col(),
        _fk("user_id", "users", nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("crm", sa.String(length=32), nullable=False),
        sa.Column("crm_uf", sa.String(length=2), nullable=False),
        sa.Column("specialty", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("clinic_name", sa.String(length=255), nullable=True),
        sa.Column("clinic_address", sa.String(length=512), nullable=True),
        sa.Column("clinic_phone", sa.String(length=32), nullable=True),
        sa.Column("clinic_cnpj", sa.String(length=32), nullable=True),
        sa.Column("clinic_logo_url", sa.String(length=1024), nullable=True),
        sa.Column("signature_url", sa.String(length=1024), nullable=True),
        sa.Column("include_logo_in_pdf", sa.Boolean(), nullable=False),
        sa.Column("include_signature_in_pdf", sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("user_id", name="uq_profiles_user_id"),
    )

    op.create_table(
        "user_roles",
        _uuid_col(),
        _fk("user_id", "users", nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_id_role"),
    )

    op.create_table(
        "patients",
        _uuid_col(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(length=8), nullable=True),
        sa.Column("record_number", sa.String(length=64), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _fk("created_by", "profiles", nullable=True),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "exams",
        _uuid_col(),
        _fk("patient_id", "patients", nullable=False),
        _fk("doctor_id", "profiles", nullable=True),
        sa.Column("exam_type", sa.String(length=32), nullable=False),
        sa.Column("eye", sa.String(length=8), nullable=False),
        sa.Column("exam_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("equipment", sa.String(length=255), nullable=True),
        sa.Column("clinical_indication", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_exams_doctor_id", "exams", ["doctor_id"])
    op.create_index("ix_exams_status_updated_at", "exams", ["status", "updated_at"])

    op.create_table(
        "exam_images",
        _uuid_col(),
        _fk("exam_id", "exams", nullable=False),
        sa.Column("eye", sa.String(length=8), nullable=False),
        sa.Column("image_url", sa.String(length=1024), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "ai_analysis",
        _uuid_col(),
        _fk("exam_id", "exams", nullable=False),
        sa.Column("quality_score", sa.String(length=64), nullable=True),
        sa.Column("findings", sa.JSON(), nullable=True),
        sa.Column("biomarkers", sa.JSON(), nullable=True),
        sa.Column("measurements", sa.JSON(), nullable=True),
        sa.Column("diagnosis", sa.JSON(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=True),
        sa.Column("risk_classification", sa.String(length=64), nullable=True),
        sa.Column("model_used", sa.String(length=128), nullable=True),
        sa.Column("raw_response", sa.JSON(), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "reports",
        _uuid_col(),
        _fk("exam_id", "exams", nullable=False),
        _fk("ai_analysis_id", "ai_analysis", nullable=True),
        sa.Column("doctor_notes", sa.Text(), nullable=True),
        sa.Column("final_diagnosis", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _fk("approved_by", "profiles", nullable=True),
        sa.Column("pdf_url", sa.Text(), nullable=True),
        sa.Column("share_token", sa.String(length=128), nullable=True),
        sa.Column("share_expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("exam_id", name="uq_reports_exam_id"),
        sa.UniqueConstraint("share_token", name="uq_reports_share_token"),
    )

    op.create_table(
        "ai_feedback",
        _uuid_col(),
        _fk("exam_id", "exams", nullable=False),
        _fk("doctor_id", "profiles", nullable=False),
        _fk("ai_analysis_id", "ai_analysis", nullable=True),
        sa.Column("overall_rating", sa.Integer(), nullable=True),
        sa.Column("accuracy_rating", sa.String(length=32), nullable=True),
        sa.Column("quality_feedback", sa.Text(), nullable=True),
        sa.Column("quality_correct", sa.String(length=64), nullable=True),
        sa.Column("diagnosis_feedback", sa.Text(), nullable=True),
        sa.Column("diagnosis_added", sa.JSON(), nullable=True),
        sa.Column("diagnosis_removed", sa.JSON(), nullable=True),
        sa.Column("diagnosis_correct", sa.JSON(), nullable=True),
        sa.Column("general_comments", sa.Text(), nullable=True),
        sa.Column("teaching_notes", sa.Text(), nullable=True),
        sa.Column("is_reference_case", sa.Boolean(), nullable=False),
        sa.Column("case_difficulty", sa.String(length=32), nullable=True),
        sa.Column("pathology_tags", sa.JSON(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("exam_id", "doctor_id", name="uq_ai_feedback_exam_id_doctor_id"),
    )
    op.create_index("ix_ai_feedback_doctor_id", "ai_feedback", ["doctor_id"])

    op.create_table(
        "audit_logs",
        _uuid_col(),
        _fk("user_id", "users", nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("resource_type", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=128), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ix_ai_feedback_doctor_id", table_name="ai_feedback")
    op.drop_table("ai_feedback")
    op.drop_table("reports")
    op.drop_table("ai_analysis")
    op.drop_table("exam_images")
    op.drop_index("ix_exams_status_updated_at", table_name="exams")
    op.drop_index("ix_exams_doctor_id", table_name="exams")
    op.drop_table("exams")
    op.drop_table("patients")
    op.drop_table("user_roles")
    op.drop_table("profiles")
    op.drop_index("ix_auth_sessions_session_expires_at", table_name="auth_sessions")
    op.drop_index("ix_auth_sessions_user_id", table_name="auth_sessions")
    op.drop_table("auth_sessions")
    op.drop_table("users")
