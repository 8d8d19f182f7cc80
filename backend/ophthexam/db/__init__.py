from ophthexam.db.models import (
    AiAnalysis,
    AiFeedback,
    AuditLog,
    AuthSession,
    Exam,
    ExamImage,
    Patient,
    Profile,
    Report,
    User,
    UserRole,
)

__all__ = [
    "User",
    "AuthSession",
    "Profile",
    "UserRole",
    "Patient",
    "Exam",
    "ExamImage",
    "AiAnalysis",
    "Report",
    "AiFeedback",
    "AuditLog",
]
