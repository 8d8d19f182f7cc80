from enum import Enum


class ExamStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExamType(str, Enum):
    OCT_MACULAR = "oct_macular"
    OCT_NERVE = "oct_nerve"
    RETINOGRAPHY = "retinography"


class EyeType(str, Enum):
    OD = "od"
    OE = "oe"
    BOTH = "both"


class ProfileStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class AppRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"


class Specialty(str, Enum):
    OFTALMOLOGIA = "oftalmologia"
    RETINA = "retina"
    GLAUCOMA = "glaucoma"


class AccuracyRating(str, Enum):
    CORRECT = "correct"
    PARTIALLY_CORRECT = "partially_correct"
    INCORRECT = "incorrect"
