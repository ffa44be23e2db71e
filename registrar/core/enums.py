from enum import Enum
from typing import Optional


class AcademicType(str, Enum):
    HIGHER_EDUCATION = "HIGHER_EDUCATION"
    SECONDARY = "SECONDARY"


class YearStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class PeriodStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class PeriodKind(str, Enum):
    SEMESTER = "SEMESTER"
    TRIMESTER = "TRIMESTER"


class EvaluationKind(str, Enum):
    REGULAR = "REGULAR"
    FINAL_EXAM = "FINAL_EXAM"
    REMEDIAL_EXAM = "REMEDIAL_EXAM"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    TRANSFERRED = "TRANSFERRED"


class FinalStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    PENDING = "PENDING"


# Highest ordinal per sub-period kind
MAX_ORDINAL = {
    PeriodKind.SEMESTER: 2,
    PeriodKind.TRIMESTER: 3,
}

ADMIN_ROLES = ("ADMIN", "SUPER_ADMIN")


def normalize_academic_type(value: Optional[str]) -> Optional[AcademicType]:
    """Map the tenant's stored academic type to the enum; None means unknown."""
    if not value:
        return None
    v = value.strip().upper().replace("-", "_").replace(" ", "_")
    if v in ("HIGHER_EDUCATION", "HIGHER", "SUPERIOR", "UNIVERSITY"):
        return AcademicType.HIGHER_EDUCATION
    if v in ("SECONDARY", "SECUNDARIO", "SCHOOL"):
        return AcademicType.SECONDARY
    return None


def period_kind_for(academic_type: Optional[AcademicType]) -> Optional[PeriodKind]:
    """Sub-period kind used by an institution; None when the type is unknown."""
    if academic_type == AcademicType.HIGHER_EDUCATION:
        return PeriodKind.SEMESTER
    if academic_type == AcademicType.SECONDARY:
        return PeriodKind.TRIMESTER
    return None
