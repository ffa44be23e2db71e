from registrar.core.models.academic_year import AcademicYear
from registrar.core.models.audit_log import AuditLog
from registrar.core.models.class_model import SchoolClass
from registrar.core.models.enrollment import AnnualEnrollment
from registrar.core.models.evaluation import Evaluation, Grade
from registrar.core.models.historical_record import HistoricalRecord
from registrar.core.models.lesson import AttendanceRecord, Lesson
from registrar.core.models.sub_period import SubPeriod
from registrar.core.models.teaching_plan import TeachingPlan
from registrar.core.models.tenant import Tenant

__all__ = [
    "AcademicYear",
    "AnnualEnrollment",
    "AttendanceRecord",
    "AuditLog",
    "Evaluation",
    "Grade",
    "HistoricalRecord",
    "Lesson",
    "SchoolClass",
    "SubPeriod",
    "TeachingPlan",
    "Tenant",
]
