"""Year-end figures gathered just before closure. Each count runs in its own session, concurrently."""

import asyncio
from dataclasses import asdict, dataclass
from typing import Dict

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.sql import Select

from registrar.api.v1.enrollments.lookup import year_enrollment_clause
from registrar.core.enums import EnrollmentStatus
from registrar.core.models import (
    AcademicYear,
    AnnualEnrollment,
    AttendanceRecord,
    Evaluation,
    Grade,
    Lesson,
    TeachingPlan,
)


@dataclass
class YearStatistics:
    classes: int = 0
    active_students: int = 0
    evaluations: int = 0
    grades: int = 0
    lessons: int = 0
    attendance_records: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _statements(year: AcademicYear) -> Dict[str, Select]:
    in_year = TeachingPlan.academic_year_id == year.id
    return {
        "classes": select(func.count(distinct(TeachingPlan.class_id))).where(
            in_year, TeachingPlan.class_id.is_not(None)
        ),
        "active_students": select(func.count(distinct(AnnualEnrollment.student_id))).where(
            AnnualEnrollment.tenant_id == year.tenant_id,
            year_enrollment_clause(year),
            AnnualEnrollment.status == EnrollmentStatus.ACTIVE.value,
        ),
        "evaluations": select(func.count(Evaluation.id))
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(in_year),
        "grades": select(func.count(Grade.id))
        .join(Evaluation, Grade.evaluation_id == Evaluation.id)
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(in_year),
        "lessons": select(func.count(Lesson.id))
        .join(TeachingPlan, Lesson.teaching_plan_id == TeachingPlan.id)
        .where(in_year),
        "attendance_records": select(func.count(AttendanceRecord.id))
        .join(Lesson, AttendanceRecord.lesson_id == Lesson.id)
        .join(TeachingPlan, Lesson.teaching_plan_id == TeachingPlan.id)
        .where(in_year),
    }


async def collect_year_statistics(session_factory: async_sessionmaker, year: AcademicYear) -> YearStatistics:
    async def _count(stmt: Select) -> int:
        async with session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one() or 0)

    statements = _statements(year)
    counts = await asyncio.gather(*(_count(stmt) for stmt in statements.values()))
    return YearStatistics(**dict(zip(statements.keys(), counts)))
