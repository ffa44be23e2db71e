"""
The single place that knows how annual enrollments are linked to an academic year.

Rows created before academic_year_id existed carry only the numeric year, and some
migrated rows point at the wrong year id while the number is right, so a year's
enrollments are matched on either column.
"""

from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from registrar.core.enums import EnrollmentStatus
from registrar.core.models import AcademicYear, AnnualEnrollment


@dataclass(frozen=True)
class EnrollmentRef:
    """Detached copy of the enrollment columns the closure engine reads."""

    id: UUID
    student_id: UUID
    class_id: Optional[UUID]
    level_label: Optional[str]
    status: str
    final_status: Optional[str]


def year_enrollment_clause(year: AcademicYear) -> ColumnElement:
    # TODO: drop the year_number branch once legacy enrollments are backfilled with academic_year_id
    return or_(
        AnnualEnrollment.academic_year_id == year.id,
        AnnualEnrollment.year_number == year.year_number,
    )


async def enrollments_for_year(
    db: AsyncSession,
    year: AcademicYear,
    active_only: bool = False,
) -> List[EnrollmentRef]:
    """All annual enrollments of the year (tenant-scoped), oldest first."""
    stmt = select(
        AnnualEnrollment.id,
        AnnualEnrollment.student_id,
        AnnualEnrollment.class_id,
        AnnualEnrollment.level_label,
        AnnualEnrollment.status,
        AnnualEnrollment.final_status,
    ).where(
        AnnualEnrollment.tenant_id == year.tenant_id,
        year_enrollment_clause(year),
    )
    if active_only:
        stmt = stmt.where(AnnualEnrollment.status == EnrollmentStatus.ACTIVE.value)
    stmt = stmt.order_by(AnnualEnrollment.created_at, AnnualEnrollment.id)
    result = await db.execute(stmt)
    return [
        EnrollmentRef(
            id=row.id,
            student_id=row.student_id,
            class_id=row.class_id,
            level_label=row.level_label,
            status=row.status,
            final_status=row.final_status,
        )
        for row in result.all()
    ]
