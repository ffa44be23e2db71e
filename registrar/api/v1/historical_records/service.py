"""
Historical records: the frozen per-student outcome of a closed academic year.

Records are generated once per closure under SNAPSHOT_KEY and never updated. An
enrollment that already has a record under the key is skipped, so a retry after a
partial failure only fills the gaps.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.enrollments.lookup import EnrollmentRef, enrollments_for_year
from registrar.api.v1.progression.grading import (
    AverageGradingPolicy,
    GradingPolicy,
    YearMarks,
    load_closed_marks,
    weighted_average,
)
from registrar.core.config import settings
from registrar.core.enums import FinalStatus, YearStatus
from registrar.core.exceptions import ConflictError, NotFoundError
from registrar.core.models import AcademicYear, AttendanceRecord, HistoricalRecord, Lesson, TeachingPlan

from .schemas import HistoricalRecordResponse

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "closure-snapshot-v1"


@dataclass
class SnapshotError:
    enrollment_id: UUID
    student_id: UUID
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"enrollment_id": str(self.enrollment_id), "student_id": str(self.student_id), "reason": self.reason}


@dataclass
class SnapshotResult:
    generated: int = 0
    already_present: int = 0
    errors: List[SnapshotError] = field(default_factory=list)


@dataclass
class _Attendance:
    presences: int = 0
    absences: int = 0
    justified_absences: int = 0


class SnapshotGenerator:
    def __init__(
        self,
        grading_policy: Optional[GradingPolicy] = None,
        min_attendance_rate: Optional[float] = None,
    ) -> None:
        self.grading_policy = grading_policy or AverageGradingPolicy()
        self.min_attendance_rate = settings.min_attendance_rate if min_attendance_rate is None else min_attendance_rate

    async def generate(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        academic_year_id: UUID,
        generated_by: Optional[UUID] = None,
    ) -> SnapshotResult:
        """One HistoricalRecord per enrollment of a CLOSED year. Caller owns nothing; this commits."""
        year = await db.get(AcademicYear, academic_year_id)
        if year is None or year.tenant_id != tenant_id:
            raise NotFoundError("Academic year not found")
        if year.status != YearStatus.CLOSED.value:
            raise ConflictError(
                f"Historical records can only be generated for a CLOSED academic year (year {year.year_number} is {year.status})"
            )

        enrollments = await enrollments_for_year(db, year)
        existing = await self._existing_enrollment_ids(db, year.id)
        pending = [e for e in enrollments if e.id not in existing]
        result = SnapshotResult(already_present=len(enrollments) - len(pending))
        if enrollments and not pending:
            raise ConflictError(f"Historical records were already generated for academic year {year.year_number}")

        plans = await self._plans(db, year.id)
        marks = await load_closed_marks(db, year.id)
        lesson_counts = await self._lesson_counts(db, year.id)
        attendance = await self._attendance(db, year.id)

        for enrollment in pending:
            try:
                record = self._build_record(
                    year, enrollment, plans, marks, lesson_counts, attendance, generated_by
                )
            except (ArithmeticError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Snapshot failed for enrollment %s: %s", enrollment.id, exc)
                result.errors.append(
                    SnapshotError(enrollment_id=enrollment.id, student_id=enrollment.student_id, reason=str(exc))
                )
                continue
            db.add(record)
            result.generated += 1

        await db.commit()
        logger.info(
            "Generated %d historical records for year %s (%d already present, %d errors)",
            result.generated,
            year.year_number,
            result.already_present,
            len(result.errors),
        )
        return result

    async def _existing_enrollment_ids(self, db: AsyncSession, academic_year_id: UUID) -> Set[UUID]:
        result = await db.execute(
            select(HistoricalRecord.enrollment_id).where(
                HistoricalRecord.academic_year_id == academic_year_id,
                HistoricalRecord.snapshot_key == SNAPSHOT_KEY,
            )
        )
        return set(result.scalars().all())

    async def _plans(self, db: AsyncSession, academic_year_id: UUID) -> Dict[UUID, TeachingPlan]:
        result = await db.execute(select(TeachingPlan).where(TeachingPlan.academic_year_id == academic_year_id))
        return {plan.id: plan for plan in result.scalars().all()}

    async def _lesson_counts(self, db: AsyncSession, academic_year_id: UUID) -> Dict[UUID, int]:
        result = await db.execute(
            select(Lesson.teaching_plan_id, func.count(Lesson.id))
            .join(TeachingPlan, Lesson.teaching_plan_id == TeachingPlan.id)
            .where(TeachingPlan.academic_year_id == academic_year_id)
            .group_by(Lesson.teaching_plan_id)
        )
        return {plan_id: count for plan_id, count in result.all()}

    async def _attendance(self, db: AsyncSession, academic_year_id: UUID) -> Dict[Tuple[UUID, UUID], _Attendance]:
        presences = func.sum(case((AttendanceRecord.present.is_(True), 1), else_=0))
        absences = func.sum(case((AttendanceRecord.present.is_(False), 1), else_=0))
        justified = func.sum(
            case(((AttendanceRecord.present.is_(False)) & (AttendanceRecord.justified.is_(True)), 1), else_=0)
        )
        result = await db.execute(
            select(Lesson.teaching_plan_id, AttendanceRecord.student_id, presences, absences, justified)
            .join(Lesson, AttendanceRecord.lesson_id == Lesson.id)
            .join(TeachingPlan, Lesson.teaching_plan_id == TeachingPlan.id)
            .where(TeachingPlan.academic_year_id == academic_year_id)
            .group_by(Lesson.teaching_plan_id, AttendanceRecord.student_id)
        )
        return {
            (plan_id, student_id): _Attendance(int(p or 0), int(a or 0), int(j or 0))
            for plan_id, student_id, p, a, j in result.all()
        }

    def _build_record(
        self,
        year: AcademicYear,
        enrollment: EnrollmentRef,
        plans: Dict[UUID, TeachingPlan],
        marks: YearMarks,
        lesson_counts: Dict[UUID, int],
        attendance: Dict[Tuple[UUID, UUID], _Attendance],
        generated_by: Optional[UUID],
    ) -> HistoricalRecord:
        student_marks = marks.get(enrollment.student_id, {})
        plan_ids = set(student_marks)
        if enrollment.class_id is not None:
            plan_ids.update(pid for pid, plan in plans.items() if plan.class_id == enrollment.class_id)

        subjects: List[Dict[str, Any]] = []
        subject_results: List[bool] = []
        averages: List[float] = []
        for plan_id in plan_ids:
            plan = plans[plan_id]
            average = weighted_average(student_marks.get(plan_id, []))
            lessons = lesson_counts.get(plan_id, 0)
            att = attendance.get((plan_id, enrollment.student_id), _Attendance())
            recorded = att.presences + att.absences
            rate = round((att.presences + att.justified_absences) / recorded, 4) if recorded else None

            if average is None:
                outcome = FinalStatus.PENDING
            else:
                passed = self.grading_policy.subject_passed(average) and (
                    rate is None or rate >= self.min_attendance_rate
                )
                outcome = FinalStatus.PASSED if passed else FinalStatus.FAILED
                subject_results.append(passed)
                averages.append(average)

            subjects.append(
                {
                    "teaching_plan_id": str(plan_id),
                    "subject": plan.subject_name,
                    "average": average,
                    "lessons": lessons,
                    "presences": att.presences,
                    "absences": att.absences,
                    "justified_absences": att.justified_absences,
                    "attendance_rate": rate,
                    "outcome": outcome.value,
                }
            )
        subjects.sort(key=lambda s: s["subject"])

        return HistoricalRecord(
            tenant_id=year.tenant_id,
            academic_year_id=year.id,
            enrollment_id=enrollment.id,
            student_id=enrollment.student_id,
            snapshot_key=SNAPSHOT_KEY,
            class_id=enrollment.class_id,
            level_label=enrollment.level_label,
            subjects=subjects,
            overall_average=round(sum(averages) / len(averages), 2) if averages else None,
            outcome=self.grading_policy.year_outcome(subject_results).value,
            generated_by=generated_by,
            generated_at=datetime.utcnow(),
        )


async def list_student_history(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    academic_year_id: Optional[UUID] = None,
) -> List[HistoricalRecordResponse]:
    """A student's historical records across closed years, oldest year first."""
    stmt = (
        select(HistoricalRecord)
        .join(AcademicYear, HistoricalRecord.academic_year_id == AcademicYear.id)
        .where(
            HistoricalRecord.tenant_id == tenant_id,
            HistoricalRecord.student_id == student_id,
        )
    )
    if academic_year_id:
        stmt = stmt.where(HistoricalRecord.academic_year_id == academic_year_id)
    stmt = stmt.order_by(AcademicYear.year_number, HistoricalRecord.generated_at)
    result = await db.execute(stmt)
    return [HistoricalRecordResponse.model_validate(row) for row in result.scalars().all()]
