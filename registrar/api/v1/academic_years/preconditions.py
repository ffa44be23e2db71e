"""
Closure checklist for an academic year.

Each institution type has its own validator; every validator evaluates all of its
rules and reports every unmet one, so an administrator sees the whole list at once.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.enrollments.lookup import year_enrollment_clause
from registrar.core.enums import AcademicType, EnrollmentStatus, EvaluationKind, PeriodKind, PeriodStatus
from registrar.core.exceptions import PreconditionFailure, UnmetCondition
from registrar.core.models import AcademicYear, AnnualEnrollment, Evaluation, Grade, SubPeriod, TeachingPlan

logger = logging.getLogger(__name__)

SUB_PERIODS_OPEN = "SUB_PERIODS_OPEN"
EVALUATIONS_OPEN = "EVALUATIONS_OPEN"
EXAMS_OPEN = "EXAMS_OPEN"
STUDENTS_WITHOUT_GRADES = "STUDENTS_WITHOUT_GRADES"

_OPEN_PERIOD_STATUSES = (PeriodStatus.PLANNED.value, PeriodStatus.ACTIVE.value)

_KIND_LABELS = {PeriodKind.SEMESTER: "semester", PeriodKind.TRIMESTER: "trimester"}


@dataclass
class ClosureCheck:
    academic_year_id: UUID
    academic_type: Optional[AcademicType]
    failures: List[UnmetCondition] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures

    def raise_if_failed(self, year_number: int) -> None:
        if self.failures:
            raise PreconditionFailure(f"Academic year {year_number} cannot be closed", self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "academic_year_id": str(self.academic_year_id),
            "academic_type": self.academic_type.value if self.academic_type else None,
            "passed": self.passed,
            "failures": [f.to_dict() for f in self.failures],
        }


async def check_sub_periods_closed(db: AsyncSession, year: AcademicYear, kind: PeriodKind) -> List[UnmetCondition]:
    """Every sub-period of the kind must be finished. CANCELLED counts as finished."""
    result = await db.execute(
        select(SubPeriod.ordinal)
        .where(
            SubPeriod.academic_year_id == year.id,
            SubPeriod.kind == kind.value,
            SubPeriod.status.in_(_OPEN_PERIOD_STATUSES),
        )
        .order_by(SubPeriod.ordinal)
    )
    open_ordinals = list(result.scalars().all())
    if not open_ordinals:
        return []
    label = _KIND_LABELS[kind]
    numbers = ", ".join(str(o) for o in open_ordinals)
    return [
        UnmetCondition(
            code=SUB_PERIODS_OPEN,
            message=f"The following {label}s are not closed: {numbers}",
            details={"kind": kind.value, "ordinals": open_ordinals},
        )
    ]


async def check_evaluations_closed(db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
    result = await db.execute(
        select(func.count(Evaluation.id))
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(
            TeachingPlan.academic_year_id == year.id,
            Evaluation.is_closed.is_(False),
        )
    )
    count = result.scalar_one()
    if not count:
        return []
    return [
        UnmetCondition(
            code=EVALUATIONS_OPEN,
            message=f"There are {count} open evaluation(s)",
            details={"count": count},
        )
    ]


async def check_exams_closed(db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
    """Final and remedial exams still open. Reported separately from the general count."""
    result = await db.execute(
        select(func.count(Evaluation.id))
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(
            TeachingPlan.academic_year_id == year.id,
            Evaluation.is_closed.is_(False),
            Evaluation.kind.in_((EvaluationKind.FINAL_EXAM.value, EvaluationKind.REMEDIAL_EXAM.value)),
        )
    )
    count = result.scalar_one()
    if not count:
        return []
    return [
        UnmetCondition(
            code=EXAMS_OPEN,
            message=f"There are {count} final/remedial exam(s) not closed",
            details={"count": count},
        )
    ]


async def check_grades_complete(db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
    """
    Every active student of a class needs a grade in every closed evaluation of the class's
    teaching plans. A student is counted once however many grades they are missing.
    """
    evaluations = await db.execute(
        select(Evaluation.id, TeachingPlan.class_id)
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(
            TeachingPlan.academic_year_id == year.id,
            TeachingPlan.class_id.is_not(None),
            Evaluation.is_closed.is_(True),
        )
    )
    evaluations_by_class: Dict[UUID, List[UUID]] = {}
    for evaluation_id, class_id in evaluations.all():
        evaluations_by_class.setdefault(class_id, []).append(evaluation_id)
    if not evaluations_by_class:
        return []

    students = await db.execute(
        select(AnnualEnrollment.class_id, AnnualEnrollment.student_id).where(
            AnnualEnrollment.tenant_id == year.tenant_id,
            year_enrollment_clause(year),
            AnnualEnrollment.status == EnrollmentStatus.ACTIVE.value,
            AnnualEnrollment.class_id.in_(list(evaluations_by_class)),
        )
    )
    students_by_class: Dict[UUID, Set[UUID]] = {}
    for class_id, student_id in students.all():
        students_by_class.setdefault(class_id, set()).add(student_id)

    all_evaluation_ids = [eid for ids in evaluations_by_class.values() for eid in ids]
    graded = await db.execute(
        select(Grade.evaluation_id, Grade.student_id).where(Grade.evaluation_id.in_(all_evaluation_ids))
    )
    graded_pairs: Set[Tuple[UUID, UUID]] = {(eid, sid) for eid, sid in graded.all()}

    missing: Set[UUID] = set()
    for class_id, student_ids in students_by_class.items():
        for student_id in student_ids:
            if student_id in missing:
                continue
            for evaluation_id in evaluations_by_class[class_id]:
                if (evaluation_id, student_id) not in graded_pairs:
                    missing.add(student_id)
                    break

    if not missing:
        return []
    return [
        UnmetCondition(
            code=STUDENTS_WITHOUT_GRADES,
            message=f"There are {len(missing)} student(s) without grades in closed evaluations",
            details={"count": len(missing), "student_ids": sorted(str(s) for s in missing)},
        )
    ]


class ClosureValidator(ABC):
    academic_type: Optional[AcademicType] = None

    async def validate(self, db: AsyncSession, year: AcademicYear) -> ClosureCheck:
        check = ClosureCheck(academic_year_id=year.id, academic_type=self.academic_type)
        check.failures.extend(await self.collect(db, year))
        if check.failures:
            logger.info(
                "Closure of year %s blocked: %s",
                year.year_number,
                ", ".join(f.code for f in check.failures),
            )
        return check

    @abstractmethod
    async def collect(self, db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
        ...


class HigherEducationValidator(ClosureValidator):
    """Both semesters closed, no open evaluation, no open final or remedial exam."""

    academic_type = AcademicType.HIGHER_EDUCATION

    async def collect(self, db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
        failures: List[UnmetCondition] = []
        failures += await check_sub_periods_closed(db, year, PeriodKind.SEMESTER)
        failures += await check_evaluations_closed(db, year)
        failures += await check_exams_closed(db, year)
        return failures


class SecondaryEducationValidator(ClosureValidator):
    """All trimesters closed, no open evaluation, no active student missing a grade."""

    academic_type = AcademicType.SECONDARY

    async def collect(self, db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
        failures: List[UnmetCondition] = []
        failures += await check_sub_periods_closed(db, year, PeriodKind.TRIMESTER)
        failures += await check_evaluations_closed(db, year)
        failures += await check_grades_complete(db, year)
        return failures


class UnknownTypeValidator(ClosureValidator):
    """Institution type not set: whichever semesters and trimesters exist must all be closed."""

    async def collect(self, db: AsyncSession, year: AcademicYear) -> List[UnmetCondition]:
        failures: List[UnmetCondition] = []
        failures += await check_sub_periods_closed(db, year, PeriodKind.SEMESTER)
        failures += await check_sub_periods_closed(db, year, PeriodKind.TRIMESTER)
        return failures


_VALIDATORS = {
    AcademicType.HIGHER_EDUCATION: HigherEducationValidator,
    AcademicType.SECONDARY: SecondaryEducationValidator,
}


def get_closure_validator(academic_type: Optional[AcademicType]) -> ClosureValidator:
    return _VALIDATORS.get(academic_type, UnknownTypeValidator)()
