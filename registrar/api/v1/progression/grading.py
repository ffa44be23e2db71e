"""
Grade aggregation and the pluggable pass/fail rule applied when a year closes.

Only closed evaluations count. A subject (teaching plan) average is the weighted mean
of the student's marks in that plan.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.core.config import settings
from registrar.core.enums import FinalStatus
from registrar.core.models import Evaluation, Grade, TeachingPlan

# (value, weight) of one mark
Mark = Tuple[float, float]
# student_id -> teaching_plan_id -> marks
YearMarks = Dict[UUID, Dict[UUID, List[Mark]]]


async def load_closed_marks(db: AsyncSession, academic_year_id: UUID) -> YearMarks:
    """Every mark of every closed evaluation of the year, grouped by student and plan."""
    stmt = (
        select(Grade.student_id, Evaluation.teaching_plan_id, Grade.value, Evaluation.weight)
        .join(Evaluation, Grade.evaluation_id == Evaluation.id)
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(
            TeachingPlan.academic_year_id == academic_year_id,
            Evaluation.is_closed.is_(True),
        )
    )
    result = await db.execute(stmt)
    marks: YearMarks = defaultdict(lambda: defaultdict(list))
    for student_id, plan_id, value, weight in result.all():
        marks[student_id][plan_id].append((float(value), float(weight or 0.0)))
    return marks


def weighted_average(marks: List[Mark]) -> Optional[float]:
    if not marks:
        return None
    total_weight = sum(w for _, w in marks)
    if total_weight <= 0:
        return round(sum(v for v, _ in marks) / len(marks), 2)
    return round(sum(v * w for v, w in marks) / total_weight, 2)


def subject_averages(student_marks: Dict[UUID, List[Mark]]) -> Dict[UUID, float]:
    averages: Dict[UUID, float] = {}
    for plan_id, marks in student_marks.items():
        avg = weighted_average(marks)
        if avg is not None:
            averages[plan_id] = avg
    return averages


class GradingPolicy(ABC):
    """Decides subject and year outcomes. Swap in a subclass for institution-specific rules."""

    @abstractmethod
    def subject_passed(self, average: float) -> bool:
        ...

    @abstractmethod
    def year_outcome(self, subject_results: List[bool]) -> FinalStatus:
        """subject_results holds one pass flag per graded subject."""
        ...

    def final_status(self, averages: Dict[UUID, float]) -> FinalStatus:
        return self.year_outcome([self.subject_passed(avg) for avg in averages.values()])


class AverageGradingPolicy(GradingPolicy):
    """
    Subject passes when its average reaches pass_mark. The year is PASSED when at most
    allowed_failed_subjects subjects fail, PENDING when the student has no graded subject.
    """

    def __init__(self, pass_mark: Optional[float] = None, allowed_failed_subjects: Optional[int] = None) -> None:
        self.pass_mark = settings.pass_mark if pass_mark is None else pass_mark
        self.allowed_failed_subjects = (
            settings.allowed_failed_subjects if allowed_failed_subjects is None else allowed_failed_subjects
        )

    def subject_passed(self, average: float) -> bool:
        return average >= self.pass_mark

    def year_outcome(self, subject_results: List[bool]) -> FinalStatus:
        if not subject_results:
            return FinalStatus.PENDING
        failed = sum(1 for passed in subject_results if not passed)
        if failed <= self.allowed_failed_subjects:
            return FinalStatus.PASSED
        return FinalStatus.FAILED
