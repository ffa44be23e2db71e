"""
Final status and suggested next level for every enrollment of a closed year.

Each student is computed and committed on their own: one bad enrollment is recorded
as a failure and the run moves on. Enrollments that already have a final status are
left untouched, so re-running after a partial failure only fills the gaps.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.enrollments.lookup import enrollments_for_year
from registrar.core.enums import AcademicType, FinalStatus
from registrar.core.exceptions import NotFoundError
from registrar.core.models import AcademicYear, AnnualEnrollment

from .grading import AverageGradingPolicy, GradingPolicy, load_closed_marks, subject_averages
from .levels import ClassOrderLevelProgression, LevelProgression

logger = logging.getLogger(__name__)


@dataclass
class ProgressionUpdate:
    enrollment_id: UUID
    student_id: UUID
    final_status: FinalStatus
    suggested_next_level: str
    suggested_next_class_id: Optional[UUID] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enrollment_id": str(self.enrollment_id),
            "student_id": str(self.student_id),
            "final_status": self.final_status.value,
            "suggested_next_level": self.suggested_next_level,
            "suggested_next_class_id": str(self.suggested_next_class_id) if self.suggested_next_class_id else None,
        }


@dataclass
class ProgressionFailure:
    enrollment_id: UUID
    student_id: UUID
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"enrollment_id": str(self.enrollment_id), "student_id": str(self.student_id), "reason": self.reason}


@dataclass
class ProgressionResult:
    updates: List[ProgressionUpdate] = field(default_factory=list)
    skipped: int = 0
    failures: List[ProgressionFailure] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return len(self.updates)


class ProgressionCalculator:
    def __init__(
        self,
        grading_policy: Optional[GradingPolicy] = None,
        level_progression: Optional[LevelProgression] = None,
    ) -> None:
        self.grading_policy = grading_policy or AverageGradingPolicy()
        self.level_progression = level_progression or ClassOrderLevelProgression()

    async def calculate(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        academic_year_id: UUID,
        academic_type: Optional[AcademicType],
    ) -> ProgressionResult:
        year = await db.get(AcademicYear, academic_year_id)
        if year is None or year.tenant_id != tenant_id:
            raise NotFoundError("Academic year not found")

        year_number = year.year_number
        enrollments = await enrollments_for_year(db, year)
        marks = await load_closed_marks(db, year.id)
        result = ProgressionResult()

        for enrollment in enrollments:
            if enrollment.final_status:
                result.skipped += 1
                continue
            try:
                final_status = self.grading_policy.final_status(subject_averages(marks.get(enrollment.student_id, {})))
                suggestion = await self.level_progression.suggest(
                    db, tenant_id, enrollment, final_status, academic_type
                )
                written = await db.execute(
                    update(AnnualEnrollment)
                    .where(
                        AnnualEnrollment.id == enrollment.id,
                        AnnualEnrollment.final_status.is_(None),
                    )
                    .values(
                        final_status=final_status.value,
                        suggested_next_level=suggestion.label,
                        suggested_next_class_id=suggestion.class_id,
                        progression_computed_at=datetime.utcnow(),
                    )
                )
                await db.commit()
            except Exception as exc:  # noqa: BLE001
                await db.rollback()
                logger.warning(
                    "Progression failed for student %s (enrollment %s): %s",
                    enrollment.student_id,
                    enrollment.id,
                    exc,
                )
                result.failures.append(
                    ProgressionFailure(
                        enrollment_id=enrollment.id,
                        student_id=enrollment.student_id,
                        reason=str(exc) or exc.__class__.__name__,
                    )
                )
                continue

            if written.rowcount == 0:
                # Set elsewhere since the enrollments were read
                result.skipped += 1
                continue

            result.updates.append(
                ProgressionUpdate(
                    enrollment_id=enrollment.id,
                    student_id=enrollment.student_id,
                    final_status=final_status,
                    suggested_next_level=suggestion.label,
                    suggested_next_class_id=suggestion.class_id,
                )
            )

        logger.info(
            "Progression for year %s: %d updated, %d skipped, %d failed",
            year_number,
            result.updated,
            result.skipped,
            len(result.failures),
        )
        return result
