"""Suggested next level for a student after the year closes."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.enrollments.lookup import EnrollmentRef
from registrar.core.enums import AcademicType, FinalStatus
from registrar.core.models import SchoolClass

MAX_SECONDARY_GRADE = 12
MAX_HIGHER_EDUCATION_YEAR = 6

_LEVEL_NUMBER = re.compile(r"(\d{1,2})(st|nd|rd|th)?", re.IGNORECASE)


class LevelLookupError(ValueError):
    """The enrollment's current level cannot be determined."""


@dataclass
class LevelSuggestion:
    label: str
    class_id: Optional[UUID] = None


def ordinal_suffix(n: int) -> str:
    if 10 <= n % 100 <= 20:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")


def level_number(label: Optional[str]) -> Optional[int]:
    """First number in a level label: "10th Grade" -> 10, "2nd Year" -> 2."""
    if not label:
        return None
    match = _LEVEL_NUMBER.search(label)
    return int(match.group(1)) if match else None


def bump_level_label(label: str, limit: int) -> Optional[str]:
    """
    "1st Year" -> "2nd Year", "Grade 9" -> "Grade 10".
    None when the label has no number or the next number would exceed limit.
    """
    match = _LEVEL_NUMBER.search(label)
    if not match:
        return None
    nxt = int(match.group(1)) + 1
    if nxt > limit:
        return None
    replacement = f"{nxt}{ordinal_suffix(nxt)}" if match.group(2) else str(nxt)
    return label[: match.start()] + replacement + label[match.end():]


class LevelProgression(ABC):
    @abstractmethod
    async def suggest(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        enrollment: EnrollmentRef,
        final_status: FinalStatus,
        academic_type: Optional[AcademicType],
    ) -> LevelSuggestion:
        ...


class ClassOrderLevelProgression(LevelProgression):
    """
    PASSED moves up one level; FAILED and PENDING keep the current one.
    Secondary: the active class with the next display_order, else the label with its number bumped.
    Higher education: "Nth Year" becomes "N+1th Year", up to the 6th year.
    Unknown academic type: level kept.
    """

    async def suggest(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        enrollment: EnrollmentRef,
        final_status: FinalStatus,
        academic_type: Optional[AcademicType],
    ) -> LevelSuggestion:
        school_class: Optional[SchoolClass] = None
        if enrollment.class_id is not None:
            school_class = await db.get(SchoolClass, enrollment.class_id)
            if school_class is None:
                raise LevelLookupError(f"Class {enrollment.class_id} not found")

        current_label = enrollment.level_label or (school_class.name if school_class else None)
        if not current_label:
            raise LevelLookupError("Enrollment has no class or level")
        current = LevelSuggestion(label=current_label, class_id=enrollment.class_id)

        if final_status != FinalStatus.PASSED:
            return current
        if academic_type == AcademicType.SECONDARY:
            return await self._next_secondary(db, tenant_id, school_class, current_label) or current
        if academic_type == AcademicType.HIGHER_EDUCATION:
            label = bump_level_label(current_label, MAX_HIGHER_EDUCATION_YEAR)
            return LevelSuggestion(label=label) if label else current
        return current

    async def _next_secondary(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        school_class: Optional[SchoolClass],
        current_label: str,
    ) -> Optional[LevelSuggestion]:
        order = school_class.display_order if school_class is not None else None
        if order is None:
            order = level_number(current_label)
        if order is not None:
            result = await db.execute(
                select(SchoolClass)
                .where(
                    SchoolClass.tenant_id == tenant_id,
                    SchoolClass.display_order == order + 1,
                    SchoolClass.is_active.is_(True),
                )
                .order_by(SchoolClass.name)
                .limit(1)
            )
            nxt = result.scalar_one_or_none()
            if nxt is not None:
                return LevelSuggestion(label=nxt.name, class_id=nxt.id)
        label = bump_level_label(current_label, MAX_SECONDARY_GRADE)
        return LevelSuggestion(label=label) if label else None
