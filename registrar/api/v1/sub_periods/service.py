"""
Semester / trimester lifecycle inside an academic year.

PLANNED -> ACTIVE -> CLOSED, and CANCELLED from PLANNED or ACTIVE. At most one
sub-period per year is ACTIVE, the parent year must be ACTIVE to activate one,
and ordinals open in sequence.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.academic_years.preconditions import EVALUATIONS_OPEN
from registrar.api.v1.academic_years.service import get_academic_type
from registrar.api.v1.side_effects import SideEffects
from registrar.core.enums import MAX_ORDINAL, PeriodKind, PeriodStatus, YearStatus, period_kind_for
from registrar.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailure,
    UnmetCondition,
    ValidationError,
)
from registrar.core.lifecycle import PERIOD_TRANSITIONS, ensure_transition, transition_locks
from registrar.core.models import AcademicYear, Evaluation, SubPeriod, TeachingPlan

from .schemas import ActivateSubPeriodResponse, SubPeriodCreate, SubPeriodResponse

logger = logging.getLogger(__name__)

ENTITY = "SUB_PERIOD"

_FINISHED = (PeriodStatus.CLOSED.value, PeriodStatus.CANCELLED.value)


def _to_response(sp: SubPeriod) -> SubPeriodResponse:
    return SubPeriodResponse.model_validate(sp)


def _state(sp: SubPeriod) -> Dict[str, Any]:
    return {
        "kind": sp.kind,
        "ordinal": sp.ordinal,
        "status": sp.status,
        "start_date": sp.start_date,
        "end_date": sp.end_date,
    }


def _label(sp: SubPeriod) -> str:
    return f"{sp.kind.lower()} {sp.ordinal}"


def _parse_kind(value: Optional[str]) -> Optional[PeriodKind]:
    if value is None:
        return None
    try:
        return PeriodKind(value.strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid sub-period kind '{value}'. Use SEMESTER or TRIMESTER")


def _validate_dates(start_date: date, end_date: Optional[date], year: AcademicYear) -> None:
    if end_date is not None and end_date <= start_date:
        raise ValidationError("end_date must be after start_date")
    if start_date < year.start_date:
        raise ValidationError("Sub-period cannot start before its academic year")
    if year.end_date is not None and end_date is not None and end_date > year.end_date:
        raise ValidationError("Sub-period cannot end after its academic year")


async def _get_year(db: AsyncSession, tenant_id: UUID, academic_year_id: UUID) -> AcademicYear:
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.id == academic_year_id,
            AcademicYear.tenant_id == tenant_id,
        )
    )
    ay = result.scalar_one_or_none()
    if not ay:
        raise NotFoundError("Academic year not found")
    return ay


async def _get_sub_period(db: AsyncSession, tenant_id: UUID, sub_period_id: UUID) -> SubPeriod:
    result = await db.execute(
        select(SubPeriod).where(
            SubPeriod.id == sub_period_id,
            SubPeriod.tenant_id == tenant_id,
        )
    )
    sp = result.scalar_one_or_none()
    if not sp:
        raise NotFoundError("Sub-period not found")
    return sp


async def create_sub_period(
    db: AsyncSession,
    tenant_id: UUID,
    payload: SubPeriodCreate,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
) -> SubPeriodResponse:
    """Create a PLANNED semester or trimester under a year that is not CLOSED."""
    year = await _get_year(db, tenant_id, payload.academic_year_id)
    if year.status == YearStatus.CLOSED.value:
        raise ConflictError("Cannot add sub-periods to a CLOSED academic year")

    expected = period_kind_for(await get_academic_type(db, tenant_id))
    kind = _parse_kind(payload.kind) or expected
    if kind is None:
        raise ValidationError("kind is required when the institution type is not set")
    if expected is not None and kind != expected:
        raise ValidationError(f"This institution uses {expected.value.lower()}s, not {kind.value.lower()}s")
    if payload.ordinal > MAX_ORDINAL[kind]:
        raise ValidationError(f"{kind.value.capitalize()} ordinal must be between 1 and {MAX_ORDINAL[kind]}")
    _validate_dates(payload.start_date, payload.end_date, year)

    existing = await db.execute(
        select(SubPeriod.id).where(
            SubPeriod.academic_year_id == year.id,
            SubPeriod.kind == kind.value,
            SubPeriod.ordinal == payload.ordinal,
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError(f"{kind.value.capitalize()} {payload.ordinal} already exists for year {year.year_number}")

    sp = SubPeriod(
        tenant_id=tenant_id,
        academic_year_id=year.id,
        kind=kind.value,
        ordinal=payload.ordinal,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=PeriodStatus.PLANNED.value,
    )
    db.add(sp)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"{kind.value.capitalize()} {payload.ordinal} already exists for year {year.year_number}")
    await db.refresh(sp)

    effects.record(tenant_id, actor_id, "CREATE", ENTITY, sp.id, after=_state(sp))
    return _to_response(sp)


async def list_sub_periods(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year_id: Optional[UUID] = None,
) -> List[SubPeriodResponse]:
    stmt = select(SubPeriod).where(SubPeriod.tenant_id == tenant_id)
    if academic_year_id:
        stmt = stmt.where(SubPeriod.academic_year_id == academic_year_id)
    stmt = stmt.order_by(SubPeriod.academic_year_id, SubPeriod.kind, SubPeriod.ordinal)
    result = await db.execute(stmt)
    return [_to_response(sp) for sp in result.scalars().all()]


async def activate_period(
    db: AsyncSession,
    tenant_id: UUID,
    sub_period_id: UUID,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
) -> ActivateSubPeriodResponse:
    """
    PLANNED -> ACTIVE. Already ACTIVE is a no-op success. Requires the parent year ACTIVE,
    no other ACTIVE sub-period in the year, and the previous ordinal CLOSED or CANCELLED.
    """
    sp = await _get_sub_period(db, tenant_id, sub_period_id)
    async with transition_locks.for_scope("period", sp.academic_year_id):
        await db.refresh(sp)
        if sp.status == PeriodStatus.ACTIVE.value:
            return ActivateSubPeriodResponse(sub_period=_to_response(sp), changed=False)
        ensure_transition(PERIOD_TRANSITIONS, _label(sp), sp.status, PeriodStatus.ACTIVE.value)

        year = await _get_year(db, tenant_id, sp.academic_year_id)
        if year.status != YearStatus.ACTIVE.value:
            raise ConflictError(
                f"Academic year {year.year_number} is {year.status}; activate it before opening a {sp.kind.lower()}"
            )

        other = await db.execute(
            select(SubPeriod).where(
                SubPeriod.academic_year_id == sp.academic_year_id,
                SubPeriod.status == PeriodStatus.ACTIVE.value,
                SubPeriod.id != sp.id,
            )
        )
        active = other.scalars().first()
        if active is not None:
            raise ConflictError(f"{_label(active).capitalize()} is already ACTIVE. Close it first")

        if sp.ordinal > 1:
            previous = await db.execute(
                select(SubPeriod.status).where(
                    SubPeriod.academic_year_id == sp.academic_year_id,
                    SubPeriod.kind == sp.kind,
                    SubPeriod.ordinal == sp.ordinal - 1,
                )
            )
            previous_status = previous.scalar_one_or_none()
            if previous_status not in _FINISHED:
                raise ConflictError(
                    f"{sp.kind.capitalize()} {sp.ordinal - 1} must be CLOSED or CANCELLED before "
                    f"{sp.kind.lower()} {sp.ordinal} can be activated"
                )

        before = _state(sp)
        sp.status = PeriodStatus.ACTIVE.value
        sp.activated_at = datetime.utcnow()
        sp.activated_by = actor_id
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Another sub-period was activated concurrently")
        await db.refresh(sp)

    logger.info("%s of year %s activated", _label(sp).capitalize(), sp.academic_year_id)
    effects.record(tenant_id, actor_id, "ACTIVATE", ENTITY, sp.id, before=before, after=_state(sp))
    return ActivateSubPeriodResponse(sub_period=_to_response(sp), changed=True)


async def close_period(
    db: AsyncSession,
    tenant_id: UUID,
    sub_period_id: UUID,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
    justification: Optional[str] = None,
) -> SubPeriodResponse:
    """ACTIVE -> CLOSED. Blocked while evaluations tagged with this ordinal are still open."""
    sp = await _get_sub_period(db, tenant_id, sub_period_id)
    ensure_transition(PERIOD_TRANSITIONS, _label(sp), sp.status, PeriodStatus.CLOSED.value)

    open_count = await db.execute(
        select(func.count(Evaluation.id))
        .join(TeachingPlan, Evaluation.teaching_plan_id == TeachingPlan.id)
        .where(
            TeachingPlan.academic_year_id == sp.academic_year_id,
            Evaluation.sub_period_ordinal == sp.ordinal,
            Evaluation.is_closed.is_(False),
        )
    )
    count = open_count.scalar_one()
    if count:
        raise PreconditionFailure(
            f"{_label(sp).capitalize()} cannot be closed",
            [
                UnmetCondition(
                    code=EVALUATIONS_OPEN,
                    message=f"There are {count} open evaluation(s) in {_label(sp)}",
                    details={"count": count, "ordinal": sp.ordinal},
                )
            ],
        )

    before = _state(sp)
    sp.status = PeriodStatus.CLOSED.value
    sp.closed_at = datetime.utcnow()
    sp.closed_by = actor_id
    sp.closure_justification = (justification or "").strip() or None
    await db.commit()
    await db.refresh(sp)

    effects.record(
        tenant_id, actor_id, "CLOSE", ENTITY, sp.id, before=before, after=_state(sp), note=sp.closure_justification
    )
    return _to_response(sp)


async def cancel_period(
    db: AsyncSession,
    tenant_id: UUID,
    sub_period_id: UUID,
    justification: str,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
) -> SubPeriodResponse:
    """PLANNED or ACTIVE -> CANCELLED. A justification is mandatory."""
    justification = (justification or "").strip()
    if not justification:
        raise ValidationError("A justification is required to cancel a sub-period")

    sp = await _get_sub_period(db, tenant_id, sub_period_id)
    ensure_transition(PERIOD_TRANSITIONS, _label(sp), sp.status, PeriodStatus.CANCELLED.value)

    before = _state(sp)
    sp.status = PeriodStatus.CANCELLED.value
    sp.closed_at = datetime.utcnow()
    sp.closed_by = actor_id
    sp.closure_justification = justification
    await db.commit()
    await db.refresh(sp)

    effects.record(tenant_id, actor_id, "CANCEL", ENTITY, sp.id, before=before, after=_state(sp), note=justification)
    return _to_response(sp)
