"""
Academic year lifecycle: PLANNED -> ACTIVE -> CLOSED.

Status writes happen under the tenant's year lock so that "no other year is ACTIVE"
and the write are one step. Closure validates the whole checklist first, then writes,
then runs the post-commit work: historical snapshot and progression are awaited
(their outcome is part of the response), audit entries and notifications are not.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.side_effects import SideEffects
from registrar.core.config import settings
from registrar.core.enums import AcademicType, YearStatus, normalize_academic_type
from registrar.core.exceptions import ConflictError, NotFoundError, ValidationError
from registrar.core.lifecycle import YEAR_TRANSITIONS, ensure_transition, transition_locks
from registrar.core.models import AcademicYear, Tenant

from .preconditions import ClosureCheck, get_closure_validator
from .schemas import (
    AcademicYearCreate,
    AcademicYearResponse,
    AcademicYearUpdate,
    ActivateAcademicYearResponse,
    CloseAcademicYearResponse,
    ProgressionFailureResponse,
    ProgressionSummaryResponse,
    SideEffectWarning,
    YearStatisticsResponse,
)
from .statistics import collect_year_statistics

logger = logging.getLogger(__name__)

ENTITY = "ACADEMIC_YEAR"


def _to_response(ay: AcademicYear) -> AcademicYearResponse:
    return AcademicYearResponse.model_validate(ay)


def _state(ay: AcademicYear) -> Dict[str, Any]:
    return {
        "year_number": ay.year_number,
        "status": ay.status,
        "start_date": ay.start_date,
        "end_date": ay.end_date,
    }


def _validate_dates(start_date: date, end_date: Optional[date]) -> None:
    if end_date is not None and end_date <= start_date:
        raise ValidationError("end_date must be after start_date")


async def _check_overlap(
    db: AsyncSession,
    tenant_id: UUID,
    start_date: date,
    end_date: Optional[date],
    exclude_id: Optional[UUID] = None,
) -> None:
    # Only years with an end date occupy a range
    stmt = select(AcademicYear.year_number).where(
        AcademicYear.tenant_id == tenant_id,
        AcademicYear.end_date.isnot(None),
        AcademicYear.end_date >= start_date,
    )
    if end_date is not None:
        stmt = stmt.where(AcademicYear.start_date <= end_date)
    if exclude_id is not None:
        stmt = stmt.where(AcademicYear.id != exclude_id)
    overlap = (await db.execute(stmt.limit(1))).scalar_one_or_none()
    if overlap is not None:
        raise ConflictError(f"Dates overlap academic year {overlap}")


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


async def get_academic_type(db: AsyncSession, tenant_id: UUID) -> Optional[AcademicType]:
    result = await db.execute(select(Tenant.academic_type).where(Tenant.id == tenant_id))
    return normalize_academic_type(result.scalar_one_or_none())


async def create_academic_year(
    db: AsyncSession,
    tenant_id: UUID,
    payload: AcademicYearCreate,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
) -> AcademicYearResponse:
    """Create a PLANNED academic year."""
    _validate_dates(payload.start_date, payload.end_date)
    existing = await db.execute(
        select(AcademicYear.id).where(
            AcademicYear.tenant_id == tenant_id,
            AcademicYear.year_number == payload.year_number,
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError(f"Academic year {payload.year_number} already exists for this tenant")
    await _check_overlap(db, tenant_id, payload.start_date, payload.end_date)

    ay = AcademicYear(
        tenant_id=tenant_id,
        year_number=payload.year_number,
        start_date=payload.start_date,
        end_date=payload.end_date,
        notes=payload.notes,
        status=YearStatus.PLANNED.value,
    )
    db.add(ay)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Academic year {payload.year_number} already exists for this tenant")
    await db.refresh(ay)

    effects.record(tenant_id, actor_id, "CREATE", ENTITY, ay.id, after=_state(ay))
    return _to_response(ay)


async def list_academic_years(
    db: AsyncSession,
    tenant_id: UUID,
    status_filter: Optional[str] = None,
) -> List[AcademicYearResponse]:
    """List academic years for tenant, newest first, optionally filtered by status."""
    stmt = select(AcademicYear).where(AcademicYear.tenant_id == tenant_id)
    if status_filter:
        stmt = stmt.where(AcademicYear.status == status_filter.upper())
    stmt = stmt.order_by(AcademicYear.year_number.desc())
    result = await db.execute(stmt)
    return [_to_response(ay) for ay in result.scalars().all()]


async def get_academic_year(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year_id: UUID,
) -> AcademicYearResponse:
    return _to_response(await _get_year(db, tenant_id, academic_year_id))


async def get_active_academic_year(db: AsyncSession, tenant_id: UUID) -> Optional[AcademicYearResponse]:
    """The tenant's ACTIVE year, if any. Default scope for day-to-day operations."""
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.tenant_id == tenant_id,
            AcademicYear.status == YearStatus.ACTIVE.value,
        )
    )
    ay = result.scalar_one_or_none()
    return _to_response(ay) if ay else None


async def update_academic_year(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year_id: UUID,
    payload: AcademicYearUpdate,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
) -> AcademicYearResponse:
    """Update dates or notes. CLOSED years are read-only."""
    ay = await _get_year(db, tenant_id, academic_year_id)
    if ay.status == YearStatus.CLOSED.value:
        raise ConflictError("Cannot update a CLOSED academic year; it is read-only")

    before = _state(ay)
    start_date = payload.start_date if payload.start_date is not None else ay.start_date
    end_date = payload.end_date if payload.end_date is not None else ay.end_date
    _validate_dates(start_date, end_date)
    await _check_overlap(db, tenant_id, start_date, end_date, exclude_id=ay.id)

    ay.start_date = start_date
    ay.end_date = end_date
    if payload.notes is not None:
        ay.notes = payload.notes
    await db.commit()
    await db.refresh(ay)

    effects.record(tenant_id, actor_id, "UPDATE", ENTITY, ay.id, before=before, after=_state(ay))
    return _to_response(ay)


async def activate_year(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year_id: UUID,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
) -> ActivateAcademicYearResponse:
    """
    PLANNED -> ACTIVE. Activating an ACTIVE year is a no-op success (changed=false).
    Fails with ConflictError if the year is CLOSED or another year of the tenant is ACTIVE.
    """
    async with transition_locks.for_scope("year", tenant_id):
        ay = await _get_year(db, tenant_id, academic_year_id)
        if ay.status == YearStatus.ACTIVE.value:
            return ActivateAcademicYearResponse(academic_year=_to_response(ay), changed=False)
        ensure_transition(YEAR_TRANSITIONS, "academic year", ay.status, YearStatus.ACTIVE.value)

        other = await db.execute(
            select(AcademicYear.year_number).where(
                AcademicYear.tenant_id == tenant_id,
                AcademicYear.status == YearStatus.ACTIVE.value,
                AcademicYear.id != ay.id,
            )
        )
        other_number = other.scalar_one_or_none()
        if other_number is not None:
            raise ConflictError(
                f"Academic year {other_number} is already ACTIVE. Close it before activating another one"
            )
        _validate_dates(ay.start_date, ay.end_date)

        before = _state(ay)
        ay.status = YearStatus.ACTIVE.value
        ay.activated_at = datetime.utcnow()
        ay.activated_by = actor_id
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Another academic year was activated concurrently")
        await db.refresh(ay)

    logger.info("Academic year %s activated for tenant %s", ay.year_number, tenant_id)
    effects.record(tenant_id, actor_id, "ACTIVATE", ENTITY, ay.id, before=before, after=_state(ay))
    return ActivateAcademicYearResponse(academic_year=_to_response(ay), changed=True)


async def check_year_closure(db: AsyncSession, tenant_id: UUID, academic_year_id: UUID) -> ClosureCheck:
    """Dry run of the closure checklist. Does not change anything."""
    ay = await _get_year(db, tenant_id, academic_year_id)
    academic_type = await get_academic_type(db, tenant_id)
    return await get_closure_validator(academic_type).validate(db, ay)


async def close_year(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year_id: UUID,
    effects: SideEffects,
    actor_id: Optional[UUID] = None,
    justification: Optional[str] = None,
    require_justification: Optional[bool] = None,
) -> CloseAcademicYearResponse:
    """
    ACTIVE -> CLOSED after every closure precondition holds.

    Raises ConflictError (not ACTIVE), ValidationError (justification required but blank)
    or PreconditionFailure (with every unmet condition). Snapshot or progression failures
    after the commit never undo the closure; they come back as warnings.
    """
    ay = await _get_year(db, tenant_id, academic_year_id)
    ensure_transition(YEAR_TRANSITIONS, "academic year", ay.status, YearStatus.CLOSED.value)

    if require_justification is None:
        require_justification = settings.closure_requires_justification
    justification = (justification or "").strip() or None
    if require_justification and not justification:
        raise ValidationError("A justification is required to close an academic year")

    academic_type = await get_academic_type(db, tenant_id)
    check = await get_closure_validator(academic_type).validate(db, ay)
    check.raise_if_failed(ay.year_number)

    statistics = await collect_year_statistics(effects.session_factory, ay)

    async with transition_locks.for_scope("year", tenant_id):
        await db.refresh(ay)
        ensure_transition(YEAR_TRANSITIONS, "academic year", ay.status, YearStatus.CLOSED.value)
        before = _state(ay)
        ay.status = YearStatus.CLOSED.value
        ay.closed_at = datetime.utcnow()
        ay.closed_by = actor_id
        ay.closure_justification = justification
        await db.commit()
        await db.refresh(ay)

    year_id, year_number = ay.id, ay.year_number
    logger.info("Academic year %s closed for tenant %s", year_number, tenant_id)

    async def _snapshot():
        async with effects.session_factory() as session:
            return await effects.snapshots.generate(session, tenant_id, year_id, generated_by=actor_id)

    async def _progression():
        async with effects.session_factory() as session:
            return await effects.progression.calculate(session, tenant_id, year_id, academic_type)

    (snapshot, snapshot_failure), (progression, progression_failure) = await asyncio.gather(
        effects.dispatcher.run("historical_snapshot", _snapshot, academic_year_id=year_id, tenant_id=tenant_id),
        effects.dispatcher.run("progression", _progression, academic_year_id=year_id, tenant_id=tenant_id),
    )

    warnings: List[SideEffectWarning] = []
    historical_generated = 0
    historical_errors: List[Dict[str, Any]] = []
    if snapshot_failure:
        warnings.append(SideEffectWarning(**snapshot_failure.to_dict()))
        historical_errors.append({"reason": snapshot_failure.reason})
    else:
        historical_generated = snapshot.generated
        historical_errors = [e.to_dict() for e in snapshot.errors]
        if snapshot.errors:
            warnings.append(
                SideEffectWarning(
                    name="historical_snapshot",
                    reason=f"{len(snapshot.errors)} students missing historical records",
                    details={str(e.student_id): e.reason for e in snapshot.errors},
                )
            )

    progression_summary = ProgressionSummaryResponse()
    if progression_failure:
        warnings.append(SideEffectWarning(**progression_failure.to_dict()))
    else:
        progression_summary = ProgressionSummaryResponse(
            updated=progression.updated,
            skipped=progression.skipped,
            failures=[ProgressionFailureResponse(**f.__dict__) for f in progression.failures],
        )
        if progression.failures:
            warnings.append(
                SideEffectWarning(
                    name="progression",
                    reason=f"{len(progression.failures)} students missing progression records",
                    details={str(f.student_id): f.reason for f in progression.failures},
                )
            )
        for update in progression.updates:
            effects.record(
                tenant_id,
                actor_id,
                "PROGRESSION",
                "ENROLLMENT",
                update.enrollment_id,
                after=update.to_dict(),
                note=f"Year {year_number} closure",
            )

    after = _state(ay)
    after.update(
        {
            "statistics": statistics.to_dict(),
            "historical_records_generated": historical_generated,
            "historical_errors": historical_errors,
            "progression_updated": progression_summary.updated,
            "progression_failures": [f.to_dict() for f in progression.failures] if progression else [],
        }
    )
    effects.record(tenant_id, actor_id, "CLOSE", ENTITY, year_id, before=before, after=after, note=justification)
    effects.dispatcher.dispatch(
        "notify_year_closed",
        lambda: effects.notifier.notify_year_closed(tenant_id, year_id, year_number, statistics.to_dict()),
        academic_year_id=year_id,
        tenant_id=tenant_id,
    )

    return CloseAcademicYearResponse(
        academic_year=_to_response(ay),
        statistics=YearStatisticsResponse(**statistics.to_dict()),
        historical_records_generated=historical_generated,
        historical_errors=historical_errors,
        progression=progression_summary,
        warnings=warnings,
    )
