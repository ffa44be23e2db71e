from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.api.v1.side_effects import SideEffects, get_side_effects
from registrar.auth.dependencies import get_current_user
from registrar.auth.rbac import check_permission
from registrar.auth.schemas import CurrentUser
from registrar.core.exceptions import PreconditionFailure, ServiceError
from registrar.db.session import get_db

from .schemas import (
    AcademicYearCreate,
    AcademicYearResponse,
    AcademicYearUpdate,
    ActivateAcademicYearResponse,
    CloseAcademicYearRequest,
    CloseAcademicYearResponse,
    ClosureCheckResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/academic-years", tags=["academic-years"])


@router.post(
    "",
    response_model=AcademicYearResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("academic_years", "create"))],
)
async def create_academic_year(
    payload: AcademicYearCreate,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    """Create a PLANNED academic year."""
    try:
        return await service.create_academic_year(db, current_user.tenant_id, payload, effects, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[AcademicYearResponse],
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def list_academic_years(
    status_filter: Optional[str] = Query(None, description="Filter by status: PLANNED, ACTIVE, CLOSED"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[AcademicYearResponse]:
    return await service.list_academic_years(db, current_user.tenant_id, status_filter=status_filter)


@router.get(
    "/active",
    response_model=Optional[AcademicYearResponse],
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def get_active_academic_year(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Optional[AcademicYearResponse]:
    """The tenant's ACTIVE academic year, or null."""
    return await service.get_active_academic_year(db, current_user.tenant_id)


@router.get(
    "/{academic_year_id}",
    response_model=AcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def get_academic_year(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    try:
        return await service.get_academic_year(db, current_user.tenant_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put(
    "/{academic_year_id}",
    response_model=AcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "update"))],
)
async def update_academic_year(
    academic_year_id: UUID,
    payload: AcademicYearUpdate,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    """Update dates or notes. CLOSED years are read-only."""
    try:
        return await service.update_academic_year(
            db, current_user.tenant_id, academic_year_id, payload, effects, current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{academic_year_id}/activate",
    response_model=ActivateAcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "activate"))],
)
async def activate_academic_year(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> ActivateAcademicYearResponse:
    """PLANNED -> ACTIVE. Only one ACTIVE year per tenant; repeating the call is harmless."""
    try:
        return await service.activate_year(db, current_user.tenant_id, academic_year_id, effects, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{academic_year_id}/closure-check",
    response_model=ClosureCheckResponse,
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def check_academic_year_closure(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ClosureCheckResponse:
    """List every condition that currently blocks closing the year."""
    try:
        check = await service.check_year_closure(db, current_user.tenant_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ClosureCheckResponse(**check.to_dict())


@router.post(
    "/{academic_year_id}/close",
    response_model=CloseAcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "close"))],
)
async def close_academic_year(
    academic_year_id: UUID,
    payload: Optional[CloseAcademicYearRequest] = None,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> CloseAcademicYearResponse:
    """
    ACTIVE -> CLOSED. Fails with 422 and the full list of unmet conditions when the year
    is not ready. Generates historical records and computes progression for every enrollment.
    """
    try:
        return await service.close_year(
            db,
            current_user.tenant_id,
            academic_year_id,
            effects,
            actor_id=current_user.id,
            justification=payload.justification if payload else None,
        )
    except PreconditionFailure as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
