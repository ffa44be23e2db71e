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
    ActivateSubPeriodResponse,
    SubPeriodCancelRequest,
    SubPeriodCloseRequest,
    SubPeriodCreate,
    SubPeriodResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/sub-periods", tags=["sub-periods"])


@router.post(
    "",
    response_model=SubPeriodResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("sub_periods", "create"))],
)
async def create_sub_period(
    payload: SubPeriodCreate,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> SubPeriodResponse:
    try:
        return await service.create_sub_period(db, current_user.tenant_id, payload, effects, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[SubPeriodResponse],
    dependencies=[Depends(check_permission("sub_periods", "read"))],
)
async def list_sub_periods(
    academic_year_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[SubPeriodResponse]:
    return await service.list_sub_periods(db, current_user.tenant_id, academic_year_id=academic_year_id)


@router.post(
    "/{sub_period_id}/activate",
    response_model=ActivateSubPeriodResponse,
    dependencies=[Depends(check_permission("sub_periods", "activate"))],
)
async def activate_sub_period(
    sub_period_id: UUID,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> ActivateSubPeriodResponse:
    """Open a semester/trimester. The year must be ACTIVE and the previous one finished."""
    try:
        return await service.activate_period(db, current_user.tenant_id, sub_period_id, effects, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{sub_period_id}/close",
    response_model=SubPeriodResponse,
    dependencies=[Depends(check_permission("sub_periods", "close"))],
)
async def close_sub_period(
    sub_period_id: UUID,
    payload: Optional[SubPeriodCloseRequest] = None,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> SubPeriodResponse:
    try:
        return await service.close_period(
            db,
            current_user.tenant_id,
            sub_period_id,
            effects,
            actor_id=current_user.id,
            justification=payload.justification if payload else None,
        )
    except PreconditionFailure as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{sub_period_id}/cancel",
    response_model=SubPeriodResponse,
    dependencies=[Depends(check_permission("sub_periods", "cancel"))],
)
async def cancel_sub_period(
    sub_period_id: UUID,
    payload: SubPeriodCancelRequest,
    db: AsyncSession = Depends(get_db),
    effects: SideEffects = Depends(get_side_effects),
    current_user: CurrentUser = Depends(get_current_user),
) -> SubPeriodResponse:
    """Cancel a PLANNED or ACTIVE sub-period. Requires a justification."""
    try:
        return await service.cancel_period(
            db, current_user.tenant_id, sub_period_id, payload.justification, effects, current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
