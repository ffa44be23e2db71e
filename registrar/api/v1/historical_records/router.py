from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.auth.dependencies import get_current_user
from registrar.auth.rbac import check_permission
from registrar.auth.schemas import CurrentUser
from registrar.db.session import get_db

from .schemas import HistoricalRecordResponse
from .service import list_student_history

router = APIRouter(prefix="/api/v1/historical-records", tags=["historical-records"])


@router.get(
    "/students/{student_id}",
    response_model=List[HistoricalRecordResponse],
    dependencies=[Depends(check_permission("historical_records", "read"))],
)
async def get_student_history(
    student_id: UUID,
    academic_year_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[HistoricalRecordResponse]:
    """Frozen outcomes of a student for every closed academic year."""
    return await list_student_history(db, current_user.tenant_id, student_id, academic_year_id=academic_year_id)
