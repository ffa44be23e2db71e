from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.auth.dependencies import get_current_user
from registrar.auth.rbac import check_permission
from registrar.auth.schemas import CurrentUser
from registrar.db.session import get_db

from .audit_service import list_audit_entries
from .schemas import AuditLogResponse

router = APIRouter(prefix="/api/v1/audit-logs", tags=["audit-logs"])


@router.get(
    "",
    response_model=List[AuditLogResponse],
    dependencies=[Depends(check_permission("audit_logs", "read"))],
)
async def list_audit_logs(
    entity_type: Optional[str] = Query(None, description="ACADEMIC_YEAR, SUB_PERIOD, ENROLLMENT"),
    entity_id: Optional[UUID] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[AuditLogResponse]:
    """Audit entries for the current tenant, newest first."""
    return await list_audit_entries(
        db, current_user.tenant_id, entity_type=entity_type, entity_id=entity_id, action=action, limit=limit
    )
