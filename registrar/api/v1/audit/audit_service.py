"""
Audit trail for academic period transitions and progression updates.
Append-only: entries are inserted, never updated or deleted.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from registrar.core.models import AuditLog

from .schemas import AuditLogResponse

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


async def log_audit(
    db: AsyncSession,
    tenant_id: UUID,
    entity_type: str,
    entity_id: UUID,
    action: str,
    *,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    performed_by: Optional[UUID] = None,
    remarks: Optional[str] = None,
) -> None:
    """Append one audit log entry. Caller must commit."""
    entry = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        before_data=_jsonable(before) if before is not None else None,
        after_data=_jsonable(after) if after is not None else None,
        performed_by=performed_by,
        remarks=remarks,
        timestamp=datetime.utcnow(),
    )
    db.add(entry)


class AuditTrail:
    """Write-only sink used after a transition commits. Each entry gets its own session."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def log(
        self,
        tenant_id: UUID,
        actor: Optional[UUID],
        action: str,
        entity: str,
        entity_id: UUID,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            await log_audit(
                session,
                tenant_id,
                entity,
                entity_id,
                action,
                from_status=(before or {}).get("status"),
                to_status=(after or {}).get("status"),
                before=before,
                after=after,
                performed_by=actor,
                remarks=note,
            )
            await session.commit()
        logger.debug("Audit %s %s %s recorded", action, entity, entity_id)


async def list_audit_entries(
    db: AsyncSession,
    tenant_id: UUID,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLogResponse]:
    """Most recent audit entries for the tenant, optionally narrowed to one entity or action."""
    stmt = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.timestamp.desc()).limit(limit)
    result = await db.execute(stmt)
    return [AuditLogResponse.model_validate(row) for row in result.scalars().all()]
