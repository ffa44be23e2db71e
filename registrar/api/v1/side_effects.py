"""
Collaborators the lifecycle services hand work to after a transition commits,
and the FastAPI dependencies that build them per request.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from registrar.api.v1.audit.audit_service import AuditTrail
from registrar.api.v1.historical_records.service import SnapshotGenerator
from registrar.api.v1.progression.service import ProgressionCalculator
from registrar.core.dispatch import SideEffectDispatcher, get_dispatcher
from registrar.core.notifications import EmailChannel, NotificationChannel, NotificationDispatcher
from registrar.db.session import get_session_factory


@dataclass
class SideEffects:
    session_factory: async_sessionmaker
    dispatcher: SideEffectDispatcher
    audit: AuditTrail
    notifier: NotificationDispatcher
    snapshots: SnapshotGenerator = field(default_factory=SnapshotGenerator)
    progression: ProgressionCalculator = field(default_factory=ProgressionCalculator)

    def record(
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
        """Queue an audit entry; the caller's response does not wait for it."""
        self.dispatcher.dispatch(
            f"audit:{action}",
            lambda: self.audit.log(tenant_id, actor, action, entity, entity_id, before, after, note),
            tenant_id=tenant_id,
            entity=entity,
            entity_id=entity_id,
        )


def build_side_effects(
    session_factory: async_sessionmaker,
    dispatcher: SideEffectDispatcher,
    channel: Optional[NotificationChannel] = None,
) -> SideEffects:
    return SideEffects(
        session_factory=session_factory,
        dispatcher=dispatcher,
        audit=AuditTrail(session_factory),
        notifier=NotificationDispatcher(session_factory, channel),
    )


def get_side_effect_dispatcher() -> SideEffectDispatcher:
    return get_dispatcher()


def get_notification_channel() -> NotificationChannel:
    return EmailChannel()


def get_side_effects(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    dispatcher: SideEffectDispatcher = Depends(get_side_effect_dispatcher),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> SideEffects:
    return build_side_effects(session_factory, dispatcher, channel)
