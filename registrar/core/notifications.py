"""Best-effort notifications to institution administrators.

Delivery goes through a :class:`NotificationChannel`; the default is SMTP email
via aiosmtplib. Every recipient is attempted independently: one unreachable
mailbox never stops delivery to the others, and nothing here raises back into
the state transition that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

import aiosmtplib
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from registrar.auth.models import User
from registrar.core.config import Settings, settings
from registrar.core.enums import ADMIN_ROLES

logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class NotificationPayload:
    """Everything a channel needs to deliver one message to one recipient."""

    notification_type: str
    subject: str
    message: str
    recipient_id: UUID
    recipient_email: Optional[str]
    recipient_name: str = "Administrator"
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChannelResult:
    status: DeliveryStatus
    recipient_id: UUID
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None


@dataclass
class NotificationReport:
    """Per-recipient outcome of one notification fan-out."""

    sent: List[UUID] = field(default_factory=list)
    failed: Dict[UUID, str] = field(default_factory=dict)
    skipped: Dict[UUID, str] = field(default_factory=dict)


class NotificationChannel(ABC):
    @abstractmethod
    async def send(self, payload: NotificationPayload) -> ChannelResult:
        ...


class EmailChannel(NotificationChannel):
    """SMTP delivery. Skips (does not fail) when SMTP is not configured."""

    def __init__(self, config: Settings = settings) -> None:
        self.config = config

    @property
    def configured(self) -> bool:
        return bool(self.config.smtp_host and self.config.smtp_from_email)

    async def send(self, payload: NotificationPayload) -> ChannelResult:
        if not self.configured:
            return ChannelResult(DeliveryStatus.SKIPPED, payload.recipient_id, "Email channel not configured")
        if not payload.recipient_email:
            return ChannelResult(DeliveryStatus.SKIPPED, payload.recipient_id, "No recipient email address")

        message = self._build_message(payload)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                username=self.config.smtp_username,
                password=self.config.smtp_password,
                start_tls=self.config.smtp_use_tls,
            )
        except aiosmtplib.SMTPException as exc:
            logger.error("Failed to send email to %s: %s", payload.recipient_email, exc)
            return ChannelResult(DeliveryStatus.FAILED, payload.recipient_id, f"SMTP error: {exc}")

        logger.info("Email sent to %s: %s", payload.recipient_email, payload.subject)
        return ChannelResult(DeliveryStatus.SENT, payload.recipient_id, sent_at=datetime.now(timezone.utc))

    def _build_message(self, payload: NotificationPayload) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = f"{self.config.smtp_from_name} <{self.config.smtp_from_email}>"
        message["To"] = payload.recipient_email
        message["Subject"] = payload.subject
        message.attach(MIMEText(payload.message, "plain", "utf-8"))
        return message


def _year_closed_message(name: str, year_number: int, statistics: Dict[str, int]) -> str:
    lines = [
        f"Dear {name},",
        "",
        f"Academic year {year_number} was closed on {datetime.now(timezone.utc):%Y-%m-%d}.",
        "",
        "Figures at closure:",
        f"  Classes: {statistics.get('classes', 0)}",
        f"  Active students: {statistics.get('active_students', 0)}",
        f"  Evaluations: {statistics.get('evaluations', 0)}",
        f"  Grades: {statistics.get('grades', 0)}",
        f"  Lessons: {statistics.get('lessons', 0)}",
        f"  Attendance records: {statistics.get('attendance_records', 0)}",
    ]
    return "\n".join(lines)


class NotificationDispatcher:
    """Resolves recipients and fans a notification out through a channel."""

    def __init__(self, session_factory: async_sessionmaker, channel: Optional[NotificationChannel] = None) -> None:
        self.session_factory = session_factory
        self.channel = channel or EmailChannel()

    async def _administrators(self, tenant_id: UUID) -> List[User]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(User)
                .where(
                    User.tenant_id == tenant_id,
                    User.role.in_(ADMIN_ROLES),
                    User.status == "ACTIVE",
                )
                .order_by(User.full_name)
            )
            return list(result.scalars().all())

    async def notify_year_closed(
        self,
        tenant_id: UUID,
        academic_year_id: UUID,
        year_number: int,
        statistics: Dict[str, int],
    ) -> NotificationReport:
        """Send "year closed" to every administrator of the tenant, each attempt isolated."""
        report = NotificationReport()
        for admin in await self._administrators(tenant_id):
            payload = NotificationPayload(
                notification_type="ACADEMIC_YEAR_CLOSED",
                subject=f"Academic year {year_number} closed",
                message=_year_closed_message(admin.full_name or "Administrator", year_number, statistics),
                recipient_id=admin.id,
                recipient_email=admin.email,
                recipient_name=admin.full_name or "Administrator",
                data={"academic_year_id": str(academic_year_id), "statistics": statistics},
            )
            try:
                result = await self.channel.send(payload)
            except Exception as exc:  # noqa: BLE001
                logger.error("Notification to %s failed (not critical): %s", admin.email, exc)
                report.failed[admin.id] = str(exc) or exc.__class__.__name__
                continue
            if result.status == DeliveryStatus.SENT:
                report.sent.append(admin.id)
            elif result.status == DeliveryStatus.FAILED:
                report.failed[admin.id] = result.error_message or "delivery failed"
            else:
                report.skipped[admin.id] = result.error_message or "skipped"

        if report.failed:
            logger.warning(
                "Year %s closure notification: %d sent, %d failed",
                year_number,
                len(report.sent),
                len(report.failed),
            )
        return report
