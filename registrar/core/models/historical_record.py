"""Immutable academic history, generated once when an academic year is closed."""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from registrar.db.session import Base


class HistoricalRecord(Base):
    """
    One frozen outcome per annual enrollment per closure. Rows are only ever inserted.
    subjects holds one entry per teaching plan: subject, average, lessons, presences,
    absences, justified_absences, attendance_rate, outcome.
    """

    __tablename__ = "historical_records"
    __table_args__ = (
        UniqueConstraint(
            "academic_year_id", "enrollment_id", "snapshot_key", name="uq_historical_record_year_enrollment_key"
        ),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    enrollment_id = Column(UUID(as_uuid=True), ForeignKey("school.annual_enrollments.id"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="RESTRICT"), nullable=False, index=True)
    snapshot_key = Column(String(50), nullable=False)
    class_id = Column(UUID(as_uuid=True), nullable=True)
    level_label = Column(String(100), nullable=True)
    subjects = Column(JSON, nullable=False, default=list)
    overall_average = Column(Float, nullable=True)
    outcome = Column(String(20), nullable=False)  # PASSED | FAILED | PENDING
    generated_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    generated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
