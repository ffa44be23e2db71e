import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from registrar.db.session import Base


class AnnualEnrollment(Base):
    """
    Student enrollment per academic year.
    final_status / suggested_next_level stay null until the year is closed, then are set once.
    year_number duplicates the year as a plain number: older rows were linked only by it
    (academic_year_id null), so lookups for a year must match either column.
    """

    __tablename__ = "annual_enrollments"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="CASCADE"), nullable=False)
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.academic_years.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    year_number = Column(Integer, nullable=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id"), nullable=True)
    level_label = Column(String(100), nullable=True)  # e.g. "10th Grade", "2nd Year"
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | CANCELLED | TRANSFERRED
    final_status = Column(String(20), nullable=True)  # PASSED | FAILED | PENDING
    suggested_next_level = Column(String(100), nullable=True)
    suggested_next_class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id"), nullable=True)
    progression_computed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("User", backref="annual_enrollments")
    academic_year = relationship("AcademicYear", backref="enrollments")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
