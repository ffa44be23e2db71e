import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from registrar.db.session import Base


class TeachingPlan(Base):
    """
    A subject taught to a class within one academic year. Evaluations and lessons hang off it.
    class_id is optional for higher-education plans scoped to a course rather than a class.
    """

    __tablename__ = "teaching_plans"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id"), nullable=True)
    subject_name = Column(String(255), nullable=False)
    teacher_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    academic_year = relationship("AcademicYear", backref="teaching_plans")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
