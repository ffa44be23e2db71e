import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from registrar.db.session import Base


class Evaluation(Base):
    """Assessment under a teaching plan. is_closed=false blocks sub-period and year closure."""

    __tablename__ = "evaluations"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    teaching_plan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.teaching_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String(20), nullable=False, default="REGULAR")  # REGULAR | FINAL_EXAM | REMEDIAL_EXAM
    title = Column(String(255), nullable=False)
    sub_period_ordinal = Column(Integer, nullable=True)  # semester/trimester number, when scoped to one
    weight = Column(Float, nullable=False, default=1.0)
    is_closed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    teaching_plan = relationship("TeachingPlan", backref="evaluations")


class Grade(Base):
    """One student's mark in one evaluation."""

    __tablename__ = "grades"
    __table_args__ = (
        UniqueConstraint("evaluation_id", "student_id", name="uq_grade_evaluation_student"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluation_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.evaluations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="CASCADE"), nullable=False)
    value = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    evaluation = relationship("Evaluation", backref="grades")
