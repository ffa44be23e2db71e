import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from registrar.db.session import Base


class Tenant(Base):
    """
    Institution in the multi-tenant platform.

    - academic_type selects the sub-period kind and the closure rule set:
      HIGHER_EDUCATION -> semesters, SECONDARY -> trimesters, null -> unknown (both checked).
    - organization_code: external human-readable identifier, never used as a foreign key.
    """

    __tablename__ = "tenants"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_code = Column(String(20), unique=True, nullable=False, index=True)
    organization_name = Column(String(255), nullable=False)
    academic_type = Column(String(30), nullable=True)  # HIGHER_EDUCATION | SECONDARY | null
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")
