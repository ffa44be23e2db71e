from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubPeriodCreate(BaseModel):
    """
    Create a semester or trimester (status PLANNED).
    kind may be omitted when the institution type implies it.
    """

    academic_year_id: UUID
    kind: Optional[str] = Field(None, description="SEMESTER | TRIMESTER")
    ordinal: int = Field(..., ge=1, description="1-2 for semesters, 1-3 for trimesters")
    start_date: date
    end_date: Optional[date] = None


class SubPeriodResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    academic_year_id: UUID
    kind: str
    ordinal: int
    start_date: date
    end_date: Optional[date] = None
    status: str
    activated_at: Optional[datetime] = None
    activated_by: Optional[UUID] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[UUID] = None
    closure_justification: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ActivateSubPeriodResponse(BaseModel):
    sub_period: SubPeriodResponse
    changed: bool = Field(..., description="False when the sub-period was already ACTIVE")


class SubPeriodCloseRequest(BaseModel):
    justification: Optional[str] = Field(None, max_length=2000)


class SubPeriodCancelRequest(BaseModel):
    justification: str = Field(..., max_length=2000, description="Required reason for cancelling")
