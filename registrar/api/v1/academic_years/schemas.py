from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AcademicYearCreate(BaseModel):
    """Create academic year (status PLANNED). year_number must be unique per tenant."""

    year_number: int = Field(..., ge=1900, le=2200, description="e.g. 2024")
    start_date: date = Field(..., description="Academic year start date")
    end_date: Optional[date] = Field(None, description="Academic year end date (after start_date when set)")
    notes: Optional[str] = None


class AcademicYearUpdate(BaseModel):
    """Update dates or notes. Not allowed once the year is CLOSED."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None


class AcademicYearResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    year_number: int
    start_date: date
    end_date: Optional[date] = None
    status: str
    notes: Optional[str] = None
    activated_at: Optional[datetime] = None
    activated_by: Optional[UUID] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[UUID] = None
    closure_justification: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ActivateAcademicYearResponse(BaseModel):
    academic_year: AcademicYearResponse
    changed: bool = Field(..., description="False when the year was already ACTIVE")


class CloseAcademicYearRequest(BaseModel):
    justification: Optional[str] = Field(None, max_length=2000)


class UnmetConditionResponse(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = {}


class ClosureCheckResponse(BaseModel):
    academic_year_id: UUID
    academic_type: Optional[str] = None
    passed: bool
    failures: List[UnmetConditionResponse]


class YearStatisticsResponse(BaseModel):
    classes: int
    active_students: int
    evaluations: int
    grades: int
    lessons: int
    attendance_records: int


class ProgressionFailureResponse(BaseModel):
    enrollment_id: UUID
    student_id: UUID
    reason: str


class ProgressionSummaryResponse(BaseModel):
    updated: int = 0
    skipped: int = 0
    failures: List[ProgressionFailureResponse] = []


class SideEffectWarning(BaseModel):
    name: str
    reason: str
    details: Dict[str, Any] = {}


class CloseAcademicYearResponse(BaseModel):
    """Closed year plus the outcome of snapshot generation and progression."""

    academic_year: AcademicYearResponse
    statistics: YearStatisticsResponse
    historical_records_generated: int
    historical_errors: List[Dict[str, Any]] = []
    progression: ProgressionSummaryResponse
    warnings: List[SideEffectWarning] = []
