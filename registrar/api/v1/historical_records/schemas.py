from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class HistoricalRecordResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    academic_year_id: UUID
    enrollment_id: UUID
    student_id: UUID
    snapshot_key: str
    class_id: Optional[UUID] = None
    level_label: Optional[str] = None
    subjects: List[Dict[str, Any]]
    overall_average: Optional[float] = None
    outcome: str
    generated_by: Optional[UUID] = None
    generated_at: datetime

    class Config:
        from_attributes = True
