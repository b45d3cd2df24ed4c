from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from uuid import UUID
from datetime import datetime


class InconsistentEntry(BaseModel):
    id: UUID
    status: str
    submitted_at: Optional[datetime]
    issue: str


class DiagnosisReport(BaseModel):
    total: int
    by_status: Dict[str, int] = Field(default_factory=dict)
    invalid_statuses: List[str] = Field(default_factory=list)
    inconsistent: List[InconsistentEntry] = Field(default_factory=list)


class RepairDetails(BaseModel):
    invalid_status: int = 0
    draft_with_submission_time: int = 0
    graded_with_record: int = 0
    graded_without_record: int = 0
    submitted_without_time: int = 0


class RepairReport(BaseModel):
    fixed_count: int
    details: RepairDetails
    # Submissions that could not be corrected automatically
    unresolved: List[UUID] = Field(default_factory=list)
