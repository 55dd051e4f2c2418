# app/schemas/assignment.py

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AssignmentView(BaseModel):
    id: str
    template_id: Optional[str] = None
    participant_id: str
    status: str
    attempt_count: int
    last_score_pct: Optional[float] = None
    submitted_at: Optional[datetime] = None
    retake_requested_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubmissionRecordView(BaseModel):
    id: str
    assignment_id: str
    template_id: str
    participant_id: str
    attempt_number: int
    status: str
    answers: Dict[str, Any]
    completion: Dict[str, Any]
    timing: Dict[str, Any]
    grading: Dict[str, Any]
    submitted_at: datetime

    class Config:
        from_attributes = True
