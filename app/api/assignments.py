from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.assignment import AssignmentRequest
from app.models.submission import SubmissionRecord
from app.schemas.assignment import AssignmentView, SubmissionRecordView
from app.services.registry import SessionRegistry, get_registry
from app.services.retake import RetakeDenied, RetakeService

router = APIRouter(prefix="/assignments", tags=["Assignments"])


@router.get("/{assignment_id}", response_model=AssignmentView)
def get_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
):
    request = db.get(AssignmentRequest, assignment_id)
    if not request:
        raise HTTPException(status_code=404, detail="Assessment request not found")
    return request


@router.post("/{assignment_id}/retake", response_model=AssignmentView)
def retake_assignment(
    assignment_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    try:
        request = RetakeService.request_retake(
            assignment_id,
            assignments=registry.assignments,
            templates=registry.templates,
            sessions=registry.sessions,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RetakeDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    registry.discard(assignment_id)
    return request


@router.get("/{assignment_id}/submissions", response_model=List[SubmissionRecordView])
def list_submissions(
    assignment_id: str,
    db: Session = Depends(get_db),
):
    """
    Submitted attempts for one assignment, oldest first. Records are
    append-only; there is no update or delete route.
    """
    return (
        db.query(SubmissionRecord)
        .filter(SubmissionRecord.assignment_id == assignment_id)
        .order_by(SubmissionRecord.attempt_number)
        .all()
    )
