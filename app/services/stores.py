# app/services/stores.py

"""
SQL-backed stores the session engine talks to.

Each call opens its own short-lived SQLAlchemy session, so a tick thread and
request threads never share one.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.assignment import AssignmentRequest
from app.models.session_checkpoint import SessionCheckpoint
from app.models.submission import SubmissionRecord
from app.models.template import AssessmentTemplate

SessionFactory = Callable[[], Session]


class TemplateStore:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get(self, template_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            tpl = db.get(AssessmentTemplate, template_id)
            if tpl is None:
                return None
            return {
                "id": tpl.id,
                "title": tpl.title,
                "company_code": tpl.company_code,
                "fields": tpl.fields,
                "assessment_meta": tpl.assessment_meta,
            }


class AssignmentStore:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get(self, assignment_id: str) -> Optional[AssignmentRequest]:
        with self.session_factory() as db:
            request = db.get(AssignmentRequest, assignment_id)
            if request is not None:
                db.expunge(request)
            return request

    def mark_submitted(
        self,
        assignment_id: str,
        score_pct: Optional[float],
        submitted_at: datetime,
    ) -> int:
        """status -> submitted, attempt_count += 1 in SQL. Returns the new count."""
        with self.session_factory() as db:
            result = db.execute(
                update(AssignmentRequest)
                .where(AssignmentRequest.id == assignment_id)
                .values(
                    status="submitted",
                    attempt_count=AssignmentRequest.attempt_count + 1,
                    last_score_pct=score_pct,
                    submitted_at=submitted_at,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise LookupError(f"Assignment request {assignment_id} not found")
            db.commit()
            return db.get(AssignmentRequest, assignment_id).attempt_count

    def reset_for_retake(self, assignment_id: str, requested_at: datetime) -> None:
        """Status reset only; attempt_count and last_score_pct are kept."""
        with self.session_factory() as db:
            db.execute(
                update(AssignmentRequest)
                .where(AssignmentRequest.id == assignment_id)
                .values(
                    status="not_started",
                    retake_requested_at=requested_at,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            db.commit()


class ResultStore:
    """Append-only: records are created once and never updated."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def create(self, payload: Dict[str, Any]) -> str:
        with self.session_factory() as db:
            record = SubmissionRecord(**payload)
            db.add(record)
            db.commit()
            return record.id


class SessionStore:
    """Per-assignment recovery record. Never a grading source of truth."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def load(self, assignment_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            row = db.get(SessionCheckpoint, assignment_id)
            return dict(row.payload) if row is not None else None

    def save(self, assignment_id: str, payload: Dict[str, Any]) -> None:
        with self.session_factory() as db:
            row = db.get(SessionCheckpoint, assignment_id)
            now = datetime.now(timezone.utc)
            if row is None:
                db.add(SessionCheckpoint(assignment_id=assignment_id, payload=payload, updated_at=now))
            else:
                row.payload = payload
                row.updated_at = now
            db.commit()

    def delete(self, assignment_id: str) -> None:
        with self.session_factory() as db:
            row = db.get(SessionCheckpoint, assignment_id)
            if row is not None:
                db.delete(row)
                db.commit()
