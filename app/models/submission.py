from sqlalchemy import Column, String, Integer, JSON, DateTime, func
from app.db.base import Base
import uuid


class SubmissionRecord(Base):
    __tablename__ = "submission_records"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))

    assignment_id = Column(String(64), nullable=False, index=True)
    template_id = Column(String(64), nullable=False)
    participant_id = Column(String(128), nullable=False)

    attempt_number = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="submitted")

    answers = Column(JSON, nullable=False)

    # {trigger, question_count, answered_count, unanswered_count, last_index}
    completion = Column(JSON, nullable=False)
    # {started_at, duration_seconds, per_question_time_spent, unanswered_ids, limits...}
    timing = Column(JSON, nullable=False)
    # {applicable, auto_gradable_count, earned, total, score_pct, passed, by_question}
    grading = Column(JSON, nullable=False)

    submitted_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
