import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Float

from app.db.base import Base


# =========================
# Assignment Request
# =========================
class AssignmentRequest(Base):
    """One exam instance for one participant."""

    __tablename__ = "assignment_requests"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))

    template_id = Column(
        String(64),
        ForeignKey("assessment_templates.id"),
        nullable=True,
    )

    participant_id = Column(String(128), nullable=False, index=True)
    participant_name = Column(String(255), nullable=True)
    participant_email = Column(String(255), nullable=True)
    company_code = Column(String(64), nullable=True)

    # not_started | in_progress | submitted
    status = Column(String(50), nullable=False, default="not_started")

    # Submitted attempts only
    attempt_count = Column(Integer, nullable=False, default=0)
    last_score_pct = Column(Float, nullable=True)

    # Per-assignment policy overrides (None = use template)
    timing_mode = Column(String(20), nullable=True)
    overall_time_seconds = Column(Integer, nullable=True)
    max_attempts = Column(Integer, nullable=True)
    time_window_enabled = Column(Boolean, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    retake_requested_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
