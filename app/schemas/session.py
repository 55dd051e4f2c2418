# app/schemas/session.py

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from app.schemas.answers import Answer


class SessionState(BaseModel):
    """
    Checkpointed working state of one in-progress attempt.

    This is exactly what the Session Store holds between reloads. Times are
    epoch seconds; remaining fields are ``None`` when that clock is untimed.
    """
    started_at: float
    last_tick_at: float

    current_index: int = 0
    answers: Dict[str, Answer] = Field(default_factory=dict)
    per_question_time_spent: Dict[str, int] = Field(default_factory=dict)

    remaining_overall_seconds: Optional[int] = None
    remaining_question_seconds: Optional[int] = None


class FinalizationResultView(BaseModel):
    record_id: Optional[str] = None
    trigger: str
    score_pct: Optional[int] = None
    earned: float = 0
    total: float = 0
    passed: Optional[bool] = None
    attempt_count: int
    max_attempts: int
    retake_allowed: bool


class SessionView(BaseModel):
    """Read-only snapshot served to the client."""
    assignment_id: str
    phase: str
    current_index: int
    question_count: int
    progress_pct: int
    question: Optional[Dict[str, Any]] = None
    current_answer: Optional[Any] = None

    timing_mode: str
    remaining_overall_seconds: Optional[int] = None
    remaining_question_seconds: Optional[int] = None
    effective_question_remaining: Optional[int] = None
    overall_clock: Optional[str] = None
    question_clock: Optional[str] = None

    attempt_count: int
    max_attempts: int

    pending_trigger: Optional[str] = None
    last_error: Optional[str] = None
    result: Optional[FinalizationResultView] = None


class AdvanceResponse(BaseModel):
    # rejected | advanced | submitted | ignored | failed
    outcome: str
    warning: Optional[str] = None
    session: SessionView
