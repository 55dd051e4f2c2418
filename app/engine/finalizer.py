# app/engine/finalizer.py

"""
FINALIZATION PIPELINE - the only path to "submitted".

Several independent triggers can converge here at once (a timeout tick and
a user click in the same second). A two-bit guard, checked and set under one
lock, lets exactly one of them through:

    in_progress  completed   call
    -----------  ---------   ----------------------------
        0            0       proceeds, sets in_progress
        1            0       ignored (another call is running)
        0            1       ignored (already submitted)

STEPS (under the guard):
1. Stop the tick scheduler
2. Collect unanswered question ids
3. Duration = now - started_at
4. Auto-grade
5. Persist the SubmissionRecord (attempt_number = attempt_count + 1)
6. Mark the assignment submitted, attempt_count += 1, last_score_pct
7. Delete the recovery checkpoint
8. completed = 1, in_progress = 0, return the result

A storage failure in 4-7 releases only in_progress and keeps the checkpoint,
so the participant can retry. Steps that already reached storage are
remembered and not repeated by the retry. Once the record exists the attempt
is fixed: a retry reuses the recorded snapshot, trigger and grading, and
the session refuses further edits.
"""

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.core.clock import Clock, system_clock
from app.engine.grader import AutoGrader, GradingResult, auto_grader
from app.engine.policy import EffectivePolicy, TimingMode, question_limit
from app.engine.retry import is_retake_allowed
from app.schemas.answers import is_answered
from app.schemas.session import FinalizationResultView, SessionState
from app.schemas.template import TemplateQuestion

logger = logging.getLogger(__name__)


class FinalizationTrigger(str, Enum):
    MANUAL_SUBMIT = "manual_submit"
    PER_QUESTION_TIMEOUT = "per_question_timeout"
    OVERALL_TIMEOUT = "overall_timeout"


class FinalizationGuard:
    IN_PROGRESS = 0b01
    COMPLETED = 0b10

    def __init__(self):
        self._flags = 0
        self._lock = threading.Lock()

    def try_begin(self) -> bool:
        """Atomic compare-and-swap 00 -> 01."""
        with self._lock:
            if self._flags:
                return False
            self._flags = self.IN_PROGRESS
            return True

    def complete(self) -> None:
        with self._lock:
            self._flags = self.COMPLETED

    def release(self) -> None:
        with self._lock:
            self._flags &= ~self.IN_PROGRESS

    @property
    def in_progress(self) -> bool:
        return bool(self._flags & self.IN_PROGRESS)

    @property
    def completed(self) -> bool:
        return bool(self._flags & self.COMPLETED)


@dataclass
class FinalizationResult:
    record_id: str
    trigger: FinalizationTrigger
    grading: GradingResult
    attempt_count: int
    max_attempts: int
    retake_allowed: bool

    def to_view(self) -> FinalizationResultView:
        return FinalizationResultView(
            record_id=self.record_id,
            trigger=self.trigger.value,
            score_pct=self.grading.score_pct,
            earned=self.grading.earned,
            total=self.grading.total,
            passed=self.grading.passed,
            attempt_count=self.attempt_count,
            max_attempts=self.max_attempts,
            retake_allowed=self.retake_allowed,
        )


@dataclass
class FinalizationOutcome:
    # submitted | ignored | failed
    status: str
    result: Optional[FinalizationResult] = None
    error: Optional[str] = None


class FinalizationPipeline:
    """
    Grades and records one attempt exactly once.

    Stores are duck-typed:
    - ``results_store.create(payload) -> record_id``
    - ``assignment_store.mark_submitted(assignment_id, score_pct, submitted_at) -> attempt_count``
    - ``session_store.delete(assignment_id)``
    """

    def __init__(
        self,
        assignment_id: str,
        template_id: str,
        participant_id: str,
        questions: Sequence[TemplateQuestion],
        policy: EffectivePolicy,
        attempt_count: int,
        results_store,
        assignment_store,
        session_store,
        clock: Clock = system_clock,
        grader: AutoGrader = auto_grader,
    ):
        self.assignment_id = assignment_id
        self.template_id = template_id
        self.participant_id = participant_id
        self.questions = list(questions)
        self.policy = policy
        self.attempt_count = attempt_count

        self.results_store = results_store
        self.assignment_store = assignment_store
        self.session_store = session_store
        self.clock = clock
        self.grader = grader

        self.guard = FinalizationGuard()
        self._stop_ticker: Callable[[], None] = lambda: None

        # Progress of a partially failed run. Once anything reached storage the
        # attempt is fixed: retries reuse the same snapshot, trigger and grading.
        self._snapshot: Optional[SessionState] = None
        self._trigger: Optional[FinalizationTrigger] = None
        self._grading: Optional[GradingResult] = None
        self._record_id: Optional[str] = None
        self._new_attempt_count: Optional[int] = None
        self._checkpoint_deleted = False

    def attach_ticker(self, stop: Callable[[], None]) -> None:
        self._stop_ticker = stop

    @property
    def committed(self) -> bool:
        """True once a failed run already wrote part of the attempt to storage."""
        return self._record_id is not None

    def unanswered_ids(self, state: SessionState) -> List[str]:
        return [q.id for q in self.questions if not is_answered(state.answers.get(q.id))]

    def _per_question_limits(self) -> Dict[str, int]:
        if self.policy.timing_mode != TimingMode.PER_QUESTION:
            return {}
        limits = {}
        for q in self.questions:
            limit = question_limit(self.policy, q)
            if limit:
                limits[q.id] = limit
        return limits

    def build_record(
        self,
        state: SessionState,
        trigger: FinalizationTrigger,
        unanswered: List[str],
        duration_seconds: int,
        grading: GradingResult,
    ) -> Dict[str, Any]:
        question_count = len(self.questions)
        return {
            "assignment_id": self.assignment_id,
            "template_id": self.template_id,
            "participant_id": self.participant_id,
            "attempt_number": self.attempt_count + 1,
            "answers": {qid: a.model_dump(mode="json") for qid, a in state.answers.items()},
            "completion": {
                "trigger": trigger.value,
                "question_count": question_count,
                "answered_count": question_count - len(unanswered),
                "unanswered_count": len(unanswered),
                "last_index": state.current_index,
            },
            "timing": {
                "started_at": state.started_at,
                "duration_seconds": duration_seconds,
                "per_question_time_spent": dict(state.per_question_time_spent),
                "unanswered_ids": unanswered,
                "timing_mode": self.policy.timing_mode.value,
                "overall_seconds": (
                    self.policy.overall_seconds or None
                    if self.policy.timing_mode == TimingMode.OVERALL
                    else None
                ),
                "per_question_limits": self._per_question_limits(),
            },
            "grading": grading.as_dict(),
            "submitted_at": self.clock.utcnow(),
        }

    def finalize(self, state: SessionState, trigger: FinalizationTrigger) -> FinalizationOutcome:
        if not self.guard.try_begin():
            logger.info(
                "Finalization for %s ignored (%s): already %s",
                self.assignment_id, trigger.value,
                "completed" if self.guard.completed else "in progress",
            )
            return FinalizationOutcome(status="ignored")

        if self.committed:
            # Finish the attempt that is already on record, not the caller's copy
            state, trigger, grading = self._snapshot, self._trigger, self._grading

        logger.info("Finalizing %s with trigger %s", self.assignment_id, trigger.value)

        # 1-3 cannot fail on storage
        self._stop_ticker()
        unanswered = self.unanswered_ids(state)
        duration = max(1, int(math.floor(self.clock.now() - state.started_at)))

        try:
            if not self.committed:
                # 4. Grade
                grading = self.grader.grade(self.questions, state.answers, self.policy)

                # 5. Record the attempt
                record = self.build_record(state, trigger, unanswered, duration, grading)
                self._record_id = self.results_store.create(record)
                self._snapshot = state.model_copy(deep=True)
                self._trigger = trigger
                self._grading = grading

            # 6. Assignment -> submitted, attempt_count += 1
            if self._new_attempt_count is None:
                self._new_attempt_count = self.assignment_store.mark_submitted(
                    self.assignment_id,
                    score_pct=grading.score_pct,
                    submitted_at=self.clock.utcnow(),
                )

            # 7. No resume after a real submission
            if not self._checkpoint_deleted:
                self.session_store.delete(self.assignment_id)
                self._checkpoint_deleted = True

        except Exception as exc:
            self.guard.release()
            logger.exception("Finalization for %s failed", self.assignment_id)
            return FinalizationOutcome(status="failed", error=f"Failed to submit assessment: {exc}")

        self.guard.complete()

        result = FinalizationResult(
            record_id=self._record_id,
            trigger=trigger,
            grading=grading,
            attempt_count=self._new_attempt_count,
            max_attempts=self.policy.max_attempts,
            retake_allowed=is_retake_allowed(self.policy, self._new_attempt_count, grading.score_pct),
        )
        logger.info(
            "Submitted %s: attempt %d/%d, score=%s, retake_allowed=%s",
            self.assignment_id, result.attempt_count, result.max_attempts,
            grading.score_pct, result.retake_allowed,
        )
        return FinalizationOutcome(status="submitted", result=result)
