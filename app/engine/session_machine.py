# app/engine/session_machine.py

"""
SESSION STATE MACHINE

Owns navigation, answer capture and the dual countdown of one attempt.

PHASES:
    loading -> blocked | ready
    ready -> answering <-> (tick) -> answering | auto_advancing -> answering
    answering -> finalizing -> finalized
    answering -> exited            (Exit: nothing consumed, checkpoint kept)

A failed finalization that already wrote its record freezes the session
like a timeout does: no edits, no ticks, no exit, only the retry.

Every mutation happens under one re-entrant lock (the serialized update
channel) and is written through to the Session Store before the lock is
released. Finalization runs outside the lock so the session stays readable
while storage is slow; the pipeline's own guard makes it exactly-once.

TICK PRIORITY (same measured dt applied to both clocks first):
1. overall <= 0                      -> finalize, overall_timeout
2. question <= 0 on last question    -> finalize, per_question_timeout
2'. question <= 0 otherwise          -> auto-advance (answer kept)
3. otherwise                         -> checkpoint
"""

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from pydantic import ValidationError

from app.core.clock import Clock, system_clock
from app.engine.finalizer import (
    FinalizationOutcome,
    FinalizationPipeline,
    FinalizationResult,
    FinalizationTrigger,
)
from app.engine.policy import EffectivePolicy, TimingMode, question_limit
from app.engine.ticker import TickScheduler
from app.schemas.answers import answer_value, is_answered
from app.schemas.session import SessionState, SessionView
from app.schemas.template import TemplateQuestion

logger = logging.getLogger(__name__)

REQUIRED_WARNING = "This question is required."

TIMEOUT_TRIGGERS = (FinalizationTrigger.OVERALL_TIMEOUT, FinalizationTrigger.PER_QUESTION_TIMEOUT)


class SessionPhase(str, Enum):
    LOADING = "loading"
    BLOCKED = "blocked"
    READY = "ready"
    ANSWERING = "answering"
    AUTO_ADVANCING = "auto_advancing"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"
    EXITED = "exited"


class SessionError(Exception):
    """An interaction that the session's current phase does not allow."""


@dataclass
class StepOutcome:
    # ticked | advanced | rejected | submitted | ignored | failed
    outcome: str
    warning: Optional[str] = None
    finalization: Optional[FinalizationOutcome] = None


def seconds_to_clock(seconds: Optional[int]) -> Optional[str]:
    if seconds is None:
        return None
    s = max(0, int(seconds))
    return f"{s // 60:02d}:{s % 60:02d}"


class AssessmentSession:
    def __init__(
        self,
        assignment_id: str,
        questions: Sequence[TemplateQuestion],
        policy: EffectivePolicy,
        session_store,
        pipeline: FinalizationPipeline,
        attempt_count: int = 0,
        submitted: bool = False,
        clock: Clock = system_clock,
        scheduler_factory: Optional[Callable[..., Any]] = None,
        tick_interval: float = 1.0,
        on_closed: Optional[Callable[["AssessmentSession"], None]] = None,
    ):
        self.assignment_id = assignment_id
        self.questions: List[TemplateQuestion] = list(questions)
        self.policy = policy
        self.session_store = session_store
        self.pipeline = pipeline
        self.attempt_count = attempt_count
        self.submitted = submitted
        self.clock = clock
        self.on_closed = on_closed

        self.phase = SessionPhase.LOADING
        self.state: Optional[SessionState] = None
        self.blocked_reason: Optional[str] = None
        self.pending_trigger: Optional[FinalizationTrigger] = None
        self.last_error: Optional[str] = None
        self.result: Optional[FinalizationResult] = None

        self._lock = threading.RLock()

        factory = scheduler_factory or TickScheduler
        self.scheduler = factory(self.tick, tick_interval)
        pipeline.attach_ticker(self.scheduler.stop)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @property
    def current_question(self) -> Optional[TemplateQuestion]:
        if self.state is None or not self.questions:
            return None
        return self.questions[self.state.current_index]

    @property
    def is_last(self) -> bool:
        return self.state is not None and self.state.current_index >= len(self.questions) - 1

    def _question_limit_for(self, index: int) -> Optional[int]:
        if self.policy.timing_mode != TimingMode.PER_QUESTION:
            return None
        if index >= len(self.questions):
            return None
        return question_limit(self.policy, self.questions[index])

    def _fresh_state(self) -> SessionState:
        now = self.clock.now()

        overall = None
        if self.policy.timing_mode == TimingMode.OVERALL and self.policy.overall_seconds > 0:
            overall = self.policy.overall_seconds

        return SessionState(
            started_at=now,
            last_tick_at=now,
            current_index=0,
            remaining_overall_seconds=overall,
            remaining_question_seconds=self._question_limit_for(0),
        )

    def _restore_state(self) -> Optional[SessionState]:
        if self.submitted:
            return None

        raw = self.session_store.load(self.assignment_id)
        if not isinstance(raw, dict):
            return None

        index = raw.get("current_index")
        if isinstance(index, bool) or not isinstance(index, int) or not isinstance(raw.get("answers"), dict):
            return None
        if not 0 <= index < len(self.questions):
            logger.warning("Checkpoint for %s points past the last question; starting fresh", self.assignment_id)
            return None

        try:
            return SessionState.model_validate(raw)
        except ValidationError:
            logger.warning("Unreadable checkpoint for %s; starting fresh", self.assignment_id)
            return None

    def _checkpoint(self) -> None:
        try:
            self.session_store.save(self.assignment_id, self.state.model_dump(mode="json"))
        except Exception:
            # Recovery aid only: in-memory state stays authoritative
            logger.exception("Checkpoint write failed for %s", self.assignment_id)

    def _frozen(self) -> bool:
        """Timed out or partly recorded: the attempt only waits for its retry."""
        return self.pending_trigger in TIMEOUT_TRIGGERS or self.pipeline.committed

    def _require_answering(self) -> None:
        if self.phase != SessionPhase.ANSWERING:
            raise SessionError(f"Session is {self.phase.value}")

    def _begin_finalizing(self, trigger: FinalizationTrigger) -> SessionState:
        self.phase = SessionPhase.FINALIZING
        self.pending_trigger = trigger
        self._checkpoint()
        return self.state.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def mount(self) -> SessionPhase:
        with self._lock:
            if self.phase != SessionPhase.LOADING:
                return self.phase

            if not self.questions:
                self.phase = SessionPhase.BLOCKED
                self.blocked_reason = "This assessment has no questions."
                return self.phase

            restored = self._restore_state()
            if restored is not None:
                self.state = restored
                logger.info(
                    "Resumed session %s at question %d",
                    self.assignment_id, restored.current_index,
                )
            else:
                self.state = self._fresh_state()
                self._checkpoint()
                logger.info("Started fresh session %s", self.assignment_id)

            self.phase = SessionPhase.READY
            return self.phase

    def start(self) -> None:
        with self._lock:
            if self.phase != SessionPhase.READY:
                raise SessionError(f"Cannot start a session that is {self.phase.value}")
            self.phase = SessionPhase.ANSWERING
        self.scheduler.start()

    def exit(self) -> SessionPhase:
        """
        Leave without finalizing. Does not consume an attempt and leaves the
        checkpoint exactly as it is; an in-flight finalization continues.
        An attempt that is already partly on record stays mounted so its
        retry can finish it.
        """
        with self._lock:
            if self.phase in (SessionPhase.FINALIZING, SessionPhase.FINALIZED, SessionPhase.EXITED):
                return self.phase
            if self.pipeline.committed:
                logger.info("Exit ignored for %s: attempt is already on record", self.assignment_id)
                return self.phase
            self.phase = SessionPhase.EXITED

        self.scheduler.stop()
        logger.info("Exited session %s without submitting", self.assignment_id)
        if self.on_closed:
            self.on_closed(self)
        return SessionPhase.EXITED

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------
    def set_answer(self, question_id: str, answer: Optional[Any]) -> None:
        with self._lock:
            self._require_answering()
            if self.pipeline.committed:
                raise SessionError("This attempt is already on record; submit again to finish it.")
            if self.pending_trigger in TIMEOUT_TRIGGERS:
                raise SessionError("Time is up; submit again to record this attempt.")

            question = self.current_question
            if question.id != question_id:
                raise SessionError("Only the current question can be answered.")

            if answer is None:
                self.state.answers.pop(question_id, None)
            else:
                if answer.kind != question.answer_kind:
                    raise SessionError(
                        f"Question {question_id} expects a {question.answer_kind} answer, got {answer.kind}"
                    )
                self.state.answers[question_id] = answer

            self._checkpoint()

    def advance(self) -> StepOutcome:
        with self._lock:
            self._require_answering()

            if self._frozen():
                trigger = self.pending_trigger
                snapshot = self._begin_finalizing(trigger)
            else:
                question = self.current_question
                if question.required and not is_answered(self.state.answers.get(question.id)):
                    return StepOutcome("rejected", warning=REQUIRED_WARNING)

                if not self.is_last:
                    next_index = self.state.current_index + 1
                    self.state.current_index = next_index
                    self.state.remaining_question_seconds = self._question_limit_for(next_index)
                    # new question's countdown starts clean
                    self.state.last_tick_at = self.clock.now()
                    self._checkpoint()
                    return StepOutcome("advanced")

                trigger = FinalizationTrigger.MANUAL_SUBMIT
                snapshot = self._begin_finalizing(trigger)

        return self._finalize(snapshot, trigger)

    def retry_finalization(self) -> StepOutcome:
        with self._lock:
            self._require_answering()
            if self.pending_trigger is None:
                raise SessionError("There is no failed submission to retry.")
            trigger = self.pending_trigger
            snapshot = self._begin_finalizing(trigger)

        return self._finalize(snapshot, trigger)

    def tick(self) -> StepOutcome:
        with self._lock:
            if self.phase != SessionPhase.ANSWERING or self._frozen():
                return StepOutcome("ignored")

            state = self.state
            now = self.clock.now()
            # Wall-clock delta: time spent away from the page is still charged
            dt = max(1, int(math.floor(now - state.last_tick_at)))
            state.last_tick_at = now

            question = self.current_question
            state.per_question_time_spent[question.id] = state.per_question_time_spent.get(question.id, 0) + dt

            if state.remaining_overall_seconds is not None:
                state.remaining_overall_seconds -= dt
            if state.remaining_question_seconds is not None:
                state.remaining_question_seconds -= dt

            if state.remaining_overall_seconds is not None and state.remaining_overall_seconds <= 0:
                state.remaining_overall_seconds = 0
                trigger = FinalizationTrigger.OVERALL_TIMEOUT

            elif state.remaining_question_seconds is not None and state.remaining_question_seconds <= 0:
                if self.is_last:
                    state.remaining_question_seconds = 0
                    trigger = FinalizationTrigger.PER_QUESTION_TIMEOUT
                else:
                    self.phase = SessionPhase.AUTO_ADVANCING
                    next_index = state.current_index + 1
                    state.current_index = next_index
                    state.remaining_question_seconds = self._question_limit_for(next_index)
                    self._checkpoint()
                    self.phase = SessionPhase.ANSWERING
                    logger.info(
                        "Question %s timed out on %s; moved to question %d",
                        question.id, self.assignment_id, next_index,
                    )
                    return StepOutcome("advanced")
            else:
                self._checkpoint()
                return StepOutcome("ticked")

            snapshot = self._begin_finalizing(trigger)

        return self._finalize(snapshot, trigger)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    def _finalize(self, snapshot: SessionState, trigger: FinalizationTrigger) -> StepOutcome:
        outcome = self.pipeline.finalize(snapshot, trigger)

        restart_ticker = False
        closed = False
        with self._lock:
            if outcome.status == "submitted":
                self.phase = SessionPhase.FINALIZED
                self.result = outcome.result
                self.attempt_count = outcome.result.attempt_count
                self.submitted = True
                self.pending_trigger = None
                self.last_error = None
                closed = True
            elif outcome.status == "failed":
                # Answers and timers stay as they were; the participant retries
                self.phase = SessionPhase.ANSWERING
                self.last_error = outcome.error
                # Timed-out or partly recorded attempts stay frozen until the retry
                restart_ticker = (
                    trigger == FinalizationTrigger.MANUAL_SUBMIT and not self.pipeline.committed
                )
            elif self.pipeline.guard.completed:
                self.phase = SessionPhase.FINALIZED
                self.pending_trigger = None

        if restart_ticker:
            self.scheduler.start()
        if closed and self.on_closed:
            self.on_closed(self)

        return StepOutcome(outcome.status, finalization=outcome)

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------
    def view(self) -> SessionView:
        with self._lock:
            state = self.state
            question = self.current_question if self.phase not in (
                SessionPhase.FINALIZED, SessionPhase.BLOCKED,
            ) else None

            overall = question_remaining = effective = None
            current_answer = None
            index = 0
            if state is not None:
                index = state.current_index
                if state.remaining_overall_seconds is not None:
                    overall = max(0, state.remaining_overall_seconds)
                if state.remaining_question_seconds is not None:
                    question_remaining = max(0, state.remaining_question_seconds)
                if question is not None:
                    current_answer = answer_value(state.answers.get(question.id))

            if question_remaining is not None and overall is not None:
                effective = min(question_remaining, overall)
            elif question_remaining is not None:
                effective = question_remaining
            else:
                effective = overall

            total = len(self.questions)
            progress = round((index + 1) / total * 100) if total else 0

            return SessionView(
                assignment_id=self.assignment_id,
                phase=self.phase.value,
                current_index=index,
                question_count=total,
                progress_pct=progress,
                question=question.public_view() if question is not None else None,
                current_answer=current_answer,
                timing_mode=self.policy.timing_mode.value,
                remaining_overall_seconds=overall,
                remaining_question_seconds=question_remaining,
                effective_question_remaining=effective,
                overall_clock=seconds_to_clock(overall),
                question_clock=seconds_to_clock(effective),
                attempt_count=self.attempt_count,
                max_attempts=self.policy.max_attempts,
                pending_trigger=self.pending_trigger.value if self.pending_trigger else None,
                last_error=self.last_error or self.blocked_reason,
                result=self.result.to_view() if self.result else None,
            )
