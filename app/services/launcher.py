import logging
from typing import Any, Callable, Dict, Optional

from app.core.clock import Clock, system_clock
from app.engine.finalizer import FinalizationPipeline
from app.engine.policy import resolve_policy, time_window_block_reason
from app.engine.session_machine import AssessmentSession, SessionPhase
from app.models.assignment import AssignmentRequest
from app.schemas.template import parse_questions
from app.services.stores import AssignmentStore, ResultStore, SessionStore, TemplateStore

logger = logging.getLogger(__name__)


class AssessmentBlocked(Exception):
    """The session can't start; ``reason`` is shown to the participant as-is."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def request_overrides(request: AssignmentRequest) -> Dict[str, Any]:
    return {
        "timing_mode": request.timing_mode,
        "overall_time_seconds": request.overall_time_seconds,
        "max_attempts": request.max_attempts,
        "time_window_enabled": request.time_window_enabled,
        "start_at": request.start_at,
        "end_at": request.end_at,
    }


class AssessmentLauncher:
    def __init__(
        self,
        templates: TemplateStore,
        assignments: AssignmentStore,
        results: ResultStore,
        sessions: SessionStore,
        clock: Clock = system_clock,
        scheduler_factory: Optional[Callable] = None,
        tick_interval: float = 1.0,
    ):
        self.templates = templates
        self.assignments = assignments
        self.results = results
        self.sessions = sessions
        self.clock = clock
        self.scheduler_factory = scheduler_factory
        self.tick_interval = tick_interval

    def launch(
        self,
        assignment_id: str,
        on_closed: Optional[Callable[[AssessmentSession], None]] = None,
    ) -> AssessmentSession:
        """
        Load request + template, run the gate, then mount and start a
        session. Raises AssessmentBlocked without writing anything when the
        attempt can't begin.
        """

        # ==============================
        # 1. LOAD
        # ==============================
        request = self.assignments.get(assignment_id)
        if request is None:
            raise AssessmentBlocked("Assessment request not found.")

        if not request.template_id:
            raise AssessmentBlocked("Assessment request is missing templateId.")

        template = self.templates.get(request.template_id)
        if template is None:
            raise AssessmentBlocked("Assessment template not found.")

        try:
            questions = parse_questions(template["fields"])
        except ValueError as exc:
            logger.warning("Template %s is malformed: %s", request.template_id, exc)
            raise AssessmentBlocked("Assessment template is malformed.")

        policy = resolve_policy(template["assessment_meta"], request_overrides(request))

        # ==============================
        # 2. GATE
        # ==============================
        reason = time_window_block_reason(policy, self.clock.utcnow())
        if reason:
            raise AssessmentBlocked(reason)

        if request.status == "submitted":
            raise AssessmentBlocked("This assessment has already been submitted.")

        attempt_count = int(request.attempt_count or 0)
        if attempt_count >= policy.max_attempts:
            raise AssessmentBlocked(
                f"Maximum attempts reached ({attempt_count}/{policy.max_attempts})."
            )

        # ==============================
        # 3. MOUNT
        # ==============================
        pipeline = FinalizationPipeline(
            assignment_id=request.id,
            template_id=request.template_id,
            participant_id=request.participant_id,
            questions=questions,
            policy=policy,
            attempt_count=attempt_count,
            results_store=self.results,
            assignment_store=self.assignments,
            session_store=self.sessions,
            clock=self.clock,
        )

        session = AssessmentSession(
            assignment_id=request.id,
            questions=questions,
            policy=policy,
            session_store=self.sessions,
            pipeline=pipeline,
            attempt_count=attempt_count,
            submitted=False,
            clock=self.clock,
            scheduler_factory=self.scheduler_factory,
            tick_interval=self.tick_interval,
            on_closed=on_closed,
        )

        if session.mount() == SessionPhase.BLOCKED:
            raise AssessmentBlocked(session.blocked_reason)

        session.start()
        logger.info(
            "Launched %s (timing=%s, attempts %d/%d)",
            request.id, policy.timing_mode.value, attempt_count, policy.max_attempts,
        )
        return session
