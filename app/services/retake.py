from app.core.clock import Clock, system_clock
from app.engine.policy import resolve_policy
from app.engine.retry import is_retake_allowed
from app.models.assignment import AssignmentRequest
from app.services.launcher import request_overrides
from app.services.stores import AssignmentStore, SessionStore, TemplateStore


class RetakeDenied(Exception):
    pass


class RetakeService:
    @staticmethod
    def request_retake(
        assignment_id: str,
        assignments: AssignmentStore,
        templates: TemplateStore,
        sessions: SessionStore,
        clock: Clock = system_clock,
    ) -> AssignmentRequest:
        """
        Reset a submitted request so a new attempt can be mounted.
        Only the status changes; attempt_count and last_score_pct stay. Any
        recovery record the previous attempt left behind is dropped so the
        new attempt starts fresh.
        """
        request = assignments.get(assignment_id)
        if request is None:
            raise LookupError("Assessment request not found.")

        if request.status != "submitted":
            raise RetakeDenied("Only a submitted assessment can be retaken.")

        template = templates.get(request.template_id) if request.template_id else None
        meta = template["assessment_meta"] if template else {}
        policy = resolve_policy(meta, request_overrides(request))

        if not is_retake_allowed(policy, int(request.attempt_count or 0), request.last_score_pct):
            raise RetakeDenied(
                f"Retake not allowed ({request.attempt_count}/{policy.max_attempts} attempts used)."
            )

        sessions.delete(assignment_id)
        assignments.reset_for_retake(assignment_id, requested_at=clock.utcnow())
        return assignments.get(assignment_id)
