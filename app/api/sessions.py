from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.engine.session_machine import AssessmentSession, SessionError, StepOutcome
from app.schemas.answers import AnswerPayload
from app.schemas.session import AdvanceResponse, SessionView
from app.services.launcher import AssessmentBlocked
from app.services.registry import SessionNotMounted, SessionRegistry, get_registry

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def _mounted(assignment_id: str, registry: SessionRegistry) -> AssessmentSession:
    try:
        return registry.get(assignment_id)
    except SessionNotMounted:
        raise HTTPException(status_code=404, detail="Session is not mounted")


def _step_response(session: AssessmentSession, step: StepOutcome) -> AdvanceResponse:
    if step.outcome == "failed":
        # Retryable: answers and timers are untouched
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=step.finalization.error if step.finalization else "Failed to submit assessment.",
        )
    return AdvanceResponse(
        outcome=step.outcome,
        warning=step.warning,
        session=session.view(),
    )


# -------------------------------------------------
# POST: Mount (resume or start) a session
# -------------------------------------------------

@router.post("/{assignment_id}/mount", response_model=SessionView)
def mount_session(
    assignment_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    try:
        session = registry.mount(assignment_id)
    except AssessmentBlocked as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.reason)
    return session.view()


@router.get("/{assignment_id}", response_model=SessionView)
def get_session(
    assignment_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    return _mounted(assignment_id, registry).view()


@router.put("/{assignment_id}/answers/{question_id}", response_model=SessionView)
def put_answer(
    assignment_id: str,
    question_id: str,
    payload: AnswerPayload,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _mounted(assignment_id, registry)
    try:
        session.set_answer(question_id, payload.answer)
    except SessionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return session.view()


@router.post("/{assignment_id}/advance", response_model=AdvanceResponse)
def advance_session(
    assignment_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _mounted(assignment_id, registry)
    try:
        step = session.advance()
    except SessionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return _step_response(session, step)


@router.post("/{assignment_id}/submit/retry", response_model=AdvanceResponse)
def retry_submission(
    assignment_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    session = _mounted(assignment_id, registry)
    try:
        step = session.retry_finalization()
    except SessionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return _step_response(session, step)


@router.post("/{assignment_id}/exit", status_code=status.HTTP_204_NO_CONTENT)
def exit_session(
    assignment_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    try:
        session = registry.get(assignment_id)
    except SessionNotMounted:
        # Nothing mounted: exiting is still a no-op, never an error
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    session.exit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
