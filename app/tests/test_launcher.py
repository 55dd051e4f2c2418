import threading
from datetime import timedelta

import pytest

from conftest import ManualScheduler
from app.engine.session_machine import SessionPhase
from app.models.assignment import AssignmentRequest
from app.models.session_checkpoint import SessionCheckpoint
from app.models.submission import SubmissionRecord
from app.schemas.answers import ChoiceAnswer, MultiChoiceAnswer
from app.services.launcher import AssessmentBlocked
from app.services.registry import SessionNotMounted, SessionRegistry
from app.services.retake import RetakeDenied, RetakeService


@pytest.fixture
def registry(session_factory, clock):
    reg = SessionRegistry(session_factory, clock=clock, scheduler_factory=ManualScheduler)
    yield reg
    reg.shutdown()


def _blocked_reason(registry, assignment_id="req-1"):
    with pytest.raises(AssessmentBlocked) as info:
        registry.mount(assignment_id)
    return info.value.reason


def _submit_all(session):
    session.set_answer("q1", ChoiceAnswer(value="B"))
    session.advance()
    session.set_answer("q2", MultiChoiceAnswer(values=["A", "C"]))
    session.advance()
    return session.advance()


# -------------------------------------------------
# Gate
# -------------------------------------------------

def test_missing_request_is_blocked(registry):
    assert _blocked_reason(registry, "ghost") == "Assessment request not found."


def test_missing_template_id_is_blocked(registry, seed):
    seed(template_id=None)
    assert _blocked_reason(registry) == "Assessment request is missing templateId."


def test_unknown_template_is_blocked(registry, seed):
    seed(template_id="tpl-gone")
    assert _blocked_reason(registry) == "Assessment template not found."


def test_malformed_template_is_blocked(registry, seed):
    seed(fields={"q1": "not a list"})
    assert _blocked_reason(registry) == "Assessment template is malformed."


def test_time_window_blocks_before_and_after(registry, seed, clock, session_factory):
    now = clock.utcnow()
    seed(meta={
        "time_window_enabled": True,
        "start_at": (now + timedelta(hours=1)).isoformat(),
        "end_at": (now + timedelta(hours=2)).isoformat(),
    })
    assert _blocked_reason(registry).startswith("This assessment opens at")

    clock.advance(3 * 3600)
    assert _blocked_reason(registry).startswith("This assessment closed at")

    with session_factory() as db:
        assert db.get(SessionCheckpoint, "req-1") is None


def test_request_window_override_is_used(registry, seed, clock):
    now = clock.utcnow()
    seed(time_window_enabled=True, start_at=now - timedelta(days=2), end_at=now - timedelta(days=1))

    assert _blocked_reason(registry).startswith("This assessment closed at")


def test_submitted_request_is_blocked(registry, seed):
    seed(status="submitted", attempt_count=1, meta={"max_attempts": 3})
    assert _blocked_reason(registry) == "This assessment has already been submitted."


def test_attempt_cap_is_blocked(registry, seed):
    seed(attempt_count=2, meta={"max_attempts": 2})
    assert _blocked_reason(registry) == "Maximum attempts reached (2/2)."


def test_no_questions_blocks_without_checkpoint(registry, seed, session_factory):
    seed(fields=[{"id": "h", "type": "heading"}])

    assert _blocked_reason(registry) == "This assessment has no questions."
    with session_factory() as db:
        assert db.get(SessionCheckpoint, "req-1") is None
    with pytest.raises(SessionNotMounted):
        registry.get("req-1")


# -------------------------------------------------
# Mount / submit through SQL stores
# -------------------------------------------------

def test_mount_writes_checkpoint_and_is_single_per_assignment(registry, seed, session_factory):
    seed(meta={"timing_mode": "overall", "overall_time_seconds": 600})

    session = registry.mount("req-1")

    assert session.phase == SessionPhase.ANSWERING
    assert session.scheduler.running is True
    assert registry.mount("req-1") is session
    with session_factory() as db:
        row = db.get(SessionCheckpoint, "req-1")
        assert row.payload["remaining_overall_seconds"] == 600


def test_resume_from_sql_checkpoint(seed, session_factory, clock):
    seed()
    first = SessionRegistry(session_factory, clock=clock, scheduler_factory=ManualScheduler)
    session = first.mount("req-1")
    session.set_answer("q1", ChoiceAnswer(value="B"))
    session.advance()

    # a different process picks it up
    second = SessionRegistry(session_factory, clock=clock, scheduler_factory=ManualScheduler)
    resumed = second.mount("req-1")

    assert resumed.state.current_index == 1
    assert resumed.state.answers["q1"].value == "B"


def test_submit_updates_assignment_and_records_once(registry, seed, session_factory):
    seed()
    session = registry.mount("req-1")

    step = _submit_all(session)

    assert step.outcome == "submitted"
    with pytest.raises(SessionNotMounted):
        registry.get("req-1")

    with session_factory() as db:
        request = db.get(AssignmentRequest, "req-1")
        assert request.status == "submitted"
        assert request.attempt_count == 1
        assert request.last_score_pct == 100
        assert request.submitted_at is not None
        assert db.get(SessionCheckpoint, "req-1") is None

        records = db.query(SubmissionRecord).filter_by(assignment_id="req-1").all()
        assert len(records) == 1
        assert records[0].attempt_number == 1
        assert records[0].completion["trigger"] == "manual_submit"
        assert records[0].grading["score_pct"] == 100

    assert _blocked_reason(registry) == "This assessment has already been submitted."


def test_exit_keeps_checkpoint_and_attempts(registry, seed, session_factory):
    seed()
    session = registry.mount("req-1")
    session.set_answer("q1", ChoiceAnswer(value="A"))

    session.exit()

    with pytest.raises(SessionNotMounted):
        registry.get("req-1")
    with session_factory() as db:
        assert db.get(AssignmentRequest, "req-1").attempt_count == 0
        assert db.get(SessionCheckpoint, "req-1").payload["answers"]["q1"]["value"] == "A"

    assert registry.mount("req-1").state.answers["q1"].value == "A"


# -------------------------------------------------
# Retake
# -------------------------------------------------

def test_retake_flow_until_cap(registry, seed, clock):
    seed(meta={"max_attempts": 2, "retry_policy": {"enabled": True, "mode": "all"}})

    _submit_all(registry.mount("req-1"))
    request = RetakeService.request_retake("req-1", registry.assignments, registry.templates, registry.sessions, clock)

    assert request.status == "not_started"
    assert request.attempt_count == 1
    assert request.last_score_pct == 100
    assert request.retake_requested_at is not None

    second = registry.mount("req-1")
    assert second.state.current_index == 0
    assert second.state.answers == {}
    assert _submit_all(second).finalization.result.attempt_count == 2

    with pytest.raises(RetakeDenied) as info:
        RetakeService.request_retake("req-1", registry.assignments, registry.templates, registry.sessions, clock)
    assert str(info.value) == "Retake not allowed (2/2 attempts used)."


def test_retake_below_score_needs_a_low_score(registry, seed, clock):
    seed(meta={"max_attempts": 3, "retry_policy": {"enabled": True, "mode": "below_score", "threshold_pct": 50}})
    _submit_all(registry.mount("req-1"))

    with pytest.raises(RetakeDenied):
        RetakeService.request_retake("req-1", registry.assignments, registry.templates, registry.sessions, clock)


def test_retake_requires_a_submitted_request(registry, seed, clock):
    seed(meta={"max_attempts": 3})

    with pytest.raises(RetakeDenied):
        RetakeService.request_retake("req-1", registry.assignments, registry.templates, registry.sessions, clock)
    with pytest.raises(LookupError):
        RetakeService.request_retake("ghost", registry.assignments, registry.templates, registry.sessions, clock)


def test_retake_never_resumes_a_leftover_checkpoint(registry, seed, clock, monkeypatch):
    seed(
        meta={"max_attempts": 2, "retry_policy": {"enabled": True, "mode": "all"}},
        fields=[
            {"id": "a", "type": "single_choice", "options": ["A", "B"], "correct_answer": "B"},
            {"id": "b", "type": "single_choice", "options": ["A", "B"], "correct_answer": "B"},
        ],
    )
    real_delete = registry.sessions.delete
    deletes = []

    def _flaky_delete(assignment_id):
        deletes.append(assignment_id)
        if len(deletes) == 1:
            raise RuntimeError("checkpoint table locked")
        real_delete(assignment_id)

    monkeypatch.setattr(registry.sessions, "delete", _flaky_delete)

    session = registry.mount("req-1")
    session.set_answer("a", ChoiceAnswer(value="A"))
    session.advance()
    session.set_answer("b", ChoiceAnswer(value="A"))
    assert session.advance().outcome == "failed"
    assert registry.assignments.get("req-1").status == "submitted"

    # leaving does not drop the half-finished attempt
    session.exit()
    assert registry.get("req-1") is session

    RetakeService.request_retake("req-1", registry.assignments, registry.templates, registry.sessions, clock)
    registry.discard("req-1")

    fresh = registry.mount("req-1")
    assert fresh is not session
    assert fresh.state.current_index == 0
    assert fresh.state.answers == {}


def test_slow_mount_does_not_block_other_assignments(registry):
    entered = threading.Event()
    release = threading.Event()

    class _StubSession:
        phase = SessionPhase.ANSWERING

        def __init__(self, assignment_id):
            self.assignment_id = assignment_id
            self.scheduler = ManualScheduler(None)

    class _StubLauncher:
        def launch(self, assignment_id, on_closed=None):
            if assignment_id == "slow":
                entered.set()
                assert release.wait(timeout=5)
            return _StubSession(assignment_id)

    registry.launcher = _StubLauncher()
    mounted = {}
    worker = threading.Thread(target=lambda: mounted.setdefault("slow", registry.mount("slow")))
    worker.start()
    try:
        assert entered.wait(timeout=5)

        fast = registry.mount("fast")
        assert registry.get("fast") is fast
        with pytest.raises(SessionNotMounted):
            registry.get("slow")
    finally:
        release.set()
        worker.join(timeout=5)

    assert registry.get("slow") is mounted["slow"]
