from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.engine.finalizer import FinalizationPipeline
from app.engine.policy import resolve_policy
from app.engine.session_machine import AssessmentSession
from app.models.assignment import AssignmentRequest
from app.models.template import AssessmentTemplate
from app.models import session_checkpoint, submission  # noqa: F401
from app.schemas.template import parse_questions


START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now=START):
        self._now = now

    def now(self):
        return self._now

    def utcnow(self):
        return datetime.fromtimestamp(self._now, tz=timezone.utc)

    def advance(self, seconds):
        self._now += seconds


class ManualScheduler:
    """Stands in for TickScheduler; tests call session.tick() themselves."""

    def __init__(self, callback, interval=1.0):
        self.callback = callback
        self.interval = interval
        self.running = False
        self.starts = 0
        self.stops = 0

    def start(self):
        self.running = True
        self.starts += 1

    def stop(self):
        self.running = False
        self.stops += 1


class MemorySessionStore:
    def __init__(self):
        self.records = {}
        self.saves = 0
        self.deletes = 0

    def load(self, assignment_id):
        rec = self.records.get(assignment_id)
        return dict(rec) if rec is not None else None

    def save(self, assignment_id, payload):
        self.saves += 1
        self.records[assignment_id] = payload

    def delete(self, assignment_id):
        self.deletes += 1
        self.records.pop(assignment_id, None)


class MemoryResultStore:
    def __init__(self, fail_times=0):
        self.records = []
        self.fail_times = fail_times

    def create(self, payload):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("results store unavailable")
        self.records.append(payload)
        return f"rec-{len(self.records)}"


class MemoryAssignmentStore:
    def __init__(self, attempt_count=0, fail_times=0):
        self.attempt_count = attempt_count
        self.status = "not_started"
        self.last_score_pct = None
        self.fail_times = fail_times

    def mark_submitted(self, assignment_id, score_pct, submitted_at):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("assignment store unavailable")
        self.attempt_count += 1
        self.status = "submitted"
        self.last_score_pct = score_pct
        return self.attempt_count


QUESTION_FIELDS = [
    {"id": "intro", "type": "heading", "label": "Section A"},
    {"id": "q1", "type": "single_choice", "label": "Pick one", "required": True,
     "options": ["A", "B", "C"], "correct_answer": "B", "points": 2},
    {"id": "q2", "type": "multi_choice", "label": "Pick many",
     "options": ["A", "B", "C"], "correct_answer": ["A", "C"], "points": 1},
    {"id": "q3", "type": "long_text", "label": "Explain"},
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def questions():
    return parse_questions(QUESTION_FIELDS)


@pytest.fixture
def build_session(clock):
    """Factory for a mounted, started session over in-memory stores."""

    def _build(meta=None, overrides=None, fields=None, attempt_count=0,
               session_store=None, results=None, assignments=None, submitted=False):
        qs = parse_questions(fields if fields is not None else QUESTION_FIELDS)
        policy = resolve_policy(meta or {}, overrides or {})
        session_store = session_store if session_store is not None else MemorySessionStore()
        results = results if results is not None else MemoryResultStore()
        assignments = assignments if assignments is not None else MemoryAssignmentStore(attempt_count)

        pipeline = FinalizationPipeline(
            assignment_id="req-1",
            template_id="tpl-1",
            participant_id="user-1",
            questions=qs,
            policy=policy,
            attempt_count=attempt_count,
            results_store=results,
            assignment_store=assignments,
            session_store=session_store,
            clock=clock,
        )
        session = AssessmentSession(
            assignment_id="req-1",
            questions=qs,
            policy=policy,
            session_store=session_store,
            pipeline=pipeline,
            attempt_count=attempt_count,
            submitted=submitted,
            clock=clock,
            scheduler_factory=ManualScheduler,
        )
        return session

    return _build


# -------------------------------------------------
# SQL fixtures
# -------------------------------------------------

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def seed(session_factory):
    """Insert a template + assignment request; returns the request id."""

    def _seed(meta=None, fields=None, request_id="req-1", **request_fields):
        with session_factory() as db:
            if db.get(AssessmentTemplate, "tpl-1") is None:
                db.add(AssessmentTemplate(
                    id="tpl-1",
                    title="Founder readiness",
                    fields=fields if fields is not None else QUESTION_FIELDS,
                    assessment_meta=meta or {},
                ))
            values = {"template_id": "tpl-1", "participant_id": "user-1"}
            values.update(request_fields)
            db.add(AssignmentRequest(id=request_id, **values))
            db.commit()
        return request_id

    return _seed
