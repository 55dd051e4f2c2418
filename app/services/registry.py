import logging
import threading
from typing import Callable, Dict, Optional

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.db.session import SessionLocal
from app.engine.session_machine import AssessmentSession, SessionPhase
from app.services.launcher import AssessmentLauncher
from app.services.stores import (
    AssignmentStore,
    ResultStore,
    SessionFactory,
    SessionStore,
    TemplateStore,
)

logger = logging.getLogger(__name__)


class SessionNotMounted(LookupError):
    pass


class SessionRegistry:
    """
    Mounted sessions, at most one per assignment, so a single session owns
    each checkpoint record. Finalized and exited sessions drop out.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Clock = system_clock,
        scheduler_factory: Optional[Callable] = None,
        tick_interval: float = 1.0,
    ):
        self.templates = TemplateStore(session_factory)
        self.assignments = AssignmentStore(session_factory)
        self.results = ResultStore(session_factory)
        self.sessions = SessionStore(session_factory)
        self.launcher = AssessmentLauncher(
            templates=self.templates,
            assignments=self.assignments,
            results=self.results,
            sessions=self.sessions,
            clock=clock,
            scheduler_factory=scheduler_factory,
            tick_interval=tick_interval,
        )
        self._mounted: Dict[str, AssessmentSession] = {}
        self._mount_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _mount_lock(self, assignment_id: str) -> threading.Lock:
        with self._lock:
            return self._mount_locks.setdefault(assignment_id, threading.Lock())

    def mount(self, assignment_id: str) -> AssessmentSession:
        # Launch does database I/O; only mounts of the same assignment wait on it
        with self._mount_lock(assignment_id):
            with self._lock:
                existing = self._mounted.get(assignment_id)
            if existing is not None:
                return existing

            session = self.launcher.launch(assignment_id, on_closed=self._release)
            with self._lock:
                # a first tick may already have closed it
                if session.phase not in (SessionPhase.FINALIZED, SessionPhase.EXITED):
                    self._mounted[assignment_id] = session
            return session

    def get(self, assignment_id: str) -> AssessmentSession:
        with self._lock:
            session = self._mounted.get(assignment_id)
        if session is None:
            raise SessionNotMounted(assignment_id)
        return session

    def _release(self, session: AssessmentSession) -> None:
        with self._lock:
            if self._mounted.get(session.assignment_id) is session:
                del self._mounted[session.assignment_id]
        logger.info("Released session %s (%s)", session.assignment_id, session.phase.value)

    def discard(self, assignment_id: str) -> None:
        """Drop whatever is mounted for an assignment that starts over."""
        with self._lock:
            session = self._mounted.pop(assignment_id, None)
        if session is not None:
            session.scheduler.stop()
            logger.info("Discarded stale session %s (%s)", assignment_id, session.phase.value)

    def shutdown(self) -> None:
        """Stop every ticker; checkpoints stay so sessions resume on next mount."""
        with self._lock:
            mounted = list(self._mounted.values())
            self._mounted.clear()
        for session in mounted:
            session.scheduler.stop()


session_registry = SessionRegistry(
    SessionLocal,
    tick_interval=settings.TICK_INTERVAL_SECONDS,
)


def get_registry() -> SessionRegistry:
    return session_registry
