"""
Observable job store.

All jobs live in one table; readers take whole snapshots and compute their own
views. Every committed write is broadcast to subscribers as a JobChange so each
observer can recompute positions and loads independently.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import PrintJob, utcnow
from queue_engine import JobNotFound, PersistenceFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobChange:
    kind: str  # created | updated
    job_id: str


Listener = Callable[[JobChange], None]


def generate_job_id() -> str:
    """Generate unique job ID"""
    return f"JOB-{uuid.uuid4().hex[:8].upper()}"


class JobStore:
    """SQLAlchemy-backed job set with a push-based change feed"""

    def __init__(self, session_factory: sessionmaker, clock: Callable = utcnow):
        self.session_factory = session_factory
        self.clock = clock
        self._listeners: Dict[int, Listener] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    # ==================== Subscription ====================

    def subscribe(self, on_change: Listener) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = on_change

        def unsubscribe():
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def _broadcast(self, change: JobChange):
        with self._lock:
            listeners = list(self._listeners.values())

        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Subscriber failed on {change.kind} {change.job_id}: {e}")

    # ==================== Reads ====================

    def snapshot(self) -> List[PrintJob]:
        """Every job (comments loaded), read in a single query"""
        try:
            with session_scope(self.session_factory) as db:
                return (
                    db.query(PrintJob)
                    .order_by(PrintJob.created_at.asc(), PrintJob.id.asc())
                    .all()
                )
        except SQLAlchemyError as e:
            raise PersistenceFailure("snapshot", e) from e

    def get(self, job_id: str) -> PrintJob:
        try:
            with session_scope(self.session_factory) as db:
                job = db.query(PrintJob).filter(PrintJob.id == job_id).first()
        except SQLAlchemyError as e:
            raise PersistenceFailure("get", e) from e

        if job is None:
            raise JobNotFound(job_id)
        return job

    # ==================== Writes ====================

    def insert(self, job: PrintJob) -> PrintJob:
        """Persist a new job; the store assigns id and created_at"""
        job.id = job.id or generate_job_id()
        job.created_at = self.clock()
        job.updated_at = job.created_at

        try:
            with session_scope(self.session_factory) as db:
                db.add(job)
        except SQLAlchemyError as e:
            raise PersistenceFailure("insert", e) from e

        self._broadcast(JobChange("created", job.id))
        return job

    def update(self, job_id: str, mutate: Callable[[PrintJob], object]) -> PrintJob:
        """
        Read-modify-write of a single job. If mutate raises, the session is
        rolled back and the stored job is untouched.
        """
        try:
            with session_scope(self.session_factory) as db:
                job = (
                    db.query(PrintJob)
                    .filter(PrintJob.id == job_id)
                    .with_for_update()
                    .first()
                )
                if job is None:
                    raise JobNotFound(job_id)
                mutate(job)
                db.flush()
                # Make sure the comment list is loaded before the session closes
                list(job.operator_comments)
        except SQLAlchemyError as e:
            raise PersistenceFailure("update", e) from e

        self._broadcast(JobChange("updated", job_id))
        return job
