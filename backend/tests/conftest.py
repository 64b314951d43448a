import os
import random
import tempfile
from datetime import datetime, timedelta

import pytest

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="print-queue-logs-"))

from database import drop_all_tables, init_db, make_engine, make_session_factory
from job_store import JobStore
from models import (
    ColorModeEnum, JobStatusEnum, PrintJob, PriorityTierEnum, ResourceEnum,
    UrgencyEnum,
)
from print_queue import PrintQueueService
from queue_engine import Submission

BASE_TIME = datetime(2025, 3, 3, 9, 0, 0)


class TickingClock:
    """Every call is one second later than the previous one"""

    def __init__(self, start=BASE_TIME, step=timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


class SequenceRandom:
    """randrange stand-in that replays fixed values, then repeats the last one"""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def randrange(self, stop):
        index = min(self.calls, len(self.values) - 1)
        self.calls += 1
        return self.values[index] % stop

    def choice(self, seq):
        return seq[0]


_job_counter = 0


def make_job(**overrides) -> PrintJob:
    """Transient job with sensible defaults for pure-function tests"""
    global _job_counter
    _job_counter += 1
    fields = dict(
        id=f"JOB-{_job_counter:04d}",
        code=f"{_job_counter % 10000:04d}",
        submitter_id="student-1",
        submitter_label=None,
        document_name="notes.pdf",
        document_size_bytes=1000,
        page_count=3,
        copies=1,
        color_mode=ColorModeEnum.MONOCHROME,
        urgency=UrgencyEnum.NORMAL,
        pickup_slot="1",
        note=None,
        status=JobStatusEnum.WAITING,
        assigned_resource=ResourceEnum.RESOURCE_A,
        priority_tier=PriorityTierEnum.LOW,
        estimated_wait_minutes=1,
        is_paid=False,
        needs_submitter_attention=False,
        created_at=BASE_TIME + timedelta(minutes=_job_counter),
        updated_at=None,
    )
    fields.update(overrides)
    return PrintJob(**fields)


def make_submission(**overrides) -> Submission:
    fields = dict(
        submitter_id="student-1",
        document_name="notes.pdf",
        page_count=3,
        pickup_slot="1",
    )
    fields.update(overrides)
    return Submission(**fields)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(engine, clock):
    return JobStore(make_session_factory(engine), clock=clock)


@pytest.fixture
def service(store):
    return PrintQueueService(store, rng=random.Random(1234))
