"""
Job lifecycle state machine and pickup verification.

waiting -> printing -> printed are operator steps; printed -> collected only
happens through confirm_collection after a successful code verification.
Comments, acknowledgements and payment are side-channel mutations allowed in
any status except collected.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from models import JobStatusEnum, OperatorComment, PrintJob
from queue_engine import (
    AlreadyPaid, Config, InvalidTransition, PrintQueueError, Validator,
)

# Edges an operator may take directly
OPERATOR_TRANSITIONS = {
    JobStatusEnum.WAITING: JobStatusEnum.PRINTING,
    JobStatusEnum.PRINTING: JobStatusEnum.PRINTED,
}


def _ensure_open(job: PrintJob, action: str):
    if job.status == JobStatusEnum.COLLECTED:
        raise InvalidTransition(job.id, job.status, action)


def advance_status(job: PrintJob, target, now: datetime) -> PrintJob:
    """Move a job one operator step forward; anything else is an InvalidTransition"""
    try:
        target = JobStatusEnum(target)
    except ValueError:
        raise InvalidTransition(job.id, job.status, target)

    current = JobStatusEnum(job.status)
    if OPERATOR_TRANSITIONS.get(current) != target:
        raise InvalidTransition(job.id, current, target)

    job.status = target
    job.updated_at = now
    return job


def confirm_collection(job: PrintJob, code: str, now: datetime) -> PrintJob:
    """Terminal printed -> collected step, reached only with the job's own verified code"""
    current = JobStatusEnum(job.status)
    if current != JobStatusEnum.PRINTED:
        raise InvalidTransition(job.id, current, JobStatusEnum.COLLECTED)
    if job.code != code:
        raise CodeMismatch(job.id, code)

    job.status = JobStatusEnum.COLLECTED
    job.updated_at = now
    return job


def append_comment(job: PrintJob, message: str, requires_action: bool, now: datetime) -> OperatorComment:
    message = Validator.validate_comment(message)
    _ensure_open(job, 'comment')

    comment = OperatorComment(
        id=f"CMT-{uuid.uuid4().hex[:10].upper()}",
        message=message,
        requires_action=bool(requires_action),
        created_at=now,
        seq=len(job.operator_comments),
    )
    job.operator_comments.append(comment)
    if requires_action:
        job.needs_submitter_attention = True
    job.updated_at = now
    return comment


def acknowledge(job: PrintJob, now: datetime) -> PrintJob:
    """Submitter has seen the flagged comments; status is left alone"""
    _ensure_open(job, 'acknowledge')
    job.needs_submitter_attention = False
    job.updated_at = now
    return job


def record_payment(job: PrintJob, amount: float, reference: str, now: datetime) -> PrintJob:
    """Set all payment fields together, exactly once"""
    _ensure_open(job, 'payment')
    if job.is_paid:
        raise AlreadyPaid(job.id, job.payment_reference)

    job.is_paid = True
    job.payment_amount = amount
    job.payment_reference = reference
    job.payment_timestamp = now
    job.updated_at = now
    return job


# ============================================================================
# PICKUP VERIFICATION
# ============================================================================

class VerificationError(PrintQueueError):
    """Base class for pickup code failures; all are shown to the operator, none retried"""

class MalformedCode(VerificationError):
    def __init__(self, code):
        self.code = code
        super().__init__(f"Pickup code must be {Config.CODE_LENGTH} digits, got {code!r}")

    def details(self):
        return {'code': self.code}

class NotFound(VerificationError):
    def __init__(self, code):
        self.code = code
        super().__init__(f"No job with pickup code {code}")

    def details(self):
        return {'code': self.code}

class AlreadyCollected(VerificationError):
    def __init__(self, job):
        self.job = job
        self.code = job.code
        super().__init__(f"Job {job.id} (code {job.code}) has already been collected")

    def details(self):
        return {'code': self.code, 'job_id': self.job.id}

class NotReady(VerificationError):
    def __init__(self, job, status):
        self.job = job
        self.code = job.code
        self.status = status
        super().__init__(
            f"Job {job.id} is currently {JobStatusEnum(status).value}, not ready for pickup"
        )

    def details(self):
        return {
            'code': self.code,
            'job_id': self.job.id,
            'status': self.status,
            'expected_status': JobStatusEnum.PRINTED,
        }

class CodeMismatch(VerificationError):
    def __init__(self, job_id, code):
        self.job_id = job_id
        self.code = code
        super().__init__(f"Pickup code {code} does not belong to job {job_id}")

    def details(self):
        return {'code': self.code, 'job_id': self.job_id}


def normalize_code(raw: Optional[str]) -> str:
    """Keep digits only, so '12-34' and ' 1234 ' both read as 1234"""
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) != Config.CODE_LENGTH:
        raise MalformedCode(raw)
    return digits


def _match_code(code: str, jobs: Iterable) -> Optional[PrintJob]:
    matches = [job for job in jobs if job.code == code]
    if not matches:
        return None

    # A reused code belongs to the open job; otherwise the latest collected one
    open_jobs = [job for job in matches if job.status != JobStatusEnum.COLLECTED]
    if open_jobs:
        return min(open_jobs, key=lambda job: job.created_at)
    return max(matches, key=lambda job: job.created_at)


def verify_code(raw_code: Optional[str], jobs: Iterable) -> PrintJob:
    """Read-only lookup of the job a pickup code refers to"""
    code = normalize_code(raw_code)
    job = _match_code(code, jobs)

    if job is None:
        raise NotFound(code)
    if job.status == JobStatusEnum.COLLECTED:
        raise AlreadyCollected(job)
    if job.status != JobStatusEnum.PRINTED:
        raise NotReady(job, JobStatusEnum(job.status))
    return job


@dataclass(frozen=True)
class VerificationResult:
    code: str
    job: Optional[PrintJob] = None
    error: Optional[VerificationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
