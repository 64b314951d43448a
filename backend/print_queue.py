"""
Print queue service: the operations the API layer calls.

Submission reads one snapshot, picks a code and a printer, estimates the tier
and wait, and persists the job. Every other operation is a single-job write
through the lifecycle module, or a pure read over a fresh snapshot.
"""

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from directory import SubmitterDirectory
from job_store import JobStore
from lifecycle import (
    CodeMismatch, VerificationError, VerificationResult, acknowledge, advance_status,
    append_comment, confirm_collection, record_payment, verify_code,
)
from models import JobStatusEnum, PrintJob
from payment import PaymentQuote, calculate_payment_amount, generate_payment_reference
from queue_engine import (
    Assignment, CodeResult, Config, Estimate, InvalidInput, PersistenceFailure,
    Submission,
    Validator, active_view, assign_resource, current_wait_minutes, estimate,
    explain, generate_code, group_by_slot, logger, ready_view,
    snapshot_resources, status_counts, taken_codes,
)


@dataclass(frozen=True)
class Submitted:
    """A persisted job plus how it was placed"""
    job: PrintJob
    assignment: Assignment
    estimate: Estimate
    code_result: CodeResult

    @property
    def reasoning(self) -> str:
        return explain(self.assignment, self.estimate)


@dataclass(frozen=True)
class QueueEntry:
    job: PrintJob
    queue_position: int
    current_wait_minutes: int


class PrintQueueService:
    """Two-printer pickup queue"""

    def __init__(self, store: JobStore, directory: Optional[SubmitterDirectory] = None,
                 rng: Optional[random.Random] = None, code_clock: Callable[[], float] = time.time):
        self.store = store
        self.directory = directory if directory is not None else SubmitterDirectory()
        self.rng = rng or random.SystemRandom()
        self.code_clock = code_clock
        self.degraded_code_generations = 0
        self._submit_lock = threading.Lock()

    def _now(self):
        return self.store.clock()

    # ==================== Submission ====================

    def submit(self, submission: Submission) -> Submitted:
        submission = Validator.validate_submission(submission)

        # Serializes submissions inside this process; other processes race best-effort
        with self._submit_lock:
            jobs = self.store.snapshot()
            now = self._now()

            code_result = self._generate_code(jobs, now)
            snapshots = snapshot_resources(jobs)
            assignment = assign_resource(snapshots)
            # Payment always happens after submission
            result = estimate(
                submission.page_count, submission.urgency, False,
                snapshots[assignment.resource],
            )

            job = PrintJob(
                code=code_result.code,
                submitter_id=submission.submitter_id,
                submitter_label=submission.submitter_label,
                document_name=submission.document_name,
                document_size_bytes=submission.document_size_bytes,
                page_count=submission.page_count,
                copies=submission.copies,
                color_mode=submission.color_mode,
                urgency=submission.urgency,
                pickup_slot=submission.pickup_slot,
                note=submission.note,
                status=JobStatusEnum.WAITING,
                assigned_resource=assignment.resource,
                priority_tier=result.priority_tier,
                estimated_wait_minutes=result.estimated_wait_minutes,
                is_paid=False,
                needs_submitter_attention=False,
                operator_comments=[],
            )
            job = self.store.insert(job)
            try:
                job = self._resolve_code_collision(job)
            except PersistenceFailure as e:
                # Insert is committed; the submission stands even if the recheck fails
                logger.log_error('code_collision_check_failed', {'job_id': job.id, 'error': str(e)})

        logger.log_event('job_submitted', {
            'job_id': job.id,
            'submitter_id': job.submitter_id,
            'pages': job.page_count,
            'copies': job.copies,
            'urgency': job.urgency.value,
        })
        logger.log_assignment(
            job.id, assignment.resource, assignment.reason,
            result.priority_tier, result.estimated_wait_minutes,
        )
        return Submitted(job=job, assignment=assignment, estimate=result, code_result=code_result)

    def _generate_code(self, jobs, now) -> CodeResult:
        code_result = generate_code(taken_codes(jobs, now), rng=self.rng, clock=self.code_clock)
        if code_result.degraded:
            self.degraded_code_generations += 1
        return code_result

    def _resolve_code_collision(self, job: PrintJob) -> PrintJob:
        """A concurrent submission may have taken the same code; the later job re-draws"""
        for attempt in range(1, Config.MAX_RETRIES + 1):
            jobs = self.store.snapshot()
            clash = [
                other for other in jobs
                if other.id != job.id
                and other.code == job.code
                and other.status != JobStatusEnum.COLLECTED
                and (other.created_at, other.id) < (job.created_at, job.id)
            ]
            if not clash:
                return job

            new_code = self._generate_code(jobs, self._now()).code
            logger.log_event('code_collision_retry', {
                'job_id': job.id,
                'attempt': attempt,
                'old_code': job.code,
                'new_code': new_code
            }, level='warning')
            job = self.store.update(job.id, lambda record: setattr(record, 'code', new_code))

        logger.log_error('code_collision_unresolved', {'job_id': job.id, 'code': job.code})
        return job

    # ==================== Lifecycle ====================

    def advance(self, job_id: str, target_status) -> PrintJob:
        previous = {}

        def mutate(job):
            previous['status'] = job.status
            advance_status(job, target_status, self._now())

        job = self.store.update(job_id, mutate)
        logger.log_event('status_advanced', {
            'job_id': job_id,
            'from': previous['status'].value,
            'to': job.status.value
        })
        return job

    def comment(self, job_id: str, message: str, requires_action: bool = False) -> PrintJob:
        message = Validator.validate_comment(message)
        job = self.store.update(
            job_id, lambda record: append_comment(record, message, requires_action, self._now())
        )
        logger.log_event('comment_added', {
            'job_id': job_id,
            'requires_action': bool(requires_action),
            'comment_count': len(job.operator_comments)
        })
        return job

    def acknowledge(self, job_id: str) -> PrintJob:
        return self.store.update(job_id, lambda record: acknowledge(record, self._now()))

    def quote(self, job_id: str) -> PaymentQuote:
        job = self.store.get(job_id)
        return calculate_payment_amount(job.page_count, job.copies, job.color_mode, job.urgency)

    def mark_paid(self, job_id: str, amount: Optional[float] = None,
                  reference: Optional[str] = None) -> PrintJob:
        if amount is not None and amount < 0:
            raise InvalidInput('amount', amount, 'must be >= 0')
        if reference is not None and not reference.strip():
            raise InvalidInput('reference', reference, 'must not be empty')

        def mutate(job):
            paid_amount = amount
            if paid_amount is None:
                paid_amount = calculate_payment_amount(
                    job.page_count, job.copies, job.color_mode, job.urgency
                ).total_amount
            record_payment(job, paid_amount, reference or generate_payment_reference(rng=self.rng), self._now())

        job = self.store.update(job_id, mutate)
        logger.log_event('payment_recorded', {
            'job_id': job_id,
            'amount': job.payment_amount,
            'reference': job.payment_reference
        })
        return job

    # ==================== Pickup ====================

    def verify(self, code: str, source: str = "manual") -> VerificationResult:
        """Read-only: find the job a presented code belongs to"""
        try:
            job = verify_code(code, self.store.snapshot())
        except VerificationError as e:
            logger.log_event('pickup_verification_failed', {
                'source': source,
                **e.to_dict()
            }, level='warning')
            return VerificationResult(code=code, error=e)

        logger.log_event('pickup_verified', {'source': source, 'job_id': job.id, 'code': job.code})
        return VerificationResult(code=code, job=job)

    def confirm_pickup(self, job_id: str, code: str) -> PrintJob:
        """Collect a job; the presented code has to verify to this same job"""
        result = self.verify(code)
        if not result.ok:
            raise result.error
        if result.job.id != job_id:
            raise CodeMismatch(job_id, result.job.code)

        job = self.store.update(
            job_id, lambda record: confirm_collection(record, result.job.code, self._now())
        )
        logger.log_event('pickup_confirmed', {'job_id': job_id, 'code': job.code})
        return job

    # ==================== Queries ====================

    def get_job(self, job_id: str) -> PrintJob:
        return self.store.get(job_id)

    def active_queue(self) -> List[PrintJob]:
        return active_view(self.store.snapshot())

    def ready_queue(self) -> List[PrintJob]:
        return ready_view(self.store.snapshot())

    def queue_entries(self, jobs: Optional[List[PrintJob]] = None) -> List[QueueEntry]:
        """Active view with positions and live waits, all from the same snapshot"""
        ordered = active_view(self.store.snapshot() if jobs is None else jobs)
        waits = current_wait_minutes(ordered)
        return [
            QueueEntry(job=job, queue_position=position, current_wait_minutes=waits[job.id])
            for position, job in enumerate(ordered, 1)
        ]

    def jobs_for(self, submitter_id: str) -> List[PrintJob]:
        """Submitter's jobs, newest first"""
        jobs = [job for job in self.store.snapshot() if job.submitter_id == submitter_id]
        return sorted(jobs, key=lambda job: (job.created_at, job.id), reverse=True)

    def jobs_by_slot(self, view: str = "active") -> List[dict]:
        jobs = self.store.snapshot()
        if view == "active":
            return group_by_slot(active_view(jobs))
        if view == "ready":
            return group_by_slot(ready_view(jobs))
        raise InvalidInput('view', view, 'must be active or ready')

    def queue_stats(self) -> Dict:
        jobs = self.store.snapshot()
        return {
            'status_counts': status_counts(jobs),
            'resources': [snapshot.to_dict() for snapshot in snapshot_resources(jobs).values()],
            'degraded_code_generations': self.degraded_code_generations,
        }

    def display_name(self, job: PrintJob) -> str:
        return self.directory.resolve(job)
