"""
Shared Print Queue Engine
=========================
Pure decision logic for the two-printer pickup queue:
- Collision-free pickup code generation with a bounded, logged fallback
- Per-printer load snapshots derived from the live job set
- Rule-based printer assignment with deterministic tie-breaks
- Priority tier and wait-time estimation
- Stable queue ordering (payment, tier, urgency, submission time)

Nothing in here touches the database or the subscription mechanism; every
function works on a snapshot (a plain list of jobs) handed in by the caller.
"""

import json
import logging
import math
import random
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from models import (
    ACTIVE_STATUSES, ColorModeEnum, JobStatusEnum, PriorityTierEnum,
    ResourceEnum, UrgencyEnum,
)

# ============================================================================
# CONFIGURATION
# ============================================================================

class Config:
    """Centralized configuration management"""

    CODE_LENGTH = 4
    CODE_SPACE = 10 ** CODE_LENGTH
    MAX_CODE_ATTEMPTS = 100
    CODE_REUSE_COOLDOWN_MINUTES = 60
    MAX_RETRIES = 3

    # Pages per minute for each printer
    PAGES_PER_MINUTE = {
        ResourceEnum.RESOURCE_A: 25,
        ResourceEnum.RESOURCE_B: 30,
    }
    SETUP_MINUTES_PER_JOB = 0.5

    PRIORITY_POINTS = {
        'paid': 3,
        'urgent': 2,
        'small_job': 1,
    }
    SMALL_JOB_MAX_PAGES = 5
    HIGH_TIER_MIN_SCORE = 4
    MEDIUM_TIER_MIN_SCORE = 2

    TIER_MULTIPLIER = {
        PriorityTierEnum.HIGH: 0.7,
        PriorityTierEnum.MEDIUM: 0.85,
        PriorityTierEnum.LOW: 1.0,
    }
    TIER_RANK = {
        PriorityTierEnum.HIGH: 0,
        PriorityTierEnum.MEDIUM: 1,
        PriorityTierEnum.LOW: 2,
    }

    PICKUP_SLOTS = OrderedDict([
        ('1', {'label': 'Morning Break', 'time': '10:00 AM - 10:30 AM'}),
        ('2', {'label': 'Lunch Break', 'time': '12:30 PM - 1:30 PM'}),
        ('4', {'label': 'After Classes', 'time': '3:30 PM - 8:00 PM'}),
    ])

    MIN_COPIES = 1
    MAX_COPIES = 50
    MAX_NOTE_LENGTH = 500
    MAX_COMMENT_LENGTH = 500
    # Column widths in models.PrintJob
    MAX_SUBMITTER_ID_LENGTH = 100
    MAX_LABEL_LENGTH = 255
    MAX_DOCUMENT_NAME_LENGTH = 255


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PrintQueueError(Exception):
    """Base exception for print queue errors"""

    def to_dict(self) -> dict:
        details = {
            key: (value.value if hasattr(value, 'value') else value)
            for key, value in self.details().items()
        }
        return {'error': type(self).__name__, 'message': str(self), **details}

    def details(self) -> dict:
        return {}

class InvalidInput(PrintQueueError):
    """Raised when submission or comment attributes fail validation"""
    def __init__(self, field_name, value, reason):
        self.field = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field_name}={value!r}: {reason}")

    def details(self):
        return {'field': self.field, 'value': self.value, 'reason': self.reason}

class InvalidTransition(PrintQueueError):
    """Raised when a status change does not follow waiting -> printing -> printed -> collected"""
    def __init__(self, job_id, current, requested):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        current_value = getattr(current, 'value', current)
        requested_value = getattr(requested, 'value', requested)
        super().__init__(
            f"Job {job_id} cannot go from {current_value} to {requested_value}"
        )

    def details(self):
        return {'job_id': self.job_id, 'current': self.current, 'requested': self.requested}

class JobNotFound(PrintQueueError):
    """Raised when a job id does not exist in the store"""
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")

    def details(self):
        return {'job_id': self.job_id}

class AlreadyPaid(PrintQueueError):
    """Raised when payment is recorded twice for the same job"""
    def __init__(self, job_id, reference):
        self.job_id = job_id
        self.reference = reference
        super().__init__(f"Job {job_id} is already paid (reference {reference})")

    def details(self):
        return {'job_id': self.job_id, 'reference': self.reference}

class CodeGenerationExhausted(PrintQueueError):
    """Degraded-mode signal: random code search gave up and fell back to the clock"""
    def __init__(self, attempts, taken):
        self.attempts = attempts
        self.taken = taken
        super().__init__(
            f"No free pickup code after {attempts} attempts ({taken} codes taken)"
        )

    def details(self):
        return {'attempts': self.attempts, 'taken': self.taken}

class PersistenceFailure(PrintQueueError):
    """Raised when the underlying store rejects a read or write"""
    def __init__(self, operation, original):
        self.operation = operation
        self.original = original
        super().__init__(f"Store {operation} failed: {original}")

    def details(self):
        return {'operation': self.operation}


# ============================================================================
# LOGGING
# ============================================================================

class StructuredLogger:
    """Structured logging for queue decisions"""

    def __init__(self, name="print_queue"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_event(self, event_type, data, level="info"):
        """Log structured event"""
        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'event': event_type,
            'data': data
        }

        log_func = getattr(self.logger, level)
        log_func(json.dumps(log_entry, default=str))

    def log_assignment(self, job_id, resource, reason, tier, wait_minutes):
        self.log_event('job_assigned', {
            'job_id': job_id,
            'resource': getattr(resource, 'value', resource),
            'reason': reason,
            'priority_tier': getattr(tier, 'value', tier),
            'estimated_wait_minutes': wait_minutes
        })

    def log_error(self, error_type, details):
        self.log_event('error', {
            'error_type': error_type,
            'details': str(details)
        }, level='error')

logger = StructuredLogger()


# ============================================================================
# VALIDATION
# ============================================================================

@dataclass
class Submission:
    """Attributes a submitter provides for a new print job"""
    submitter_id: str
    document_name: str
    page_count: int
    pickup_slot: str
    copies: int = 1
    color_mode: ColorModeEnum = ColorModeEnum.MONOCHROME
    urgency: UrgencyEnum = UrgencyEnum.NORMAL
    submitter_label: Optional[str] = None
    document_size_bytes: int = 0
    note: Optional[str] = None

class Validator:
    """Input validation and sanitization"""

    @staticmethod
    def _check_length(field_name: str, value: str, limit: int):
        if len(value) > limit:
            raise InvalidInput(field_name, f"{value[:20]}...", f'must be at most {limit} characters')

    @staticmethod
    def validate_submission(submission: Submission) -> Submission:
        """Validate submission values; returns a copy with enum fields coerced"""
        if not submission.submitter_id or not str(submission.submitter_id).strip():
            raise InvalidInput('submitter_id', submission.submitter_id, 'must not be empty')
        Validator._check_length('submitter_id', submission.submitter_id.strip(), Config.MAX_SUBMITTER_ID_LENGTH)

        if not submission.document_name or not str(submission.document_name).strip():
            raise InvalidInput('document_name', submission.document_name, 'must not be empty')
        Validator._check_length('document_name', submission.document_name.strip(), Config.MAX_DOCUMENT_NAME_LENGTH)

        if submission.submitter_label is not None:
            Validator._check_length('submitter_label', submission.submitter_label, Config.MAX_LABEL_LENGTH)

        if not isinstance(submission.page_count, int) or isinstance(submission.page_count, bool) \
                or submission.page_count < 1:
            raise InvalidInput('page_count', submission.page_count, 'must be an integer >= 1')

        if not isinstance(submission.copies, int) or isinstance(submission.copies, bool) \
                or not Config.MIN_COPIES <= submission.copies <= Config.MAX_COPIES:
            raise InvalidInput(
                'copies', submission.copies,
                f'must be between {Config.MIN_COPIES} and {Config.MAX_COPIES}'
            )

        if submission.pickup_slot not in Config.PICKUP_SLOTS:
            raise InvalidInput(
                'pickup_slot', submission.pickup_slot,
                f"must be one of {', '.join(Config.PICKUP_SLOTS)}"
            )

        if submission.note is not None and len(submission.note) > Config.MAX_NOTE_LENGTH:
            raise InvalidInput(
                'note', f"{submission.note[:20]}...",
                f'must be at most {Config.MAX_NOTE_LENGTH} characters'
            )

        if submission.document_size_bytes is None or submission.document_size_bytes < 0:
            raise InvalidInput('document_size_bytes', submission.document_size_bytes, 'must be >= 0')

        try:
            color_mode = ColorModeEnum(submission.color_mode)
        except ValueError:
            raise InvalidInput('color_mode', submission.color_mode, 'must be monochrome or color')

        try:
            urgency = UrgencyEnum(submission.urgency)
        except ValueError:
            raise InvalidInput('urgency', submission.urgency, 'must be normal or urgent')

        return Submission(
            submitter_id=submission.submitter_id.strip(),
            document_name=submission.document_name.strip(),
            page_count=submission.page_count,
            pickup_slot=submission.pickup_slot,
            copies=submission.copies,
            color_mode=color_mode,
            urgency=urgency,
            submitter_label=submission.submitter_label,
            document_size_bytes=submission.document_size_bytes,
            note=submission.note or None,
        )

    @staticmethod
    def validate_comment(message: str) -> str:
        if message is None or not message.strip():
            raise InvalidInput('message', message, 'must not be empty')
        if len(message) > Config.MAX_COMMENT_LENGTH:
            raise InvalidInput(
                'message', f"{message[:20]}...",
                f'must be at most {Config.MAX_COMMENT_LENGTH} characters'
            )
        return message.strip()


# ============================================================================
# CODE GENERATION
# ============================================================================

@dataclass(frozen=True)
class Generated:
    """Code drawn at random and checked against the taken set"""
    code: str
    attempts: int

    @property
    def degraded(self) -> bool:
        return False

@dataclass(frozen=True)
class Fallback:
    """Code derived from the clock after the random search gave up"""
    code: str
    attempts: int
    signal: CodeGenerationExhausted

    @property
    def degraded(self) -> bool:
        return True

CodeResult = Union[Generated, Fallback]

def format_code(value: int) -> str:
    return str(value % Config.CODE_SPACE).zfill(Config.CODE_LENGTH)

def generate_code(existing_codes: Set[str],
                  rng: Optional[random.Random] = None,
                  clock: Callable[[], float] = time.time,
                  max_attempts: int = Config.MAX_CODE_ATTEMPTS) -> CodeResult:
    """
    Draw a 4-digit code not in existing_codes.
    Gives up after max_attempts draws and derives the code from the
    current time in milliseconds modulo 10000, stepping forward past taken
    codes. Only a completely full code space yields a taken code.
    """
    rng = rng or random.SystemRandom()

    for attempt in range(1, max_attempts + 1):
        code = format_code(rng.randrange(Config.CODE_SPACE))
        if code not in existing_codes:
            return Generated(code=code, attempts=attempt)

    start = int(clock() * 1000)
    code = format_code(start)
    for offset in range(Config.CODE_SPACE):
        candidate = format_code(start + offset)
        if candidate not in existing_codes:
            code = candidate
            break

    signal = CodeGenerationExhausted(max_attempts, len(existing_codes))
    logger.log_event('code_generation_exhausted', {
        'attempts': max_attempts,
        'taken': len(existing_codes),
        'fallback_code': code
    }, level='warning')
    return Fallback(code=code, attempts=max_attempts, signal=signal)

def taken_codes(jobs: Iterable, now: datetime,
                cooldown_minutes: int = Config.CODE_REUSE_COOLDOWN_MINUTES) -> Set[str]:
    """Codes held by uncollected jobs, plus codes collected inside the reuse cooldown"""
    cutoff = now - timedelta(minutes=cooldown_minutes)
    codes = set()
    for job in jobs:
        if job.status != JobStatusEnum.COLLECTED:
            codes.add(job.code)
        elif job.updated_at is not None and job.updated_at >= cutoff:
            codes.add(job.code)
    return codes


# ============================================================================
# RESOURCE LOAD
# ============================================================================

@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time load of one printer"""
    resource_id: ResourceEnum
    active_job_count: int
    total_pages_queued: int
    pages_per_minute: int
    online: bool = True

    def to_dict(self) -> dict:
        return {
            'resource_id': self.resource_id.value,
            'active_job_count': self.active_job_count,
            'total_pages_queued': self.total_pages_queued,
            'pages_per_minute': self.pages_per_minute,
            'online': self.online,
        }

def snapshot_resources(jobs: Iterable) -> Dict[ResourceEnum, ResourceSnapshot]:
    """Recompute both printers' load from the active jobs (waiting or printing)"""
    counts = {resource: 0 for resource in ResourceEnum}
    pages = {resource: 0 for resource in ResourceEnum}

    for job in jobs:
        if job.status not in ACTIVE_STATUSES or job.assigned_resource is None:
            continue
        resource = ResourceEnum(job.assigned_resource)
        counts[resource] += 1
        pages[resource] += job.page_count * job.copies

    return {
        resource: ResourceSnapshot(
            resource_id=resource,
            active_job_count=counts[resource],
            total_pages_queued=pages[resource],
            pages_per_minute=Config.PAGES_PER_MINUTE[resource],
        )
        for resource in ResourceEnum
    }


# ============================================================================
# PRINTER ASSIGNMENT
# ============================================================================

@dataclass(frozen=True)
class Assignment:
    resource: ResourceEnum
    rule: int
    reason: str

def assign_resource(snapshots: Dict[ResourceEnum, ResourceSnapshot]) -> Assignment:
    """
    First matching rule wins:
      1. both printers idle -> A
      2. A busy, B idle -> B
      3. fewer queued pages wins
      4. equal pages -> A
    """
    a = snapshots[ResourceEnum.RESOURCE_A]
    b = snapshots[ResourceEnum.RESOURCE_B]

    if (a.active_job_count == 0 and a.total_pages_queued == 0
            and b.active_job_count == 0 and b.total_pages_queued == 0):
        return Assignment(ResourceEnum.RESOURCE_A, 1, 'First job assigned to resourceA (both printers empty)')

    if a.active_job_count >= 1 and b.active_job_count == 0 and b.total_pages_queued == 0:
        return Assignment(ResourceEnum.RESOURCE_B, 2, 'Assigned to resourceB (resourceA busy, resourceB empty)')

    if a.total_pages_queued < b.total_pages_queued:
        return Assignment(
            ResourceEnum.RESOURCE_A, 3,
            f'resourceA has fewer pages ({a.total_pages_queued} vs {b.total_pages_queued})'
        )
    if b.total_pages_queued < a.total_pages_queued:
        return Assignment(
            ResourceEnum.RESOURCE_B, 3,
            f'resourceB has fewer pages ({b.total_pages_queued} vs {a.total_pages_queued})'
        )

    return Assignment(
        ResourceEnum.RESOURCE_A, 4,
        f'Equal page load ({a.total_pages_queued} pages each), defaulting to resourceA'
    )


# ============================================================================
# PRIORITY & WAIT ESTIMATION
# ============================================================================

@dataclass(frozen=True)
class Estimate:
    priority_tier: PriorityTierEnum
    estimated_wait_minutes: int
    score: int
    reasons: List[str] = field(default_factory=list)

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

def score_priority(page_count: int, urgency, is_paid: bool):
    """Return (score, reasons) for the integer priority points"""
    score = 0
    reasons = []

    if is_paid:
        score += Config.PRIORITY_POINTS['paid']
        reasons.append('paid job')
    if urgency == UrgencyEnum.URGENT:
        score += Config.PRIORITY_POINTS['urgent']
        reasons.append('urgent request')
    if page_count <= Config.SMALL_JOB_MAX_PAGES:
        score += Config.PRIORITY_POINTS['small_job']
        reasons.append('small job')

    return score, reasons

def tier_for_score(score: int) -> PriorityTierEnum:
    if score >= Config.HIGH_TIER_MIN_SCORE:
        return PriorityTierEnum.HIGH
    if score >= Config.MEDIUM_TIER_MIN_SCORE:
        return PriorityTierEnum.MEDIUM
    return PriorityTierEnum.LOW

def wait_minutes(pages_queued: int, jobs_queued: int, pages_per_minute: float, tier) -> int:
    """(pages / ppm + jobs * setup) * tier multiplier, rounded, never below 1"""
    base = pages_queued / pages_per_minute
    setup = jobs_queued * Config.SETUP_MINUTES_PER_JOB
    multiplier = Config.TIER_MULTIPLIER[PriorityTierEnum(tier)]
    return max(1, _round_half_up((base + setup) * multiplier))

def estimate(page_count: int, urgency, is_paid: bool, snapshot: ResourceSnapshot) -> Estimate:
    """Priority tier and wait time for a job joining the given printer"""
    score, reasons = score_priority(page_count, urgency, is_paid)
    tier = tier_for_score(score)
    wait = wait_minutes(
        snapshot.total_pages_queued,
        snapshot.active_job_count,
        snapshot.pages_per_minute,
        tier,
    )
    return Estimate(priority_tier=tier, estimated_wait_minutes=wait, score=score, reasons=reasons)

def explain(assignment: Assignment, result: Estimate) -> str:
    """Human-readable account of an assignment decision"""
    explanation = assignment.reason
    if result.reasons:
        explanation += f". {result.priority_tier.value} priority due to {', '.join(result.reasons)}"
    explanation += f". Estimated {result.estimated_wait_minutes} min wait"
    return explanation


# ============================================================================
# QUEUE ORDERING
# ============================================================================

def queue_sort_key(job):
    """
    Paid first, then tier, then urgent before normal, then oldest first.
    Status is not part of the key, so advancing a job never moves it.
    """
    return (
        0 if job.is_paid else 1,
        Config.TIER_RANK[PriorityTierEnum(job.priority_tier)],
        0 if job.urgency == UrgencyEnum.URGENT else 1,
        job.created_at,
        job.id,
    )

def active_view(jobs: Iterable) -> list:
    return sorted((job for job in jobs if job.status in ACTIVE_STATUSES), key=queue_sort_key)

def ready_view(jobs: Iterable) -> list:
    return sorted((job for job in jobs if job.status == JobStatusEnum.PRINTED), key=queue_sort_key)

def queue_positions(jobs: Iterable) -> Dict[str, int]:
    """1-based position of every active job, recomputed from scratch"""
    return {job.id: index for index, job in enumerate(active_view(jobs), 1)}

def current_wait_minutes(ordered_active: list) -> Dict[str, int]:
    """
    Live wait for each job in an already ordered active view: the jobs ahead
    of it on the same printer, fed through the same formula as the estimate.
    """
    pages_ahead = {resource: 0 for resource in ResourceEnum}
    jobs_ahead = {resource: 0 for resource in ResourceEnum}
    waits = {}

    for job in ordered_active:
        resource = ResourceEnum(job.assigned_resource)
        waits[job.id] = wait_minutes(
            pages_ahead[resource],
            jobs_ahead[resource],
            Config.PAGES_PER_MINUTE[resource],
            job.priority_tier,
        )
        pages_ahead[resource] += job.page_count * job.copies
        jobs_ahead[resource] += 1

    return waits

def group_by_slot(ordered_jobs: list) -> List[dict]:
    """Split an ordered view by pickup slot, keeping the view's order inside each slot"""
    groups = []
    for slot_id, slot in Config.PICKUP_SLOTS.items():
        slot_jobs = [job for job in ordered_jobs if job.pickup_slot == slot_id]
        if slot_jobs:
            groups.append({
                'slot_id': slot_id,
                'label': slot['label'],
                'time': slot['time'],
                'jobs': slot_jobs,
            })
    return groups

def status_counts(jobs: Iterable) -> Dict[str, int]:
    counts = {status.value: 0 for status in JobStatusEnum}
    for job in jobs:
        counts[JobStatusEnum(job.status).value] += 1
    return counts
