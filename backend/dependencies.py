"""
Shared FastAPI dependencies and response serialization
"""

from typing import Dict, List, Optional

from fastapi import Request

from lifecycle import AlreadyCollected, CodeMismatch, MalformedCode, NotFound, NotReady
from models import PrintJob
from print_queue import PrintQueueService, QueueEntry
from queue_engine import (
    AlreadyPaid, InvalidInput, InvalidTransition, JobNotFound,
    PersistenceFailure, PrintQueueError,
)

ERROR_STATUS = {
    InvalidInput: 422,
    JobNotFound: 404,
    NotFound: 404,
    MalformedCode: 400,
    InvalidTransition: 409,
    AlreadyPaid: 409,
    AlreadyCollected: 409,
    NotReady: 409,
    CodeMismatch: 409,
    PersistenceFailure: 503,
}


def status_for_error(error: PrintQueueError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 500


def get_service(request: Request) -> PrintQueueService:
    """Dependency to get the queue service created at startup"""
    return request.app.state.service


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_job(job: PrintJob, entry: Optional[QueueEntry] = None,
                  display_name: Optional[str] = None) -> Dict:
    payment = job.payment
    return {
        "id": job.id,
        "code": job.code,
        "submitter_id": job.submitter_id,
        "submitter_label": job.submitter_label,
        "display_name": display_name or job.submitter_label or job.submitter_id,
        "document_name": job.document_name,
        "document_size_bytes": job.document_size_bytes,
        "page_count": job.page_count,
        "copies": job.copies,
        "color_mode": job.color_mode.value,
        "urgency": job.urgency.value,
        "pickup_slot": job.pickup_slot,
        "note": job.note,
        "status": job.status.value,
        "assigned_resource": job.assigned_resource.value,
        "priority_tier": job.priority_tier.value,
        "estimated_wait_minutes": job.estimated_wait_minutes,
        "queue_position": entry.queue_position if entry else None,
        "current_wait_minutes": entry.current_wait_minutes if entry else None,
        "is_paid": payment.is_paid,
        "payment": {
            "amount": payment.amount,
            "reference": payment.reference,
            "timestamp": _iso(payment.timestamp),
        } if payment.is_paid else None,
        "needs_submitter_attention": bool(job.needs_submitter_attention),
        "operator_comments": [
            {
                "id": comment.id,
                "message": comment.message,
                "requires_action": bool(comment.requires_action),
                "created_at": _iso(comment.created_at),
            }
            for comment in job.operator_comments
        ],
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
    }


def serialize_jobs(service: PrintQueueService, jobs: List[PrintJob]) -> List[Dict]:
    """Serialize jobs with positions and live waits taken from one snapshot"""
    entries = {entry.job.id: entry for entry in service.queue_entries()}
    return [
        serialize_job(job, entries.get(job.id), service.display_name(job))
        for job in jobs
    ]
