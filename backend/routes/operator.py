from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
import logging

from dependencies import get_service, serialize_job, serialize_jobs
from lifecycle import normalize_code
from print_queue import PrintQueueService

router = APIRouter(prefix="/operator", tags=["Operator"])

# Setup logger
logger = logging.getLogger("print_queue_operator")

# ==================== Pydantic Models ====================

class AdvanceRequest(BaseModel):
    target_status: str

class CommentRequest(BaseModel):
    message: str
    requires_action: bool = False

class ConfirmRequest(BaseModel):
    code: str

class VerifyRequest(BaseModel):
    code: str
    source: str = Field(default="manual", pattern="^(manual|scan)$")

# ==================== Job Handling ====================

@router.post("/jobs/{job_id}/advance")
def advance_job(
    job_id: str,
    request: AdvanceRequest,
    service: PrintQueueService = Depends(get_service)
):
    """Move a job waiting -> printing or printing -> printed"""
    job = service.advance(job_id, request.target_status)
    logger.info(f"🔄 Job {job_id} advanced to {job.status.value}")
    return serialize_jobs(service, [job])[0]

@router.post("/jobs/{job_id}/comments")
def comment_on_job(
    job_id: str,
    request: CommentRequest,
    service: PrintQueueService = Depends(get_service)
):
    """Attach a note for the submitter, optionally flagging it for action"""
    job = service.comment(job_id, request.message, request.requires_action)
    return serialize_jobs(service, [job])[0]

@router.get("/queue/by-slot")
def queue_by_slot(
    view: str = Query(default="active", pattern="^(active|ready)$"),
    service: PrintQueueService = Depends(get_service)
):
    """Active or ready view split by pickup slot"""
    groups = service.jobs_by_slot(view)
    return {
        "view": view,
        "slots": [
            {
                "slot_id": group["slot_id"],
                "label": group["label"],
                "time": group["time"],
                "count": len(group["jobs"]),
                "jobs": serialize_jobs(service, group["jobs"]),
            }
            for group in groups
        ]
    }

# ==================== Pickup ====================

@router.post("/pickup/verify")
def verify_pickup(
    request: VerifyRequest,
    service: PrintQueueService = Depends(get_service)
):
    """Look up the job for a presented code; nothing is changed"""
    result = service.verify(request.code, source=request.source)
    if not result.ok:
        raise result.error

    job = result.job
    return {
        "verified": True,
        "code": normalize_code(request.code),
        "source": request.source,
        "job": serialize_job(job, display_name=service.display_name(job))
    }

@router.post("/pickup/{job_id}/confirm")
def confirm_pickup(
    job_id: str,
    request: ConfirmRequest,
    service: PrintQueueService = Depends(get_service)
):
    """Hand over a printed job; the code must verify to this job (printed -> collected)"""
    job = service.confirm_pickup(job_id, request.code)
    logger.info(f"📦 Job {job_id} collected (code {job.code})")
    return serialize_job(job, display_name=service.display_name(job))
