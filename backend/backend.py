"""
Shared Print Queue Backend
Two printers, one visible queue, pickup by 4-digit code.
Features: SSE change feed, live queue positions, operator router
"""
from fastapi import FastAPI, Depends, File, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from sqlalchemy import text
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
import os
import asyncio
import json

from database import DATABASE_URL, init_db, make_engine, make_session_factory
from dependencies import get_service, serialize_job, serialize_jobs, status_for_error
from directory import SubmitterDirectory
from documents import count_pages
from job_store import JobChange, JobStore
from models import ColorModeEnum, UrgencyEnum
from print_queue import PrintQueueService
from queue_engine import Config, PrintQueueError, Submission
from routes.operator import router as operator_router

# ==================== Logging Setup ====================

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOG_FILE = os.path.join(LOG_DIR, "print_queue_backend.log")

# Engine events, store and helper modules all write to the same file
LOGGER_NAMES = (
    "print_queue_backend",
    "print_queue_operator",
    "print_queue",
    "job_store",
    "directory",
    "documents",
    "database",
)

def setup_logging():
    os.makedirs(LOG_DIR, exist_ok=True)

    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=10*1024*1024, backupCount=5)
    console_handler = logging.StreamHandler()

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    for name in LOGGER_NAMES:
        named_logger = logging.getLogger(name)
        named_logger.setLevel(LOG_LEVEL)
        if any(isinstance(handler, RotatingFileHandler) for handler in named_logger.handlers):
            continue
        named_logger.addHandler(file_handler)
        # StructuredLogger may already have attached a console handler
        if not any(type(handler) is logging.StreamHandler for handler in named_logger.handlers):
            named_logger.addHandler(console_handler)

setup_logging()
logger = logging.getLogger("print_queue_backend")

# ==================== SSE Event Management ====================

class SSEManager:
    """Fans store changes out to every connected viewer"""

    def __init__(self):
        self.connections: List[asyncio.Queue] = []
        self.lock = asyncio.Lock()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self) -> asyncio.Queue:
        queue = asyncio.Queue()
        async with self.lock:
            self.connections.append(queue)
        logger.info(f"✅ SSE connected ({len(self.connections)} viewers)")
        return queue

    async def disconnect(self, queue: asyncio.Queue):
        async with self.lock:
            if queue in self.connections:
                self.connections.remove(queue)
        logger.info(f"❌ SSE disconnected ({len(self.connections)} viewers)")

    def on_store_change(self, change: JobChange):
        """Store listener; runs on whichever thread did the write"""
        if self.loop is None or self.loop.is_closed():
            return

        message = {
            "event": "queue_changed",
            "data": {"kind": change.kind, "job_id": change.job_id},
            "timestamp": datetime.now().isoformat()
        }
        for queue in list(self.connections):
            self.loop.call_soon_threadsafe(queue.put_nowait, message)

# ==================== Request/Response Models ====================

class SubmitJobRequest(BaseModel):
    """Request to submit a print job"""
    submitter_id: str = Field(..., min_length=1, max_length=Config.MAX_SUBMITTER_ID_LENGTH)
    submitter_label: Optional[str] = Field(default=None, max_length=Config.MAX_LABEL_LENGTH)
    document_name: str = Field(..., min_length=1, max_length=Config.MAX_DOCUMENT_NAME_LENGTH)
    document_size_bytes: int = Field(default=0, ge=0)
    page_count: int = Field(..., ge=1)
    copies: int = Field(default=1, ge=Config.MIN_COPIES, le=Config.MAX_COPIES)
    color_mode: ColorModeEnum = ColorModeEnum.MONOCHROME
    urgency: UrgencyEnum = UrgencyEnum.NORMAL
    pickup_slot: str
    note: Optional[str] = Field(default=None, max_length=Config.MAX_NOTE_LENGTH)

class PaymentRequest(BaseModel):
    amount: Optional[float] = Field(default=None, ge=0)
    reference: Optional[str] = Field(default=None, min_length=1, max_length=100)

# ==================== App Factory ====================

def create_app(database_url: str = DATABASE_URL, directory: Optional[SubmitterDirectory] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize database, store and service on startup"""
        logger.info("🚀 Starting Print Queue Backend...")

        engine = make_engine(database_url)
        try:
            init_db(engine)
            logger.info("✅ Database initialized")
        except Exception as e:
            logger.error(f"❌ Database init failed: {e}")
            raise

        store = JobStore(make_session_factory(engine))
        app.state.engine = engine
        app.state.service = PrintQueueService(store, directory=directory)
        app.state.sse = SSEManager()
        app.state.sse.loop = asyncio.get_running_loop()
        unsubscribe = store.subscribe(app.state.sse.on_store_change)

        yield

        unsubscribe()
        engine.dispose()
        logger.info("🛑 Shutting down Print Queue Backend...")

    app = FastAPI(
        title="Shared Print Queue",
        version="1.0",
        description="Two-printer queue with load balancing, priority ordering and code-verified pickup",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PrintQueueError)
    async def print_queue_error_handler(request: Request, exc: PrintQueueError):
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(f"❌ {request.url.path}: {exc}")
        else:
            logger.info(f"{request.url.path} rejected: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})

    register_routes(app)
    app.include_router(operator_router)
    return app

# ==================== API Endpoints ====================

def register_routes(app: FastAPI):

    @app.get("/")
    def root():
        return {
            "service": "Shared Print Queue",
            "version": "1.0",
            "resources": [resource.value for resource in Config.PAGES_PER_MINUTE],
            "pickup_slots": [
                {"id": slot_id, **slot} for slot_id, slot in Config.PICKUP_SLOTS.items()
            ]
        }

    # ==================== Submission ====================

    @app.post("/jobs", status_code=status.HTTP_201_CREATED)
    def submit_job(request: SubmitJobRequest, service: PrintQueueService = Depends(get_service)):
        """Assign a printer, priority and pickup code to a new job"""
        submitted = service.submit(Submission(**request.model_dump()))
        logger.info(f"📄 Job {submitted.job.id} -> {submitted.job.assigned_resource.value} (code {submitted.job.code})")

        job = serialize_jobs(service, [submitted.job])[0]
        return {
            "job": job,
            "reasoning": submitted.reasoning,
            "degraded_code": submitted.code_result.degraded
        }

    @app.post("/documents/page-count")
    async def page_count(file: UploadFile = File(...)):
        """Count pages of an uploaded PDF (size estimate when unreadable)"""
        file_content = await file.read()
        result = count_pages(file_content)
        return {
            "filename": file.filename,
            "size_bytes": len(file_content),
            "page_count": result.page_count,
            "authoritative": result.authoritative
        }

    # ==================== Job Queries ====================

    @app.get("/jobs/{job_id}")
    def get_job(job_id: str, service: PrintQueueService = Depends(get_service)):
        return serialize_jobs(service, [service.get_job(job_id)])[0]

    @app.get("/jobs/{job_id}/quote")
    def get_quote(job_id: str, service: PrintQueueService = Depends(get_service)):
        return service.quote(job_id).to_dict()

    @app.post("/jobs/{job_id}/payment")
    def pay_job(job_id: str, request: PaymentRequest, service: PrintQueueService = Depends(get_service)):
        """Record a completed payment (amount defaults to the quote)"""
        job = service.mark_paid(job_id, amount=request.amount, reference=request.reference)
        return serialize_jobs(service, [job])[0]

    @app.post("/jobs/{job_id}/acknowledge")
    def acknowledge_job(job_id: str, service: PrintQueueService = Depends(get_service)):
        """Submitter has read the operator's comments"""
        job = service.acknowledge(job_id)
        return serialize_jobs(service, [job])[0]

    @app.get("/submitters/{submitter_id}/jobs")
    def get_submitter_jobs(submitter_id: str, service: PrintQueueService = Depends(get_service)):
        jobs = service.jobs_for(submitter_id)
        return {"submitter_id": submitter_id, "count": len(jobs), "jobs": serialize_jobs(service, jobs)}

    # ==================== Queue Views ====================

    @app.get("/queue/active")
    def get_active_queue(service: PrintQueueService = Depends(get_service)):
        entries = service.queue_entries()
        return {
            "count": len(entries),
            "jobs": [
                serialize_job(entry.job, entry, service.display_name(entry.job))
                for entry in entries
            ]
        }

    @app.get("/queue/ready")
    def get_ready_queue(service: PrintQueueService = Depends(get_service)):
        jobs = service.ready_queue()
        return {"count": len(jobs), "jobs": serialize_jobs(service, jobs)}

    @app.get("/queue/stream")
    async def stream_queue_updates(request: Request):
        """SSE change feed - viewers refetch their views on each event"""
        sse_manager: SSEManager = request.app.state.sse
        queue = await sse_manager.connect()

        async def event_generator():
            try:
                yield f"data: {json.dumps({'event': 'connected'})}\n\n"

                while True:
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=30.0)
                        yield f"data: {json.dumps(message)}\n\n"
                    except asyncio.TimeoutError:
                        yield f"data: {json.dumps({'event': 'heartbeat'})}\n\n"
            finally:
                await sse_manager.disconnect(queue)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no"
            }
        )

    @app.get("/stats")
    def get_stats(service: PrintQueueService = Depends(get_service)) -> Dict:
        return {**service.queue_stats(), "timestamp": datetime.now().isoformat()}

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint"""
        try:
            with request.app.state.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            db_healthy = True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            db_healthy = False

        return {
            "status": "healthy" if db_healthy else "degraded",
            "timestamp": datetime.now().isoformat(),
            "components": {
                "database": "healthy" if db_healthy else "unhealthy",
                "queue_service": "healthy" if getattr(request.app.state, "service", None) else "unhealthy"
            },
            "version": "1.0"
        }

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
