"""
SQLAlchemy Database Models - Shared Print Queue
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union
from database import Base
import enum


def utcnow() -> datetime:
    """Naive UTC timestamp (what SQLite and PostgreSQL DateTime columns round-trip)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# ==================== Enums ====================

class JobStatusEnum(str, enum.Enum):
    WAITING = "waiting"
    PRINTING = "printing"
    PRINTED = "printed"
    COLLECTED = "collected"

class ResourceEnum(str, enum.Enum):
    RESOURCE_A = "resourceA"
    RESOURCE_B = "resourceB"

class PriorityTierEnum(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

class UrgencyEnum(str, enum.Enum):
    NORMAL = "normal"
    URGENT = "urgent"

class ColorModeEnum(str, enum.Enum):
    MONOCHROME = "monochrome"
    COLOR = "color"

ACTIVE_STATUSES = (JobStatusEnum.WAITING, JobStatusEnum.PRINTING)

# ==================== Payment ====================

@dataclass(frozen=True)
class Unpaid:
    """Job has not been paid for yet"""

    @property
    def is_paid(self) -> bool:
        return False

@dataclass(frozen=True)
class Paid:
    """Completed payment - amount, reference and timestamp always travel together"""
    amount: float
    reference: str
    timestamp: datetime

    @property
    def is_paid(self) -> bool:
        return True

Payment = Union[Unpaid, Paid]

# ==================== Models ====================

class PrintJob(Base):
    __tablename__ = "print_jobs"

    id = Column(String(50), primary_key=True, index=True)
    code = Column(String(4), nullable=False, index=True)

    # Submission attributes (immutable after creation)
    submitter_id = Column(String(100), nullable=False, index=True)
    submitter_label = Column(String(255))
    document_name = Column(String(255), nullable=False)
    document_size_bytes = Column(Integer, default=0)
    page_count = Column(Integer, nullable=False)
    copies = Column(Integer, default=1)
    color_mode = Column(SQLEnum(ColorModeEnum), default=ColorModeEnum.MONOCHROME)
    urgency = Column(SQLEnum(UrgencyEnum), default=UrgencyEnum.NORMAL)
    pickup_slot = Column(String(10), nullable=False)
    note = Column(Text, nullable=True)

    # Assignment (set once at submission)
    status = Column(SQLEnum(JobStatusEnum), default=JobStatusEnum.WAITING, index=True)
    assigned_resource = Column(SQLEnum(ResourceEnum), nullable=False)
    priority_tier = Column(SQLEnum(PriorityTierEnum), nullable=False)
    estimated_wait_minutes = Column(Integer, nullable=False)

    # Payment info - written together by the lifecycle module only
    is_paid = Column(Boolean, default=False)
    payment_amount = Column(Float, nullable=True)
    payment_reference = Column(String(100), nullable=True)
    payment_timestamp = Column(DateTime, nullable=True)

    needs_submitter_attention = Column(Boolean, default=False)

    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=True)

    # Relationships
    operator_comments = relationship(
        "OperatorComment",
        back_populates="job",
        order_by="OperatorComment.seq",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def payment(self) -> Payment:
        if not self.is_paid:
            return Unpaid()
        return Paid(
            amount=self.payment_amount,
            reference=self.payment_reference,
            timestamp=self.payment_timestamp,
        )

    @property
    def total_pages(self) -> int:
        return (self.page_count or 0) * (self.copies or 1)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return f"<PrintJob(id={self.id}, code={self.code}, status={self.status}, resource={self.assigned_resource})>"

class OperatorComment(Base):
    """
    Append-only operator note attached to a job
    """
    __tablename__ = "operator_comments"

    id = Column(String(50), primary_key=True, index=True)
    job_id = Column(String(50), ForeignKey("print_jobs.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=False)
    requires_action = Column(Boolean, default=False)
    created_at = Column(DateTime, nullable=False)

    # Relationships
    job = relationship("PrintJob", back_populates="operator_comments")

    def __repr__(self):
        return f"<OperatorComment(job={self.job_id}, requires_action={self.requires_action})>"
