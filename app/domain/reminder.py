"""
Reminder queue domain model and schemas.
"""

import uuid
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, ConfigDict, Field

from app.utils.time import utcnow

Base = declarative_base()


class SessionType(str, Enum):
    """Daily reminder window."""
    MORNING = "morning"
    EVENING = "evening"


class QueueStatus(str, Enum):
    """Queue entry status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"  # claimed by a worker, not yet resolved
    SENT = "sent"
    FAILED = "failed"


class ReminderQueueEntry(Base):
    """SQLAlchemy model for one reminder owed to a user for a day and session."""

    __tablename__ = "reminder_queue"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "reminder_date", "session_type",
            name="uq_reminder_queue_user_date_session",
        ),
        Index("ix_reminder_queue_status_scheduled_for", "status", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False)
    recipient_name = Column(String(255), nullable=False)
    recipient_email = Column(String(320), nullable=True)
    recipient_phone = Column(String(32), nullable=True)
    message_content = Column(Text, nullable=False)
    session_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=QueueStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    scheduled_for = Column(DateTime, nullable=False)
    reminder_date = Column(Date, nullable=False)
    claim_token = Column(String(36), nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<ReminderQueueEntry(id={self.id}, user_id={self.user_id}, "
            f"session={self.session_type}, status={self.status})>"
        )


# Pydantic Schemas

class EnqueueRequest(BaseModel):
    """Body of the enqueue trigger."""
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(None, alias="apiKey")


class DispatchRequest(BaseModel):
    """Body of the dispatch worker trigger."""
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(None, alias="apiKey")
    dry_run: bool = Field(False, alias="dryRun")
    batch_size: Optional[int] = Field(None, alias="batchSize", ge=1, le=100)
    per_email_delay_ms: Optional[int] = Field(None, alias="perEmailDelayMs", ge=0, le=10000)
    max_retry: Optional[int] = Field(None, alias="maxRetry", ge=0, le=10)
