"""
Email log model for delivery auditing.
Append-only record of every reminder delivery attempt.
"""

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, JSON, String, Text

from app.domain.reminder import Base
from app.utils.time import utcnow

READING_REMINDER_TYPE = "reading_reminder"


class AuditStatus(str, Enum):
    SENT = "sent"
    ERROR = "error"  # failed, retry scheduled
    FAILED = "failed"  # failed, no retry left


class EmailLog(Base):
    """SQLAlchemy model for one delivery attempt."""

    __tablename__ = "email_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False)
    type = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    error = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    context = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<EmailLog(email={self.email}, type={self.type}, status={self.status})>"
