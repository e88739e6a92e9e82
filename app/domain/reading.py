"""
Reading plan tables owned by the reading tracker.

The reminder pipeline only reads these: which plan items are scheduled
for a date, which users want reminders, and which items they completed.
"""

import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String

from app.domain.reminder import Base
from app.utils.time import utcnow


class Profile(Base):
    """SQLAlchemy model for a reader profile."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    email_reminder_enabled = Column(Boolean, nullable=True, default=False)

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email={self.email})>"


class ReadingPlanItem(Base):
    """SQLAlchemy model for a scheduled chapter range."""

    __tablename__ = "reading_plan_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    book_id = Column(Integer, nullable=False)
    start_chapter = Column(Integer, nullable=False)
    end_chapter = Column(Integer, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    scheduled_date = Column(Date, nullable=False, index=True)


class ReadingLog(Base):
    """SQLAlchemy model for a completed plan item."""

    __tablename__ = "reading_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    plan_item_id = Column(String(36), nullable=False, index=True)
    completed_at = Column(DateTime, default=utcnow)
    points_earned = Column(Integer, nullable=False, default=0)
