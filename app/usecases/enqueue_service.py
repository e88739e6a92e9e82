"""
Queue writer: turns eligible recipients into reminder_queue rows.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config.settings import Settings
from app.domain.reminder import QueueStatus, SessionType
from app.infrastructure.queue_repository import ReminderQueueRepository
from app.usecases.eligibility import EligibilityResolver, EligibilityResult
from app.usecases.reminder_message import (
    build_reminder_html,
    normalize_email,
    recipient_name,
    recipient_phone,
)
from app.utils.time import today_local, utcnow

logger = logging.getLogger(__name__)

MSG_NO_ITEMS = "No reading items scheduled today"
MSG_NO_PROFILES = "No eligible profiles for this session"
MSG_ALL_COMPLETED = "All eligible users already completed today"
MSG_ENQUEUED = "Enqueued"


@dataclass
class EnqueueOutcome:
    """Summary returned to the trigger."""
    message: str
    reminder_date: date
    session: SessionType
    candidates: int = 0
    enqueued: int = 0
    delay_seconds: int = 0

    def to_response(self) -> dict:
        return {
            "message": self.message,
            "date": self.reminder_date.isoformat(),
            "session": self.session.value,
            "candidates": self.candidates,
            "enqueued": self.enqueued,
            "delaySeconds": self.delay_seconds,
        }


class ReminderEnqueuer:
    """Writes at most one queue entry per user, date and session."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        resolver: Optional[EligibilityResolver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.resolver = resolver or EligibilityResolver(session_factory)
        self.clock = clock

    def build_rows(
        self,
        eligibility: EligibilityResult,
        now: datetime,
        delay_seconds: int,
    ) -> List[dict]:
        """
        Queue rows for each recipient, staggered by position.

        The i-th recipient is scheduled at now + i * delay_seconds so the
        worker does not hit the mail server with a burst.
        """
        rows = []
        for index, recipient in enumerate(eligibility.recipients):
            rows.append({
                "id": str(uuid4()),
                "user_id": recipient.user_id,
                "recipient_name": recipient_name(recipient.full_name),
                "recipient_email": normalize_email(recipient.email),
                "recipient_phone": recipient_phone(recipient.phone),
                "message_content": build_reminder_html(recipient.full_name, self.settings.app_url),
                "session_type": eligibility.session.value,
                "status": QueueStatus.PENDING.value,
                "retry_count": 0,
                "error_message": None,
                "scheduled_for": now + timedelta(seconds=index * delay_seconds),
                "reminder_date": eligibility.reminder_date,
                "created_at": now,
                "updated_at": now,
            })
        return rows

    async def enqueue(
        self,
        session_type: SessionType,
        reminder_date: Optional[date] = None,
        delay_seconds: Optional[int] = None,
    ) -> EnqueueOutcome:
        """
        Resolve eligibility and write deduplicated queue rows.

        Repeating the call for the same date and session is safe: rows that
        already exist are left untouched and not counted as enqueued.

        Args:
            session_type: Morning or evening window
            reminder_date: Defaults to today in the configured timezone
            delay_seconds: Stagger between recipients, defaults to settings

        Returns:
            EnqueueOutcome with candidate and enqueued counts

        Raises:
            EligibilityReadError: If eligibility inputs cannot be read
            EnqueueWriteError: If the bulk insert fails
        """
        now = self.clock()
        if reminder_date is None:
            reminder_date = today_local(self.settings.timezone, now)
        if delay_seconds is None:
            delay_seconds = self.settings.enqueue_delay_seconds

        eligibility = await self.resolver.resolve(reminder_date, session_type)

        outcome = EnqueueOutcome(
            message=MSG_ENQUEUED,
            reminder_date=reminder_date,
            session=session_type,
            candidates=eligibility.candidates,
            delay_seconds=delay_seconds,
        )
        if eligibility.total_items == 0:
            outcome.message = MSG_NO_ITEMS
            return outcome
        if eligibility.candidates == 0:
            outcome.message = MSG_NO_PROFILES
            return outcome
        if not eligibility.recipients:
            outcome.message = MSG_ALL_COMPLETED
            return outcome

        rows = self.build_rows(eligibility, now, delay_seconds)
        async with self.session_factory() as session:
            outcome.enqueued = await ReminderQueueRepository(session).insert_ignore_duplicates(rows)

        logger.info(
            f"Enqueued {outcome.enqueued}/{len(rows)} {session_type.value} reminder(s) "
            f"for {reminder_date} ({outcome.candidates} candidate(s))"
        )
        return outcome
