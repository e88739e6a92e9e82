"""
Eligibility resolution: who is owed a reading reminder for a date and session.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.errors import EligibilityReadError, InvalidSessionError
from app.domain.reading import Profile, ReadingLog, ReadingPlanItem
from app.domain.reminder import SessionType

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def parse_session(value: Optional[str]) -> SessionType:
    """Validate a session query parameter."""
    try:
        return SessionType((value or "").strip())
    except ValueError:
        raise InvalidSessionError("Invalid session. Use ?session=morning|evening") from None


def infer_session_type(phone: Optional[str]) -> SessionType:
    """
    Assign a user to the morning or evening window from their phone number.

    Odd last digit is morning, even is evening, no digits at all is evening.
    There is no stored preference; this split only needs to be stable.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        return SessionType.EVENING
    return SessionType.MORNING if int(digits[-1]) % 2 == 1 else SessionType.EVENING


@dataclass
class ReminderRecipient:
    """A user who should get a reminder."""
    user_id: str
    email: str
    full_name: Optional[str]
    phone: Optional[str]
    completed_items: int = 0


@dataclass
class EligibilityResult:
    """Output of one resolution."""
    reminder_date: date
    session: SessionType
    total_items: int
    # Profiles in this session before the completion filter
    candidates: int = 0
    recipients: List[ReminderRecipient] = field(default_factory=list)


class EligibilityResolver:
    """Reads profiles, the reading plan and reading logs to find reminder recipients."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def resolve(self, reminder_date: date, session_type: SessionType) -> EligibilityResult:
        """
        Find users owed a reminder for the date and session.

        Args:
            reminder_date: Civil date in the configured timezone
            session_type: Morning or evening window

        Returns:
            Recipients plus the scheduled item count for the date

        Raises:
            EligibilityReadError: If any lookup fails; nothing partial is returned
        """
        try:
            async with self.session_factory() as session:
                return await self._resolve(session, reminder_date, session_type)
        except SQLAlchemyError as e:
            logger.exception(f"Eligibility lookup failed for {reminder_date} {session_type.value}")
            raise EligibilityReadError(f"Failed to load reminder eligibility: {e}") from e

    async def _resolve(
        self,
        session: AsyncSession,
        reminder_date: date,
        session_type: SessionType,
    ) -> EligibilityResult:
        item_ids = await self._scheduled_item_ids(session, reminder_date)
        result = EligibilityResult(
            reminder_date=reminder_date,
            session=session_type,
            total_items=len(item_ids),
        )
        if not item_ids:
            logger.info(f"No reading items scheduled for {reminder_date}")
            return result

        profiles = await self._reminder_profiles(session)
        in_session = [
            p for p in profiles
            if (p.email or "").strip() and infer_session_type(p.phone) == session_type
        ]
        result.candidates = len(in_session)
        if not in_session:
            logger.info(f"No eligible profiles for {session_type.value} on {reminder_date}")
            return result

        completed = await self._completed_counts(
            session, item_ids, [p.id for p in in_session]
        )

        for profile in in_session:
            done = completed.get(profile.id, 0)
            if done >= len(item_ids):
                continue
            result.recipients.append(
                ReminderRecipient(
                    user_id=profile.id,
                    email=profile.email,
                    full_name=profile.full_name,
                    phone=profile.phone,
                    completed_items=done,
                )
            )

        logger.info(
            f"{reminder_date} {session_type.value}: {len(item_ids)} item(s), "
            f"{result.candidates} candidate(s), {len(result.recipients)} still reading"
        )
        return result

    async def _scheduled_item_ids(self, session: AsyncSession, reminder_date: date) -> List[str]:
        result = await session.execute(
            select(ReadingPlanItem.id)
            .where(ReadingPlanItem.scheduled_date == reminder_date)
            .order_by(ReadingPlanItem.order_index)
        )
        return list(result.scalars().all())

    async def _reminder_profiles(self, session: AsyncSession) -> List[Profile]:
        result = await session.execute(
            select(Profile)
            .where(Profile.email_reminder_enabled.is_(True))
            .order_by(Profile.id)
        )
        return list(result.scalars().all())

    async def _completed_counts(
        self,
        session: AsyncSession,
        item_ids: List[str],
        user_ids: List[str],
    ) -> Dict[str, int]:
        """Distinct completed plan items per user among the given items."""
        result = await session.execute(
            select(ReadingLog.user_id, func.count(distinct(ReadingLog.plan_item_id)))
            .where(
                ReadingLog.plan_item_id.in_(item_ids),
                ReadingLog.user_id.in_(user_ids),
            )
            .group_by(ReadingLog.user_id)
        )
        return {user_id: count for user_id, count in result.all()}
