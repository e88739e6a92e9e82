"""
Persistence for the reminder queue.

The queue table is the only state shared between enqueue and worker
invocations. Every write goes through this module: the conflict-safe bulk
insert, the atomic claim, and the claim-token guarded outcome updates.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.errors import ClaimError, EnqueueWriteError
from app.domain.reminder import QueueStatus, ReminderQueueEntry

logger = logging.getLogger(__name__)

UNIQUE_KEY = ["user_id", "reminder_date", "session_type"]

# Keeps each statement under SQLite's bound-parameter limit
INSERT_CHUNK_SIZE = 500


class ReminderQueueRepository:
    """Data access for reminder_queue rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert_construct(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise EnqueueWriteError(f"Unsupported database dialect for queue insert: {dialect}")

    async def insert_ignore_duplicates(self, rows: List[dict]) -> int:
        """
        Insert queue rows, skipping any that collide on (user, date, session).

        All rows are written in one transaction; on failure nothing is kept.

        Args:
            rows: Column values for new queue entries

        Returns:
            Number of rows actually inserted
        """
        if not rows:
            return 0

        insert = self._insert_construct()
        inserted = 0
        try:
            for start in range(0, len(rows), INSERT_CHUNK_SIZE):
                chunk = rows[start:start + INSERT_CHUNK_SIZE]
                stmt = (
                    insert(ReminderQueueEntry)
                    .values(chunk)
                    .on_conflict_do_nothing(index_elements=UNIQUE_KEY)
                    .returning(ReminderQueueEntry.id)
                )
                result = await self.session.execute(stmt)
                inserted += len(result.scalars().all())
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Queue insert failed, rolled back {len(rows)} rows")
            raise EnqueueWriteError(f"Failed to write reminder queue: {e}") from e

        return inserted

    @staticmethod
    def _claimable(now: datetime, stale_before: Optional[datetime]):
        due = and_(
            ReminderQueueEntry.status == QueueStatus.PENDING.value,
            ReminderQueueEntry.scheduled_for <= now,
        )
        if stale_before is None:
            return due
        abandoned = and_(
            ReminderQueueEntry.status == QueueStatus.PROCESSING.value,
            ReminderQueueEntry.claimed_at <= stale_before,
        )
        return or_(due, abandoned)

    async def claim_batch(
        self,
        batch_size: int,
        now: datetime,
        stale_before: Optional[datetime] = None,
    ) -> List[ReminderQueueEntry]:
        """
        Atomically claim up to batch_size due entries for this invocation.

        The rows are selected and flipped to processing in a single UPDATE.
        PostgreSQL skips rows another claimer has locked; SQLite serializes
        writers. The claimable predicate is repeated on the outer UPDATE so
        a row that changed state between the sub-select and the write is
        never taken twice.

        Args:
            batch_size: Maximum rows to claim
            now: Current UTC time (naive)
            stale_before: Rows still processing with claimed_at at or before
                this instant are taken over; None disables reclaim

        Returns:
            Claimed entries ordered by scheduled_for
        """
        token = str(uuid4())
        claimable = self._claimable(now, stale_before)

        candidates = (
            select(ReminderQueueEntry.id)
            .where(claimable)
            .order_by(ReminderQueueEntry.scheduled_for, ReminderQueueEntry.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(ReminderQueueEntry)
            .where(ReminderQueueEntry.id.in_(candidates), claimable)
            .values(
                status=QueueStatus.PROCESSING.value,
                claim_token=token,
                claimed_at=now,
            )
            .returning(ReminderQueueEntry.id)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            claimed_ids = list(result.scalars().all())
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Failed to claim reminder queue batch")
            raise ClaimError(f"Failed to claim reminder queue: {e}") from e

        if not claimed_ids:
            return []

        try:
            result = await self.session.execute(
                select(ReminderQueueEntry)
                .where(
                    ReminderQueueEntry.id.in_(claimed_ids),
                    ReminderQueueEntry.claim_token == token,
                )
                .order_by(ReminderQueueEntry.scheduled_for, ReminderQueueEntry.id)
                .execution_options(populate_existing=True)
            )
            entries = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise ClaimError(f"Failed to load claimed reminders: {e}") from e

        logger.info(f"Claimed {len(entries)} reminder(s) with token {token}")
        return entries

    async def _resolve(self, entry: ReminderQueueEntry, **values) -> bool:
        """Write an outcome only if this invocation still owns the claim."""
        result = await self.session.execute(
            update(ReminderQueueEntry)
            .where(
                ReminderQueueEntry.id == entry.id,
                ReminderQueueEntry.claim_token == entry.claim_token,
                ReminderQueueEntry.status == QueueStatus.PROCESSING.value,
            )
            .values(**values)
        )
        await self.session.commit()

        if result.rowcount != 1:
            logger.warning(
                f"Queue entry {entry.id} was reclaimed by another worker, outcome not recorded"
            )
            return False
        return True

    async def renew_claim(self, entry: ReminderQueueEntry, now: datetime) -> bool:
        """
        Refresh claimed_at right before a send.

        Returns:
            False if another invocation has taken the entry over; the
            caller must not send it
        """
        renewed = await self._resolve(entry, claimed_at=now)
        if renewed:
            entry.claimed_at = now
        return renewed

    async def mark_sent(self, entry: ReminderQueueEntry, sent_at: datetime) -> bool:
        return await self._resolve(
            entry,
            status=QueueStatus.SENT.value,
            sent_at=sent_at,
            error_message=None,
        )

    async def mark_failed(
        self,
        entry: ReminderQueueEntry,
        error_message: str,
        retry_count: Optional[int] = None,
    ) -> bool:
        """Terminal failure; scheduled_for is left unchanged."""
        values = {"status": QueueStatus.FAILED.value, "error_message": error_message}
        if retry_count is not None:
            values["retry_count"] = retry_count
        return await self._resolve(entry, **values)

    async def schedule_retry(
        self,
        entry: ReminderQueueEntry,
        retry_count: int,
        error_message: str,
        next_attempt_at: datetime,
    ) -> bool:
        """Return the entry to pending with a later scheduled_for."""
        return await self._resolve(
            entry,
            status=QueueStatus.PENDING.value,
            retry_count=retry_count,
            error_message=error_message,
            scheduled_for=next_attempt_at,
            claim_token=None,
            claimed_at=None,
        )

    async def list_entries(
        self,
        statuses: Optional[Iterable[QueueStatus]] = None,
    ) -> List[ReminderQueueEntry]:
        """Queue entries for inspection, oldest schedule first."""
        stmt = select(ReminderQueueEntry).order_by(ReminderQueueEntry.scheduled_for)
        if statuses is not None:
            stmt = stmt.where(ReminderQueueEntry.status.in_([s.value for s in statuses]))
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())
