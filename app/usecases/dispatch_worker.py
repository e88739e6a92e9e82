"""
Claim-and-dispatch worker for queued reading reminders.

Each invocation claims a batch of due entries and sends them one at a
time. Per-entry outcomes are written back to the queue row:

    pending --sent ok--------------------------> sent
    pending --send failed, retries remain------> pending (retry_count+1, later scheduled_for)
    pending --send failed, retries exhausted---> failed
    pending --no recipient address-------------> failed
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config.settings import Settings
from app.domain.email_log import AuditStatus
from app.domain.errors import ConfigurationError
from app.domain.reminder import ReminderQueueEntry
from app.infrastructure.audit_log import AuditLogWriter
from app.infrastructure.database import DatabaseSession
from app.infrastructure.queue_repository import ReminderQueueRepository
from app.infrastructure.smtp_channel import DeliveryChannel
from app.usecases.reminder_message import REMINDER_SUBJECT, normalize_email
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

MISSING_EMAIL_ERROR = "Missing recipient_email"


def backoff_minutes(attempt: int) -> int:
    """Delay before retry number `attempt`: 5, 15, then 30 minutes."""
    if attempt <= 1:
        return 5
    if attempt == 2:
        return 15
    return 30


@dataclass
class DispatchSummary:
    """Counts for one worker invocation; entries lost to another claimer are left out."""
    processed: int = 0
    sent: int = 0
    failed: int = 0
    dry_run: bool = False

    def to_response(self) -> dict:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "dryRun": self.dry_run,
        }


class DispatchWorker:
    """Claims due queue entries and delivers them through a channel."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        channel: Optional[DeliveryChannel] = None,
        audit: Optional[AuditLogWriter] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.channel = channel
        self.audit = audit or AuditLogWriter(session_factory)
        self.clock = clock
        self.sleep = sleep

    async def run(
        self,
        dry_run: bool = False,
        batch_size: Optional[int] = None,
        per_email_delay_ms: Optional[int] = None,
        max_retry: Optional[int] = None,
    ) -> DispatchSummary:
        """
        Claim one batch and process every entry in it.

        Args:
            dry_run: Skip the real send and record entries as sent
            batch_size: Entries to claim, defaults to settings
            per_email_delay_ms: Pause between sends, defaults to settings
            max_retry: Retries allowed before an entry fails for good

        Returns:
            DispatchSummary; processed is 0 when nothing was due

        Raises:
            ConfigurationError: If no channel is available for a real run
            ClaimError: If the batch cannot be claimed
        """
        if not dry_run and self.channel is None:
            raise ConfigurationError("No delivery channel configured")

        batch_size = batch_size if batch_size is not None else self.settings.dispatch_batch_size
        if per_email_delay_ms is None:
            per_email_delay_ms = self.settings.per_email_delay_ms
        if max_retry is None:
            max_retry = self.settings.max_retry

        summary = DispatchSummary(dry_run=dry_run)
        now = self.clock()
        stale_before = None
        if self.settings.stale_claim_minutes > 0:
            stale_before = now - timedelta(minutes=self.settings.stale_claim_minutes)

        async with DatabaseSession(self.session_factory) as session:
            repo = ReminderQueueRepository(session)
            entries = await repo.claim_batch(batch_size, now, stale_before)
            summary.processed = len(entries)
            if not entries:
                logger.info("No pending reminders")
                return summary

            attempted = False
            for entry in entries:
                to = normalize_email(entry.recipient_email)
                if not to:
                    recorded = await self._fail_missing_address(repo, entry)
                    self._count(summary, recorded, sent=False)
                    continue

                if attempted and per_email_delay_ms > 0:
                    await self.sleep(per_email_delay_ms / 1000)
                attempted = True

                # Taken over while this batch was sleeping or sending
                if not await repo.renew_claim(entry, self.clock()):
                    summary.processed -= 1
                    continue

                sent, recorded = await self._deliver(repo, entry, to, dry_run, max_retry)
                self._count(summary, recorded, sent=sent)

        logger.info(
            f"Dispatch finished: processed={summary.processed} sent={summary.sent} "
            f"failed={summary.failed} dry_run={dry_run}"
        )
        return summary

    @staticmethod
    def _count(summary: DispatchSummary, recorded: bool, sent: bool) -> None:
        """Only outcomes written back to the queue are reported."""
        if not recorded:
            summary.processed -= 1
        elif sent:
            summary.sent += 1
        else:
            summary.failed += 1

    async def _fail_missing_address(
        self,
        repo: ReminderQueueRepository,
        entry: ReminderQueueEntry,
    ) -> bool:
        recorded = await repo.mark_failed(entry, MISSING_EMAIL_ERROR)
        logger.warning(f"Queue entry {entry.id} has no recipient email, marked failed")
        await self.audit.record(
            "",
            AuditStatus.FAILED,
            error=MISSING_EMAIL_ERROR,
            metadata=self._audit_context(entry),
        )
        return recorded

    async def _deliver(
        self,
        repo: ReminderQueueRepository,
        entry: ReminderQueueEntry,
        to: str,
        dry_run: bool,
        max_retry: int,
    ) -> Tuple[bool, bool]:
        """
        Send one entry and write its outcome.

        Returns:
            (sent, recorded) where recorded is False if the claim was lost
        """
        try:
            if not dry_run:
                await self.channel.send(
                    self.settings.smtp_sender, to, REMINDER_SUBJECT, entry.message_content
                )
        except Exception as e:
            recorded = await self._handle_failure(repo, entry, to, str(e) or "Unknown error", max_retry)
            return False, recorded

        recorded = await repo.mark_sent(entry, self.clock())
        context = self._audit_context(entry)
        if dry_run:
            context["dry_run"] = True
        await self.audit.record(to, AuditStatus.SENT, metadata=context)
        return True, recorded

    async def _handle_failure(
        self,
        repo: ReminderQueueRepository,
        entry: ReminderQueueEntry,
        to: str,
        message: str,
        max_retry: int,
    ) -> bool:
        """Schedule a retry with backoff, or fail the entry once retries run out."""
        next_retry = (entry.retry_count or 0) + 1
        context = self._audit_context(entry)
        context["retry_count"] = next_retry

        if next_retry > max_retry:
            recorded = await repo.mark_failed(entry, message, retry_count=next_retry)
            logger.warning(f"Reminder {entry.id} to {to} failed permanently after {next_retry} attempt(s): {message}")
            await self.audit.record(to, AuditStatus.FAILED, error=message, metadata=context)
            return recorded

        delay = backoff_minutes(next_retry)
        next_attempt_at = self.clock() + timedelta(minutes=delay)
        recorded = await repo.schedule_retry(entry, next_retry, message, next_attempt_at)
        logger.warning(f"Reminder {entry.id} to {to} failed, retry {next_retry} in {delay} min: {message}")
        await self.audit.record(to, AuditStatus.ERROR, error=message, metadata=context)
        return recorded

    @staticmethod
    def _audit_context(entry: ReminderQueueEntry) -> dict:
        return {"queue_id": entry.id, "session_type": entry.session_type}
