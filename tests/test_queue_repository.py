"""
Tests for the queue repository: atomic claim and guarded outcome writes.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.reminder import QueueStatus
from app.infrastructure.queue_repository import ReminderQueueRepository

from conftest import FIXED_NOW, Seeder


class TestClaimBatch:
    """Tests for ReminderQueueRepository.claim_batch."""

    @pytest.mark.asyncio
    async def test_claims_only_due_pending_rows(self, seed, test_session, load_entry):
        due = await seed.queue_entry(scheduled_for=FIXED_NOW - timedelta(seconds=5))
        later = await seed.queue_entry(scheduled_for=FIXED_NOW + timedelta(minutes=5))
        sent = await seed.queue_entry(status=QueueStatus.SENT)
        failed = await seed.queue_entry(status=QueueStatus.FAILED)

        claimed = await ReminderQueueRepository(test_session).claim_batch(10, FIXED_NOW)

        assert [entry.id for entry in claimed] == [due]
        assert claimed[0].status == QueueStatus.PROCESSING.value
        assert claimed[0].claim_token
        assert claimed[0].claimed_at == FIXED_NOW
        assert (await load_entry(later)).status == QueueStatus.PENDING.value
        assert (await load_entry(sent)).status == QueueStatus.SENT.value
        assert (await load_entry(failed)).status == QueueStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_respects_batch_size_and_order(self, seed, test_session):
        ids = []
        for offset in (30, 10, 20):
            ids.append(await seed.queue_entry(scheduled_for=FIXED_NOW - timedelta(seconds=offset)))

        claimed = await ReminderQueueRepository(test_session).claim_batch(2, FIXED_NOW)

        # oldest schedule first
        assert [entry.id for entry in claimed] == [ids[0], ids[2]]

    @pytest.mark.asyncio
    async def test_claimed_rows_are_not_claimed_again(self, seed, session_factory):
        await seed.queue_entry()
        await seed.queue_entry()

        async with session_factory() as first_session, session_factory() as second_session:
            first = await ReminderQueueRepository(first_session).claim_batch(10, FIXED_NOW)
            second = await ReminderQueueRepository(second_session).claim_batch(10, FIXED_NOW)

        assert len(first) == 2
        assert second == []

    @pytest.mark.asyncio
    async def test_stale_claim_is_reclaimed(self, seed, session_factory, load_entry):
        stale = await seed.queue_entry(
            status=QueueStatus.PROCESSING,
            claimed_at=FIXED_NOW - timedelta(minutes=20),
            claim_token="old-token",
        )
        fresh = await seed.queue_entry(
            status=QueueStatus.PROCESSING,
            claimed_at=FIXED_NOW - timedelta(minutes=2),
            claim_token="busy-token",
        )

        async with session_factory() as session:
            claimed = await ReminderQueueRepository(session).claim_batch(
                10, FIXED_NOW, stale_before=FIXED_NOW - timedelta(minutes=15)
            )

        assert [entry.id for entry in claimed] == [stale]
        assert claimed[0].claim_token != "old-token"
        assert (await load_entry(fresh)).claim_token == "busy-token"

    @pytest.mark.asyncio
    async def test_stale_reclaim_disabled(self, seed, session_factory):
        await seed.queue_entry(
            status=QueueStatus.PROCESSING,
            claimed_at=FIXED_NOW - timedelta(days=1),
            claim_token="old-token",
        )

        async with session_factory() as session:
            claimed = await ReminderQueueRepository(session).claim_batch(10, FIXED_NOW)

        assert claimed == []


class TestConcurrentClaims:
    """Overlapping claimers on a real file database."""

    @pytest.mark.asyncio
    async def test_parallel_claims_never_overlap(self, file_engine):
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        seeder = Seeder(factory)
        expected = {await seeder.queue_entry() for _ in range(25)}

        async def claim():
            async with factory() as session:
                entries = await ReminderQueueRepository(session).claim_batch(10, FIXED_NOW)
                return [entry.id for entry in entries]

        results = await asyncio.gather(*[claim() for _ in range(4)])

        claimed = [entry_id for batch in results for entry_id in batch]
        assert len(claimed) == len(set(claimed))
        assert set(claimed) == expected


class TestGuardedOutcomes:
    """Outcome writes only land while the claim token still matches."""

    @pytest.mark.asyncio
    async def test_mark_sent(self, seed, test_session, load_entry):
        entry_id = await seed.queue_entry()
        repo = ReminderQueueRepository(test_session)
        [entry] = await repo.claim_batch(1, FIXED_NOW)

        assert await repo.mark_sent(entry, FIXED_NOW) is True

        row = await load_entry(entry_id)
        assert row.status == QueueStatus.SENT.value
        assert row.sent_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_outcome_ignored_after_takeover(self, seed, session_factory, load_entry):
        entry_id = await seed.queue_entry()

        async with session_factory() as crashed_session, session_factory() as rescue_session:
            crashed = ReminderQueueRepository(crashed_session)
            [abandoned] = await crashed.claim_batch(1, FIXED_NOW)

            later = FIXED_NOW + timedelta(minutes=30)
            rescue = ReminderQueueRepository(rescue_session)
            [taken_over] = await rescue.claim_batch(
                1, later, stale_before=later - timedelta(minutes=15)
            )
            assert await rescue.mark_sent(taken_over, later) is True

            assert await crashed.schedule_retry(
                abandoned, 1, "timeout", FIXED_NOW + timedelta(minutes=5)
            ) is False

        row = await load_entry(entry_id)
        assert row.status == QueueStatus.SENT.value
        assert row.retry_count == 0

    @pytest.mark.asyncio
    async def test_renew_claim(self, seed, session_factory, load_entry):
        entry_id = await seed.queue_entry()

        async with session_factory() as first_session, session_factory() as second_session:
            first = ReminderQueueRepository(first_session)
            [entry] = await first.claim_batch(1, FIXED_NOW)

            renewed_at = FIXED_NOW + timedelta(minutes=10)
            assert await first.renew_claim(entry, renewed_at) is True
            assert (await load_entry(entry_id)).claimed_at == renewed_at

            # the renewed claim is no longer stale at the old cutoff
            later = FIXED_NOW + timedelta(minutes=20)
            second = ReminderQueueRepository(second_session)
            assert await second.claim_batch(1, later, stale_before=later - timedelta(minutes=15)) == []

            much_later = FIXED_NOW + timedelta(minutes=40)
            [taken_over] = await second.claim_batch(1, much_later, stale_before=much_later - timedelta(minutes=15))
            assert taken_over.id == entry_id

            assert await first.renew_claim(entry, much_later) is False
