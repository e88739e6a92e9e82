"""
Pytest configuration and fixtures for the reading reminder pipeline tests.
"""

from datetime import date, datetime, timedelta
from typing import AsyncGenerator, List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from app.config.settings import Settings
from app.domain.errors import DeliveryError
from app.domain.reminder import Base, QueueStatus, ReminderQueueEntry, SessionType
from app.domain.reading import Profile, ReadingLog, ReadingPlanItem
from app.domain.email_log import EmailLog  # noqa: F401 - needed for table creation
from app.infrastructure.smtp_channel import DeliveryChannel


# Use a separate in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

READING_DATE = date(2026, 3, 1)
# 08:00 in Jakarta on READING_DATE
FIXED_NOW = datetime(2026, 3, 1, 1, 0, 0)

MORNING_PHONE = "0811111111"
EVENING_PHONE = "0811111112"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed engine where every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def broken_session_factory():
    """Session factory over a database with no tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    """Application settings for testing."""
    return Settings(
        cron_secret="test-secret",
        app_url="https://duapasal.example",
        smtp_host="smtp.example.com",
        smtp_user="reminder@example.com",
        smtp_password="test_password",
        smtp_from="Duapasal <reminder@example.com>",
        timezone="Asia/Jakarta",
        per_email_delay_ms=0,
        enqueue_delay_seconds=10,
        max_retry=3,
        stale_claim_minutes=15,
    )


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


class FakeDeliveryChannel(DeliveryChannel):
    """Records sends; raises DeliveryError when told to fail."""

    def __init__(self, fail: bool = False, error: str = "550 mailbox unavailable"):
        self.fail = fail
        self.error = error
        self.sent = []

    async def send(self, sender: str, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise DeliveryError(self.error)
        self.sent.append({"sender": sender, "to": to, "subject": subject, "html": html_body})


@pytest.fixture
def fake_channel() -> FakeDeliveryChannel:
    return FakeDeliveryChannel()


@pytest.fixture
def failing_channel() -> FakeDeliveryChannel:
    return FakeDeliveryChannel(fail=True)


class Seeder:
    """Inserts reading plan, profile, log and queue rows."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _add(self, *objects) -> None:
        async with self.session_factory() as session:
            session.add_all(objects)
            await session.commit()

    async def plan_items(self, day: date = READING_DATE, count: int = 2) -> List[str]:
        items = [
            ReadingPlanItem(
                id=str(uuid4()),
                book_id=1,
                start_chapter=index * 2 + 1,
                end_chapter=index * 2 + 2,
                order_index=index,
                scheduled_date=day,
            )
            for index in range(count)
        ]
        await self._add(*items)
        return [item.id for item in items]

    async def profile(
        self,
        phone: Optional[str] = MORNING_PHONE,
        email: Optional[str] = None,
        full_name: Optional[str] = "Budi Santoso",
        enabled: Optional[bool] = True,
        user_id: Optional[str] = None,
    ) -> str:
        user_id = user_id or str(uuid4())
        if email is None:
            email = f"{user_id[:8]}@example.com"
        await self._add(Profile(
            id=user_id,
            email=email,
            full_name=full_name,
            phone=phone,
            email_reminder_enabled=enabled,
        ))
        return user_id

    async def complete(self, user_id: str, item_ids: List[str]) -> None:
        await self._add(*[
            ReadingLog(id=str(uuid4()), user_id=user_id, plan_item_id=item_id, points_earned=10)
            for item_id in item_ids
        ])

    async def queue_entry(
        self,
        email: Optional[str] = "reader@example.com",
        status: QueueStatus = QueueStatus.PENDING,
        retry_count: int = 0,
        scheduled_for: datetime = FIXED_NOW,
        session_type: SessionType = SessionType.MORNING,
        reminder_date: date = READING_DATE,
        claimed_at: Optional[datetime] = None,
        claim_token: Optional[str] = None,
    ) -> str:
        entry_id = str(uuid4())
        await self._add(ReminderQueueEntry(
            id=entry_id,
            user_id=str(uuid4()),
            recipient_name="Budi",
            recipient_email=email,
            recipient_phone=MORNING_PHONE,
            message_content="<p>Shalom Budi</p>",
            session_type=session_type.value,
            status=status.value,
            retry_count=retry_count,
            scheduled_for=scheduled_for,
            reminder_date=reminder_date,
            claimed_at=claimed_at,
            claim_token=claim_token,
        ))
        return entry_id


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


async def fetch_entry(session_factory: async_sessionmaker, entry_id: str) -> ReminderQueueEntry:
    """Load a queue row through a fresh session."""
    async with session_factory() as session:
        return await session.get(ReminderQueueEntry, entry_id)


@pytest.fixture
def load_entry(session_factory):
    async def _load(entry_id: str) -> ReminderQueueEntry:
        return await fetch_entry(session_factory, entry_id)
    return _load
