"""Pytest configuration and shared fixtures.

Tests run against a throwaway SQLite database (aiosqlite) that is rebuilt
from the model metadata for every test.
"""

import os
import tempfile
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Configure BEFORE importing the app so the settings singleton picks it up
_TEST_DB_DIR = tempfile.mkdtemp(prefix="shiftguard-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_TEST_DB_DIR) / 'test.db'}"
os.environ["TESTING"] = "true"
os.environ["ESCALATION_SWEEP_ENABLED"] = "false"
os.environ["NOTIFICATION_PROVIDER"] = "stub"

from shiftguard.config import settings  # noqa: E402

settings.testing = True

from shiftguard.database import get_engine, get_session_maker, reset_database  # noqa: E402
from shiftguard.main import app  # noqa: E402
from shiftguard.models import (  # noqa: E402
    AttendanceRecord,
    Base,
    EscalationPolicy,
    Organization,
    Shift,
    Staff,
)
from shiftguard.models.notification_log import ChannelType  # noqa: E402
from shiftguard.services.channels import (  # noqa: E402
    ChannelAdapter,
    ChannelRegistry,
    DispatchResult,
)

# Fixed "now" used by the scenario tests: 2026-03-02 09:00 JST
NOW = datetime(2026, 3, 2, 0, 0, tzinfo=UTC)

DEFAULT_STAGES = [
    {"channel": "push", "delay_minutes": 5, "template_key": "clock_in_reminder"},
    {"channel": "sms", "delay_minutes": 10, "template_key": "clock_in_urgent"},
    {"channel": "voice", "delay_minutes": 15, "template_key": "voice_call"},
]


@pytest_asyncio.fixture
async def db_engine():
    """Fresh schema for each test."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await reset_database()


@pytest.fixture
def session_maker(db_engine):
    return get_session_maker()


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for each test."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


class RecordingAdapter(ChannelAdapter):
    """Channel adapter that records sends and replays scripted results."""

    def __init__(self, channel: ChannelType, results: list[DispatchResult] | None = None):
        super().__init__()
        self.channel = channel
        self.results = list(results or [])
        self.sent: list[tuple[str, str]] = []

    async def _send(self, recipient: str, message: str) -> DispatchResult:
        self.sent.append((recipient, message))
        if self.results:
            return self.results.pop(0)
        return DispatchResult.ok(f"{self.channel.value}-{len(self.sent)}")


class FakeChannels:
    """One RecordingAdapter per channel, usable as a registry factory."""

    def __init__(self):
        self.adapters = {channel: RecordingAdapter(channel) for channel in ChannelType}

    def __getitem__(self, channel: ChannelType) -> RecordingAdapter:
        return self.adapters[channel]

    def __call__(self, organization) -> ChannelRegistry:
        return ChannelRegistry(self.adapters)

    @property
    def total_sent(self) -> int:
        return sum(len(adapter.sent) for adapter in self.adapters.values())


@pytest.fixture
def channels() -> FakeChannels:
    return FakeChannels()


class Seeder:
    """Creates directory rows for tests."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        await self.session.refresh(obj)
        return obj

    async def organization(self, **kwargs) -> Organization:
        kwargs.setdefault("name", "Test Logistics")
        kwargs.setdefault("timezone", "Asia/Tokyo")
        return await self._save(Organization(**kwargs))

    async def policy(self, organization: Organization, **kwargs) -> EscalationPolicy:
        kwargs.setdefault("name", "Default policy")
        kwargs.setdefault("is_default", True)
        kwargs.setdefault("stages", DEFAULT_STAGES)
        kwargs.setdefault("max_retries", 1)
        return await self._save(EscalationPolicy(organization_id=organization.id, **kwargs))

    async def staff(self, organization: Organization, **kwargs) -> Staff:
        kwargs.setdefault("name", "山田太郎")
        kwargs.setdefault("line_user_id", f"U{uuid.uuid4().hex}")
        kwargs.setdefault("phone_number", "+819012345678")
        return await self._save(Staff(organization_id=organization.id, **kwargs))

    async def shift(self, organization: Organization, **kwargs) -> Shift:
        kwargs.setdefault("work_name", "朝便配送")
        kwargs.setdefault("date", date(2026, 3, 2))
        kwargs.setdefault("start_time", "09:00")
        kwargs.setdefault("end_time", "17:00")
        return await self._save(Shift(organization_id=organization.id, **kwargs))

    async def attendance(
        self,
        organization: Organization,
        staff: Staff,
        shift: Shift,
        **kwargs,
    ) -> AttendanceRecord:
        kwargs.setdefault("date", shift.date)
        kwargs.setdefault("expected_clock_in_at", NOW - timedelta(minutes=1))
        return await self._save(
            AttendanceRecord(
                organization_id=organization.id,
                staff_id=staff.id,
                shift_id=shift.id,
                **kwargs,
            )
        )


@pytest.fixture
def seed(db_session) -> Seeder:
    return Seeder(db_session)


@pytest_asyncio.fixture
async def scenario(seed):
    """Organization, default 3-stage policy, staff, shift and overdue attendance."""
    organization = await seed.organization()
    policy = await seed.policy(organization)
    staff = await seed.staff(organization)
    shift = await seed.shift(organization)
    attendance = await seed.attendance(organization, staff, shift)
    return {
        "organization": organization,
        "policy": policy,
        "staff": staff,
        "shift": shift,
        "attendance": attendance,
    }
