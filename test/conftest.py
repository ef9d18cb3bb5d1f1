"""
Shared fixtures.

Every test gets its own on-disk SQLite database so concurrent sessions see a
real shared store with real write locking.
"""

from collections.abc import AsyncGenerator
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.config import Settings
from surveyreach.escalation.dispatcher import NotificationDispatcher
from surveyreach.escalation.scheduler import EscalationScheduler
from surveyreach.main import create_app
from surveyreach.notifications.email.mock_provider import MockEmailProvider
from surveyreach.participants.registry import BatchRegistry
from surveyreach.participants.schemas import Recipient
from surveyreach.participants.tokens import SurveyLinkTokens
from surveyreach.reminders.service import ReminderService
from surveyreach.responses.service import ResponseIngester
from surveyreach.shared.database import DatabaseManager
from surveyreach.surveys.models import Survey
from surveyreach.telephony.config import ProviderType, VoiceConfig
from surveyreach.telephony.mock_adapter import MockVoiceProvider
from surveyreach.telephony.webhooks.handler import WebhookIngester

WEBHOOK_SECRET = "test-secret"
TOKEN_SECRET = "test-link-secret"
START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        link_token_secret=TOKEN_SECRET,
        public_base_url="https://surveys.example.com/",
        escalation_default_delay_minutes=60,
        scheduler_enabled=False,
    )


@pytest.fixture
def voice_config() -> VoiceConfig:
    return VoiceConfig(
        _env_file=None,
        provider_type=ProviderType.MOCK,
        webhook_secret=WEBHOOK_SECRET,
        call_timeout_seconds=2,
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[DatabaseManager, None]:
    manager = DatabaseManager(settings.database_url, echo=False)
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def session_factory(db: DatabaseManager) -> async_sessionmaker[AsyncSession]:
    return db.session_factory


@pytest.fixture
def voice_provider() -> MockVoiceProvider:
    return MockVoiceProvider()


@pytest.fixture
def email_provider() -> MockEmailProvider:
    return MockEmailProvider()


@pytest.fixture
def tokens(settings: Settings, clock: FakeClock) -> SurveyLinkTokens:
    return SurveyLinkTokens(
        secret=TOKEN_SECRET,
        ttl=timedelta(days=settings.link_token_ttl_days),
        base_url=settings.public_base_url,
        clock=clock,
    )


@pytest.fixture
def registry(session_factory, tokens, clock) -> BatchRegistry:
    return BatchRegistry(session_factory, tokens, default_delay_minutes=60, clock=clock)


@pytest.fixture
def ingester(session_factory, tokens, clock) -> ResponseIngester:
    return ResponseIngester(session_factory, tokens, clock=clock)


@pytest.fixture
def webhooks(session_factory, clock) -> WebhookIngester:
    return WebhookIngester(session_factory, WEBHOOK_SECRET, clock=clock)


@pytest.fixture
def reminder_service(session_factory, email_provider, tokens, clock) -> ReminderService:
    return ReminderService(session_factory, email_provider, tokens, send_hour=9, clock=clock)


@pytest.fixture
def dispatcher(session_factory, voice_provider, clock) -> NotificationDispatcher:
    return NotificationDispatcher(
        session_factory,
        voice_provider,
        call_timeout_seconds=2,
        clock=clock,
    )


@pytest.fixture
def scheduler(session_factory, dispatcher, clock) -> EscalationScheduler:
    return EscalationScheduler(
        session_factory,
        dispatcher,
        interval_seconds=1,
        max_concurrent_calls=5,
        stale_claim_minutes=15,
        clock=clock,
    )


@pytest_asyncio.fixture
async def survey(session_factory) -> Survey:
    survey = Survey(
        id="s_feedback",
        topic="Customer Feedback",
        questions=[
            {"id": "q1", "text": "How satisfied are you?", "type": "rating"},
            {"id": "q2", "text": "What could we improve?", "type": "text"},
        ],
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 9),
        timezone="UTC",
        created_at=START,
    )
    async with session_factory.begin() as session:
        session.add(survey)
    return survey


def recipients(count: int, with_phone: bool = True, prefix: str = "user") -> list[Recipient]:
    return [
        Recipient(
            email=f"{prefix}{i}@example.com",
            phone=f"+1555000{i:04d}" if with_phone else None,
        )
        for i in range(count)
    ]


@pytest_asyncio.fixture
async def app(settings, db, voice_provider, email_provider, voice_config, clock):
    return create_app(
        settings=settings,
        db_manager=db,
        voice_provider=voice_provider,
        email_provider=email_provider,
        voice_config=voice_config,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
