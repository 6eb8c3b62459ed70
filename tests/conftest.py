"""Shared fixtures: in-memory database, fake Redis and test data factories"""

from typing import Any, Dict, Optional
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
import fakeredis
import pytest

import notifier.models  # noqa: F401  registers every table
from notifier.models.base import Base
from notifier.models.notification import (
    DeliveryChannel,
    Notification,
    NotificationPriority,
    NotificationStatus,
)
from notifier.schemas.notification import RecipientUser
from notifier.services.providers import ProviderResult

# ============================================================================
# Infrastructure
# ============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()

# ============================================================================
# Test data
# ============================================================================

def build_user(**overrides: Any) -> RecipientUser:
    data: Dict[str, Any] = {
        "id": "user-1",
        "email": "jane@example.com",
        "phone": "+14155550123",
        "first_name": "Jane",
        "last_name": "Doe",
        "role": "STUDENT",
        "tenant_id": "tenant-1",
    }
    data.update(overrides)
    return RecipientUser(**data)

def build_notification(**overrides: Any) -> Notification:
    """Unsaved notification with every column populated"""
    data: Dict[str, Any] = {
        "id": "notif-1",
        "tenant_id": "tenant-1",
        "created_by": "admin-1",
        "title": "Grades posted",
        "message": "Your term grades are available.",
        "type": "GRADE_UPDATE",
        "category": "ACADEMIC",
        "priority": NotificationPriority.NORMAL,
        "channels": [DeliveryChannel.EMAIL.value],
        "content": {},
        "recipients": [build_user().model_dump(mode="json")],
        "notification_metadata": {"grade_id": "g-42"},
        "status": NotificationStatus.PENDING,
        "read_count": 0,
    }
    data.update(overrides)
    return Notification(**data)

@pytest.fixture
def user():
    return build_user()

@pytest.fixture
def notification():
    return build_notification()

@pytest.fixture
def saved_notification(session_factory):
    """Persist a notification built from keyword overrides"""

    async def _save(**overrides: Any) -> Notification:
        record = build_notification(**overrides)
        async with session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    return _save

# ============================================================================
# Providers
# ============================================================================

class StubProvider:
    """Provider double recording every message it is asked to send"""

    def __init__(self, name: str, error: Optional[Exception] = None, result: Optional[ProviderResult] = None):
        self.name = name
        self.send = AsyncMock(
            side_effect=error,
            return_value=result or ProviderResult(provider=name, message_id=f"{name}-msg-1"),
        )

@pytest.fixture
def stub_provider():
    return StubProvider
