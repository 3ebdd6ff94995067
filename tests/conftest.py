"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

os.environ.setdefault("ENV", "test")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import carelink.models  # noqa: F401
from carelink.api.deps import get_call_issuer, get_notification_bus
from carelink.core.security import create_access_token
from carelink.db.base import Base
from carelink.db.session import get_db
from carelink.main import app
from carelink.models.booking import Booking, BookingStatus
from carelink.models.user import User, UserRole
from carelink.services.notifications import NotificationBus, NotificationProvider
from carelink.services.video import CallCredentialConfig, SignedCallCredentialIssuer
from carelink.utils.time import utc_now
from carelink.workflow.actors import Actor

# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


class RecordingProvider(NotificationProvider):
    """Notification provider that keeps what it was asked to send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def send(self, recipient: str, subject: str, body: str, **kwargs: Any) -> tuple[str, dict]:
        if self.fail:
            raise RuntimeError("provider down")
        self.sent.append({"recipient": recipient, "subject": subject, "body": body, **kwargs})
        return f"test_{len(self.sent)}", {}


@pytest.fixture
def notification_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def notifications(notification_provider: RecordingProvider) -> NotificationBus:
    """A fresh bus per test so queued events never leak between tests."""
    return NotificationBus(provider=notification_provider, timeout_seconds=1.0)


@pytest.fixture
def call_issuer() -> SignedCallCredentialIssuer:
    return SignedCallCredentialIssuer(
        CallCredentialConfig(app_id="test-app", app_certificate="test-certificate")
    )


@pytest.fixture
def unconfigured_issuer() -> SignedCallCredentialIssuer:
    return SignedCallCredentialIssuer(CallCredentialConfig())


UserFactory = Callable[..., Awaitable[User]]


@pytest.fixture
def make_user(async_session: AsyncSession) -> UserFactory:
    """Factory for directory users of any role."""
    counter = {"n": 0}

    async def _make(
        role: UserRole,
        name: Optional[str] = None,
        profile: Optional[dict] = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=f"{role.value.lower()}{n}@carelink.local",
            name=name or f"{role.value.title()} {n}",
            phone=f"+91900000{n:04d}",
            role=role.value,
            unique_id=f"{role.value[:3]}-{n:05d}",
            is_active=is_active,
            profile=profile,
        )
        async_session.add(user)
        await async_session.commit()
        await async_session.refresh(user)
        return user

    return _make


@pytest.fixture
async def patient(make_user: UserFactory) -> User:
    return await make_user(UserRole.PATIENT, name="Asha Patel")


@pytest.fixture
async def doctor(make_user: UserFactory) -> User:
    return await make_user(
        UserRole.DOCTOR,
        name="Dr. Rao",
        profile={"specialization": "Cardiology", "location": "Pune"},
    )


@pytest.fixture
async def other_doctor(make_user: UserFactory) -> User:
    return await make_user(UserRole.DOCTOR, name="Dr. Menon")


@pytest.fixture
async def hospital(make_user: UserFactory) -> User:
    return await make_user(UserRole.HOSPITAL, name="City Hospital", profile={"location": "Pune"})


@pytest.fixture
async def lab(make_user: UserFactory) -> User:
    return await make_user(UserRole.LAB, name="Central Lab")


@pytest.fixture
async def pharmacy(make_user: UserFactory) -> User:
    return await make_user(UserRole.PHARMACY, name="Corner Pharmacy")


@pytest.fixture
async def other_pharmacy(make_user: UserFactory) -> User:
    return await make_user(UserRole.PHARMACY, name="Station Pharmacy")


@pytest.fixture
async def admin(make_user: UserFactory) -> User:
    return await make_user(UserRole.ADMIN, name="Admin")


async def create_booking(
    session: AsyncSession,
    patient: User,
    provider: User,
    status: BookingStatus = BookingStatus.CONFIRMED,
    payment_amount: Optional[Decimal] = Decimal("500.00"),
) -> Booking:
    booking = Booking(
        reference_number=f"BK-{utc_now().strftime('%H%M%S%f')}",
        patient_id=patient.id,
        provider_id=provider.id,
        status=status.value,
        scheduled_at=utc_now() + timedelta(days=1),
        payment_amount=payment_amount,
    )
    session.add(booking)
    await session.commit()
    await session.refresh(booking)
    return booking


@pytest.fixture
async def booking(async_session: AsyncSession, patient: User, doctor: User) -> Booking:
    """A confirmed booking linking the doctor and the patient."""
    return await create_booking(async_session, patient, doctor)


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


def auth_headers(user: User) -> dict[str, str]:
    """Authorization headers carrying an access token for ``user``."""
    token = create_access_token(subject=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(
    async_session: AsyncSession,
    notifications: NotificationBus,
    call_issuer: SignedCallCredentialIssuer,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with test dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_bus] = lambda: notifications
    app.dependency_overrides[get_call_issuer] = lambda: call_issuer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
