"""Pytest configuration and fixtures for async testing."""
import json
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from studio_billing.auth.jwt import JWTAuth
from studio_billing.config import Settings
from studio_billing.database import Database
from studio_billing.integrations.notification_service import NotificationService
from studio_billing.main import create_app
from studio_billing.schemas.subscription import PaymentPlanCreate, SubscriptionCreate
from studio_billing.services.subscription_service import SubscriptionService
from utils.factories import PaymentPlanFactory, SubscriptionFactory
from utils.fakes import FakeStripeAdapter
from utils.webhooks import TEST_WEBHOOK_SECRET, sign_payload

# In-memory SQLite shared by every session of a test through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """Settings isolated from the environment's Stripe and email credentials."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        email_api_key="",
        admin_notification_email="admin@studio.test",
        app_env="test",
    )


@pytest_asyncio.fixture(scope="function")
async def database() -> AsyncGenerator[Database, None]:
    """
    Create a fresh in-memory database for each test.

    Yields:
        Database: Database with all tables created
    """
    db = Database(TEST_DATABASE_URL, poolclass=StaticPool, connect_args={"check_same_thread": False})
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for service-level tests.

    Yields:
        AsyncSession: Database session for testing
    """
    async with database.session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def stripe_adapter(test_settings: Settings) -> FakeStripeAdapter:
    """Gateway adapter that records calls instead of reaching Stripe."""
    return FakeStripeAdapter(test_settings)


@pytest.fixture(scope="function")
def notification_service(test_settings: Settings) -> NotificationService:
    """Notification service without an API key: emails are logged only."""
    return NotificationService(test_settings)


@pytest_asyncio.fixture(scope="function")
async def async_client(
    database: Database,
    test_settings: Settings,
    stripe_adapter: FakeStripeAdapter,
    notification_service: NotificationService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for an application wired to the test database.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    app = create_app(
        config=test_settings,
        database=database,
        stripe_adapter=stripe_adapter,
        notification_service=notification_service,
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def _bearer(config: Settings, role: str) -> dict[str, str]:
    token = JWTAuth(config).create_access_token(user_id=uuid4(), email=f"{role}@studio.test", role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def admin_headers(test_settings: Settings) -> dict[str, str]:
    """Authorization header for an admin user."""
    return _bearer(test_settings, "admin")


@pytest.fixture(scope="function")
def client_headers(test_settings: Settings) -> dict[str, str]:
    """Authorization header for a non-admin (client portal) user."""
    return _bearer(test_settings, "client")


@pytest.fixture(scope="function")
def post_event(async_client: AsyncClient) -> Callable[[dict[str, Any]], Awaitable[Response]]:
    """Post a signed webhook event to the application."""

    async def _post(event: dict[str, Any]) -> Response:
        payload = json.dumps(event).encode("utf-8")
        return await async_client.post(
            "/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_payload(payload), "Content-Type": "application/json"},
        )

    return _post


@pytest.fixture(scope="function")
def reload(db_session: AsyncSession) -> Callable[[Any, Any], Awaitable[Any]]:
    """Re-read a row, discarding whatever the test session has cached."""

    async def _reload(model: Any, record_id: Any) -> Any:
        return await db_session.get(model, record_id, populate_existing=True)

    return _reload


@pytest_asyncio.fixture(scope="function")
async def pending_subscription(db_session: AsyncSession, stripe_adapter: FakeStripeAdapter):
    """
    Create a retainer subscription waiting for its first checkout.

    Returns:
        Subscription: Subscription in PENDING_PAYMENT status
    """
    service = SubscriptionService(db_session, stripe_adapter)
    subscription = await service.create_subscription(SubscriptionCreate(**SubscriptionFactory.create()))
    await db_session.commit()
    return subscription


@pytest_asyncio.fixture(scope="function")
async def pending_plan(db_session: AsyncSession, stripe_adapter: FakeStripeAdapter):
    """
    Create a $900 payment plan over 3 monthly payments, waiting for checkout.

    Returns:
        PaymentPlan: Payment plan in PENDING_PAYMENT status
    """
    service = SubscriptionService(db_session, stripe_adapter)
    plan, _ = await service.create_payment_plan(PaymentPlanCreate(**PaymentPlanFactory.create()))
    await db_session.commit()
    return plan
