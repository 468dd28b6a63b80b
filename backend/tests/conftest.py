"""
Test configuration and fixtures for the Billing Service.

Provides shared fixtures for unit and integration tests.
"""

import os
import time

# Settings are read at import time; pin a deterministic auth setup first.
os.environ.setdefault("SUPABASE_URL", "")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-at-least-32-bytes!!")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.pop("DATABASE_URL", None)

import jwt
import pytest
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import MagicMock, AsyncMock

from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from app.domain.billing import (
    BillingAddress,
    Company,
    CustomerInfo,
    Plan,
    Subscription,
    SubscriptionStatus,
)
from app.infrastructure.db.repositories import (
    CompanyRepository,
    PaymentEventLogRepository,
    PlanRepository,
    SubscriptionRepository,
    TransactionRepository,
    UserAccessRepository,
    WebhookEventRepository,
)
from app.infrastructure.payments.efi_service import (
    CreatedSubscription,
    EfiCredentials,
    EfiService,
    PaymentBinding,
)


COMPANY_ID = "11111111-1111-1111-1111-111111111111"
PLAN_ID = "22222222-2222-2222-2222-222222222222"
USER_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from app.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def mock_user_id():
    return USER_ID


@pytest.fixture
def auth_headers(mock_user_id):
    """Bearer header carrying a valid HS256 Supabase token."""
    from app.config.settings import get_settings

    settings = get_settings()
    payload = {
        "sub": mock_user_id,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + 3600,
    }
    token = jwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_efi():
    """EfiService double with a successful checkout scripted."""
    mock = AsyncMock(spec=EfiService)
    mock.create_plan.return_value = 7001
    mock.create_subscription.return_value = CreatedSubscription(
        subscription_id=9001,
        charges=[{"charge_id": 5001, "status": "new"}],
    )
    mock.define_subscription_payment_method.return_value = PaymentBinding(
        charge_id=5001, status="waiting"
    )
    mock.cancel_subscription.return_value = True
    mock.detail_subscription.return_value = {"subscription_id": 9001, "status": "active"}
    return mock


@pytest.fixture
def mock_efi_client():
    """Stand-in for the efipay SDK client returning success envelopes."""
    client = MagicMock()
    client.create_plan.return_value = {"code": 200, "data": {"plan_id": 7001}}
    client.create_subscription.return_value = {
        "code": 200,
        "data": {"subscription_id": 9001, "charges": [{"charge_id": 5001, "status": "new"}]},
    }
    client.define_subscription_pay_method.return_value = {
        "code": 200,
        "data": {"subscription_id": 9001, "status": "active", "charge_id": 5001},
    }
    client.cancel_subscription.return_value = {"code": 200}
    client.detail_subscription.return_value = {"code": 200, "data": {"subscription_id": 9001}}
    return client


@pytest.fixture
def efi_credentials():
    return EfiCredentials(
        client_id="Client_Id_123",
        client_secret="Client_Secret_456",
        certificate="/tmp/cert.pem",
        sandbox=True,
    )


@pytest.fixture
def mock_plan_repo():
    return AsyncMock(spec=PlanRepository)


@pytest.fixture
def mock_sub_repo():
    repo = AsyncMock(spec=SubscriptionRepository)
    repo.list_open.return_value = []
    repo.get_active_for_company.return_value = None
    return repo


@pytest.fixture
def mock_tx_repo():
    return AsyncMock(spec=TransactionRepository)


@pytest.fixture
def mock_company_repo():
    return AsyncMock(spec=CompanyRepository)


@pytest.fixture
def mock_access_repo():
    repo = AsyncMock(spec=UserAccessRepository)
    repo.is_admin.return_value = False
    repo.belongs_to_company.return_value = True
    return repo


@pytest.fixture
def mock_event_repo():
    repo = AsyncMock(spec=WebhookEventRepository)
    repo.is_processed.return_value = False
    return repo


@pytest.fixture
def mock_audit():
    return AsyncMock(spec=PaymentEventLogRepository)


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def sample_plan():
    """Catalog plan without a gateway plan yet."""
    return Plan(
        id=PLAN_ID,
        slug="business",
        name="Business",
        price_cents=5000,
        currency="BRL",
        interval_months=1,
        max_employees=25,
    )


@pytest.fixture
def sample_company():
    return Company(id=COMPANY_ID, name="Acme Ltda", plan="free", maxemployees=3)


@pytest.fixture
def make_subscription():
    """Factory for subscription domain objects."""
    def _make(
        sub_id: str = "33333333-3333-3333-3333-333333333333",
        efi_subscription_id: int = 9001,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        started_at=None,
        company_id: str = COMPANY_ID,
        plan_id: str = PLAN_ID,
    ) -> Subscription:
        return Subscription(
            id=sub_id,
            company_id=company_id,
            plan_id=plan_id,
            status=status,
            efi_subscription_id=efi_subscription_id,
            started_at=started_at,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
    return _make


@pytest.fixture
def sample_customer():
    return {
        "name": "Maria Silva",
        "email": "maria@example.com",
        "cpf": "123.456.789-09",
        "phone_number": "(11) 98888-7777",
        "birth": "1990-05-20",
    }


@pytest.fixture
def sample_billing_address():
    return {
        "street": "Av. Paulista",
        "number": "1000",
        "neighborhood": "Bela Vista",
        "zipcode": "01310-100",
        "city": "São Paulo",
        "state": "sp",
    }


@pytest.fixture
def sample_subscribe_payload(sample_customer, sample_billing_address):
    """Checkout body as the browser form sends it."""
    return {
        "plan_uuid": PLAN_ID,
        "plan_slug": "business",
        "company_id": COMPANY_ID,
        "item": {"name": "Business", "value": 5000, "amount": 1},
        "customer": sample_customer,
        "billing_address": sample_billing_address,
        "payment_token": "tok_0123456789abcdef",
    }


@pytest.fixture
def customer_info(sample_customer):
    return CustomerInfo(**sample_customer)


@pytest.fixture
def billing_address(sample_billing_address):
    return BillingAddress(**sample_billing_address)
