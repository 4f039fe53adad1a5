# snsshare/conftest.py
import os
from typing import Optional
from unittest.mock import Mock
from uuid import uuid4

import pytest

# In-memory SQLite unless the caller points tests at a real database
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Create all tables once per test session."""
    from snsshare.core.database import init_engine, create_all_tables

    init_engine()
    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Empty every table before each test (children first)."""
    from snsshare.core.database import get_engine, metadata

    def _truncate():
        with get_engine().begin() as conn:
            for table in reversed(metadata.sorted_tables):
                conn.execute(table.delete())

    _truncate()
    yield
    _truncate()


@pytest.fixture
def user_factory():
    """Insert a user row; returns the User model."""
    from snsshare.features.users.service import create_user

    def _make(user_id: Optional[str] = None, **kwargs):
        return create_user(user_id or f"user_{uuid4().hex[:8]}", **kwargs)

    return _make


@pytest.fixture
def tenant_factory():
    """Insert a corporate tenant administered by `admin_id`; returns its id."""
    from sqlalchemy import insert
    from snsshare.core.database import get_db_session, corporate_tenants

    def _make(admin_id: str, *, max_users: int = 10, account_status: str = "active", name: str = "Acme"):
        tenant_id = str(uuid4())
        with get_db_session() as session:
            session.execute(
                insert(corporate_tenants).values(
                    id=tenant_id,
                    name=name,
                    account_status=account_status,
                    max_users=max_users,
                    admin_id=admin_id,
                )
            )
        return tenant_id

    return _make


@pytest.fixture
def subscription_factory():
    """Insert a subscription row for a user; returns its row id."""
    from sqlalchemy import insert
    from snsshare.core.database import get_db_session, subscriptions

    def _make(user_id: str, *, status: str = "active", plan: str = "personal", interval: str = "month", subscription_id: str = "sub_existing"):
        row_id = str(uuid4())
        with get_db_session() as session:
            session.execute(
                insert(subscriptions).values(
                    id=row_id,
                    user_id=user_id,
                    status=status,
                    plan=plan,
                    interval=interval,
                    subscription_id=subscription_id,
                )
            )
        return row_id

    return _make


@pytest.fixture
def customer_factory():
    """Link a user to a Stripe customer id."""
    from sqlalchemy import insert
    from snsshare.core.database import get_db_session, billing_customers

    def _make(user_id: str, customer_id: str = "cus_test_123"):
        with get_db_session() as session:
            session.execute(insert(billing_customers).values(user_id=user_id, stripe_customer_id=customer_id))
        return customer_id

    return _make


@pytest.fixture
def mock_provider():
    """Stripe stand-in: fixed customer and checkout session."""
    from snsshare.features.billing.provider import CheckoutSession

    provider = Mock()
    provider.webhook_secret = "whsec_test"
    provider.ensure_customer.return_value = "cus_test_123"
    provider.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_1", url="https://checkout.stripe.test/pay/cs_test_1"
    )
    return provider
