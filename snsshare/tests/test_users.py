"""
User rows: creation checks and operator-granted permanent licenses.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from snsshare.core.config import settings
from snsshare.core.database import get_db_session, corporate_tenants
from snsshare.core.errors import AuthorizationError, NotFoundError, ValidationError
from snsshare.features.access.service import resolve_for_user
from snsshare.features.users.service import create_user, get_user, grant_permanent
from snsshare.main import app
from snsshare.models.plan import PlanTier


@pytest.fixture
def operator(monkeypatch, user_factory):
    monkeypatch.setattr(settings, "OPERATOR_EMAILS", "ops@example.com")
    return user_factory("OPS", email="Ops@Example.com")


def _admin_tenants(admin_id):
    with get_db_session() as session:
        return session.execute(
            select(corporate_tenants).where(corporate_tenants.c.admin_id == admin_id)
        ).fetchall()


def test_create_user_rejects_unknown_corporate_role():
    with pytest.raises(ValidationError):
        create_user("U1", corporate_role="owner")
    assert get_user("U1") is None


def test_create_user_accepts_known_roles():
    assert create_user("U1", corporate_role="member").corporate_role == "member"
    assert create_user("U2").corporate_role is None


def test_grant_permanent_creates_enterprise_tenant(operator, user_factory):
    user_factory("U1", display_name="Hanako")

    user, tenant_id = grant_permanent("OPS", "U1")

    assert user.subscription_status == "permanent"
    assert user.corporate_role == "admin"
    [tenant] = _admin_tenants("U1")
    assert tenant.id == tenant_id
    assert tenant.max_users == 50
    decision, _ = resolve_for_user("U1")
    assert decision.is_permanent_user is True
    assert decision.permanent_plan_type == PlanTier.ENTERPRISE


def test_grant_permanent_keeps_existing_tenant(operator, user_factory, tenant_factory):
    user_factory("U1", corporate_role="admin")
    tenant_id = tenant_factory("U1", max_users=10)

    _, granted_tenant = grant_permanent("OPS", "U1")

    assert granted_tenant == tenant_id
    [tenant] = _admin_tenants("U1")
    assert tenant.max_users == 10


def test_grant_permanent_leaves_members_in_their_tenant(operator, user_factory, tenant_factory):
    user_factory("A1", corporate_role="admin")
    other = tenant_factory("A1")
    user_factory("M1", corporate_role="member", tenant_id=other)

    user, tenant_id = grant_permanent("OPS", "M1")

    assert user.subscription_status == "permanent"
    assert user.tenant_id == other
    assert tenant_id is None
    assert _admin_tenants("M1") == []


def test_grant_permanent_requires_operator(operator, user_factory):
    user_factory("U1")
    user_factory("U2", email="someone@example.com")
    with pytest.raises(AuthorizationError):
        grant_permanent("U2", "U1")
    assert get_user("U1").subscription_status == "free"


def test_grant_permanent_unknown_target(operator):
    with pytest.raises(NotFoundError):
        grant_permanent("OPS", "missing")


def test_grant_permanent_route(operator, user_factory):
    user_factory("U1")
    with TestClient(app) as client:
        forbidden = client.post("/api/admin/grant-permanent", json={"userId": "U1"}, headers={"X-User-Id": "U1"})
        granted = client.post("/api/admin/grant-permanent", json={"userId": "U1"}, headers={"X-User-Id": "OPS"})

    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "not_operator"
    assert granted.status_code == 200
    body = granted.json()
    assert body["subscription_status"] == "permanent"
    assert body["tenant_id"] == _admin_tenants("U1")[0].id
