"""
Shared pytest fixtures for the audit engagement workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / users / engagement / workpaper: ORM-built scenario fixtures
    - as_user: Bearer access-token header builder for the acting user
"""

import pytest

from auditflow import create_app
from auditflow.models import db as _db
from auditflow.models.auth import Tenant, User
from auditflow.models.engagement import Engagement
from auditflow.models.workpaper import Workpaper
from auditflow.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM helpers ──────────────────────────────────────────────────────────


def make_tenant(slug: str = "test-default") -> Tenant:
    t = Tenant(name=f"Tenant {slug}", slug=slug)
    _db.session.add(t)
    _db.session.flush()
    return t


def make_user(tenant_id: int, role: str, email: str | None = None, status: str = "active") -> User:
    u = User(
        tenant_id=tenant_id,
        email=email or f"{role}@test.com",
        full_name=f"Test {role.title()}",
        role=role,
        status=status,
    )
    _db.session.add(u)
    _db.session.flush()
    return u


def make_engagement(tenant_id: int, partner_id=None, manager_id=None, status: str = "draft", **flags) -> Engagement:
    e = Engagement(
        tenant_id=tenant_id,
        name="FY2026 Statutory Audit",
        client_name="Acme Corp",
        status=status,
        engagement_partner_id=partner_id,
        manager_id=manager_id,
        **flags,
    )
    _db.session.add(e)
    _db.session.flush()
    return e


def make_workpaper(engagement: Engagement, title: str = "Cash lead schedule", content=None) -> Workpaper:
    wp = Workpaper(
        tenant_id=engagement.tenant_id,
        engagement_id=engagement.id,
        reference="C-100",
        title=title,
        content=content if content is not None else {"balance": 1250000, "tickmarks": ["agreed to bank"]},
    )
    _db.session.add(wp)
    _db.session.flush()
    return wp


# ── Scenario fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def tenant():
    t = make_tenant()
    _db.session.commit()
    return t


@pytest.fixture()
def users(tenant):
    """One active user per audit role, keyed by role name."""
    result = {
        role: make_user(tenant.id, role)
        for role in ("staff", "senior", "reviewer", "manager", "partner")
    }
    result["second_partner"] = make_user(tenant.id, "partner", email="partner2@test.com")
    _db.session.commit()
    return result


@pytest.fixture()
def engagement(tenant, users):
    e = make_engagement(tenant.id, partner_id=users["partner"].id, manager_id=users["manager"].id)
    _db.session.commit()
    return e


@pytest.fixture()
def workpaper(engagement):
    wp = make_workpaper(engagement)
    _db.session.commit()
    return wp


@pytest.fixture()
def as_user():
    """Return request headers carrying a signed access token for *user*."""
    def _headers(user):
        token = generate_access_token(user.id, user.tenant_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
