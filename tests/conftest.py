"""Shared test infrastructure for the FlowTrade portal test suite.

Provides:
- db_session: SQLite in-memory session with all tables created
- clock: controllable naive-UTC clock for expiry tests
- make_org / make_customer / make_user / make_quote / make_invoice: row factories
- payment_service: mock checkout service returning a fixed session
- client / auth_client: FastAPI TestClient wired to the test database
"""

import os
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

# Must be set before flowtrade.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECURITY_HEADERS_ENABLED", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flowtrade.auth import get_current_user
from flowtrade.database import Base, create_db_engine, get_db
from flowtrade.domain.portal.payments import CheckoutSession
from flowtrade.domain.portal.service import AccessLogger, PortalTokenService
from flowtrade.main import app
from flowtrade.models import (
    Customer,
    Invoice,
    InvoiceItem,
    Organization,
    Quote,
    QuoteLineItem,
    User,
)
from flowtrade.models_portal import PortalAccessLog
from flowtrade.rate_limiter import InMemoryRateLimiter


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def access_logs(db_session):
    """Access log rows for a token, oldest first"""

    def _logs(token_id: str) -> list[PortalAccessLog]:
        db_session.expire_all()
        return (
            db_session.query(PortalAccessLog)
            .filter(PortalAccessLog.token_id == token_id)
            .order_by(PortalAccessLog.accessed_at.asc(), PortalAccessLog.id.asc())
            .all()
        )

    return _logs


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable returning a fixed naive-UTC time that tests move forward"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 30, 0))


@pytest.fixture
def token_service(db_session, clock):
    return PortalTokenService(db_session, clock=clock, base_url="https://portal.test")


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_org(db_session):
    def _factory(**overrides) -> Organization:
        data = {
            "name": "Harbour Plumbing",
            "email": "office@harbourplumbing.com.au",
            "phone": "02 9000 1234",
            "address_line1": "12 Wharf St",
            "suburb": "Pyrmont",
            "state": "NSW",
            "postcode": "2009",
            "abn": "51 824 753 556",
        }
        data.update(overrides)
        org = Organization(**data)
        db_session.add(org)
        db_session.commit()
        db_session.refresh(org)
        return org

    return _factory


@pytest.fixture
def make_customer(db_session):
    def _factory(org: Organization, **overrides) -> Customer:
        data = {
            "org_id": org.id,
            "first_name": "Jane",
            "last_name": "Citizen",
            "email": "jane@example.com",
        }
        data.update(overrides)
        customer = Customer(**data)
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _factory


@pytest.fixture
def make_user(db_session):
    def _factory(org: Organization = None, **overrides) -> User:
        data = {
            "firebase_uid": f"uid-{overrides.get('email', 'owner@example.com')}",
            "email": "owner@example.com",
            "full_name": "Owner",
            "org_id": org.id if org else None,
        }
        data.update(overrides)
        user = User(**data)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _factory


@pytest.fixture
def make_quote(db_session):
    def _factory(org: Organization, customer: Customer, status: str = "sent", **overrides) -> Quote:
        data = {
            "org_id": org.id,
            "customer_id": customer.id,
            "quote_number": "Q-0001",
            "status": status,
            "job_description": "Replace hot water system",
            "valid_until": date(2026, 4, 1),
            "subtotal": 1000.0,
            "gst_amount": 100.0,
            "total": 1100.0,
        }
        data.update(overrides)
        quote = Quote(**data)
        db_session.add(quote)
        db_session.flush()
        db_session.add(
            QuoteLineItem(
                quote_id=quote.id,
                description="Rheem 315L hot water unit, supplied and installed",
                quantity=1,
                unit="each",
                unit_price=1000.0,
                line_total=1000.0,
            )
        )
        db_session.commit()
        db_session.refresh(quote)
        return quote

    return _factory


@pytest.fixture
def make_invoice(db_session):
    def _factory(
        org: Organization, customer: Customer, status: str = "sent", **overrides
    ) -> Invoice:
        data = {
            "org_id": org.id,
            "customer_id": customer.id,
            "invoice_number": "INV-0001",
            "status": status,
            "issue_date": date(2026, 3, 1),
            "due_date": date(2026, 3, 15),
            "subtotal": 500.0,
            "gst": 50.0,
            "total": 550.0,
            "amount_paid": 0.0,
        }
        data.update(overrides)
        invoice = Invoice(**data)
        db_session.add(invoice)
        db_session.flush()
        db_session.add(
            InvoiceItem(
                invoice_id=invoice.id,
                description="Blocked drain callout",
                quantity=2,
                unit_price=250.0,
                total=500.0,
            )
        )
        db_session.commit()
        db_session.refresh(invoice)
        return invoice

    return _factory


@pytest.fixture
def org(make_org):
    return make_org()


@pytest.fixture
def customer(make_customer, org):
    return make_customer(org)


@pytest.fixture
def owner(make_user, org):
    return make_user(org)


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------

@pytest.fixture
def payment_service():
    """Mock checkout service; create_checkout_session records its kwargs"""
    service = MagicMock()
    service.is_available.return_value = True
    service.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(
            session_id="cs_test_123", url="https://test.checkout.dodopayments.com/cs_test_123"
        )
    )
    return service


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------

@pytest.fixture
def client(session_factory, payment_service):
    """TestClient for the public portal routes

    The lifespan hook is not run; app.state is populated here instead.
    """

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.rate_limiter = InMemoryRateLimiter()
    app.state.access_logger = AccessLogger(session_factory)
    app.state.payment_service = payment_service

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_client(client, owner):
    app.dependency_overrides[get_current_user] = lambda: owner
    return client


@pytest.fixture
def issue_link(db_session, owner):
    """Issue a real-clock portal token for a quote or invoice"""

    def _issue(resource_type: str, resource):
        return PortalTokenService(db_session).issue(resource_type, resource.id, owner)

    return _issue
