"""
Pytest configuration and fixtures.
"""
import json
import os
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Point the app at a throwaway SQLite file before anything imports the engine.
_db_fd, _db_path = tempfile.mkstemp(suffix=".sqlite3")
os.environ["DATABASE_URL"] = f"sqlite:///{_db_path}"
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret")
os.environ["DB_CONNECT_MAX_RETRIES"] = "1"

from fastapi.testclient import TestClient  # noqa: E402

from tixgo.api.dependencies import get_checkout_provider  # noqa: E402
from tixgo.domain.moderation import UserRole, VerificationStatus  # noqa: E402
from tixgo.infrastructure.auth.identity import issue_token  # noqa: E402
from tixgo.infrastructure.db.models import Base, Ticket, User  # noqa: E402
from tixgo.infrastructure.db.session import SessionLocal, engine  # noqa: E402
from tixgo.infrastructure.payments.checkout_provider import (  # noqa: E402
    CheckoutSession,
    ProviderEvent,
)
from tixgo.main import app  # noqa: E402


class FakeCheckoutProvider:
    """In-memory stand-in for the hosted checkout."""

    def __init__(self):
        self.sessions: dict[str, CheckoutSession] = {}
        self.created: list[dict] = []
        self.cancelled: list[str] = []
        self._counter = 0

    def create_session(self, line_item, success_url, cancel_url, metadata):
        self._counter += 1
        session_id = f"plink_test_{self._counter}"
        self.created.append(
            {
                "line_item": line_item,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
            }
        )
        session = CheckoutSession(
            session_id=session_id,
            url=f"https://checkout.test/{session_id}",
            payment_status="created",
            amount_total=line_item.total_amount,
            currency=line_item.currency,
            transaction_ref=None,
            metadata={key: str(value) for key, value in metadata.items()},
        )
        self.sessions[session_id] = session
        return session

    def complete(self, session_id: str, transaction_ref: str | None = None) -> CheckoutSession:
        paid = replace(
            self.sessions[session_id],
            payment_status="paid",
            transaction_ref=transaction_ref or f"pay_{session_id}",
        )
        self.sessions[session_id] = paid
        return paid

    def retrieve_session(self, session_id):
        return self.sessions[session_id]

    def cancel_session(self, session_id):
        self.cancelled.append(session_id)
        self.sessions[session_id] = replace(self.sessions[session_id], payment_status="cancelled")

    def verify_callback(self, params):
        return None

    def parse_webhook(self, body, signature):
        event = json.loads(body)
        return ProviderEvent(
            event_type=event["event"],
            session_id=event.get("session_id"),
            metadata=event.get("notes", {}),
        )


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_database():
    yield
    engine.dispose()
    os.close(_db_fd)
    try:
        os.remove(_db_path)
    except OSError:
        pass


@pytest.fixture(autouse=True)
def clean_db():
    """Drop and recreate all tables so every test starts from a clean slate."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def provider():
    return FakeCheckoutProvider()


@pytest.fixture
def client(provider):
    app.dependency_overrides[get_checkout_provider] = lambda: provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    def _auth_header(email: str) -> dict:
        return {"Authorization": f"Bearer {issue_token(email)}"}

    return _auth_header


@pytest.fixture
def fetch():
    """Read a row in its own short session so no lock is held across requests."""

    def _fetch(model, row_id):
        with SessionLocal() as session:
            return session.get(model, row_id)

    return _fetch


@pytest.fixture
def make_user(db):
    def _make_user(email, role=UserRole.USER, is_fraud=False):
        user = User(email=email, role=role, is_fraud=is_fraud)
        db.add(user)
        db.commit()
        return user.id

    return _make_user


@pytest.fixture
def make_ticket(db):
    def _make_ticket(
        vendor_email="vendor@tixgo.test",
        quantity=5,
        price=Decimal("25.50"),
        status=VerificationStatus.APPROVED,
        hidden=False,
        advertised=False,
        departure=None,
        title="Dhaka to Chittagong",
    ):
        ticket = Ticket(
            vendor_email=vendor_email,
            title=title,
            origin="Dhaka",
            destination="Chittagong",
            transport_type="bus",
            departure=departure or datetime.now(timezone.utc) + timedelta(days=10),
            price=price,
            quantity=quantity,
            verification_status=status,
            hidden=hidden,
            advertised=advertised,
        )
        db.add(ticket)
        db.commit()
        return ticket.id

    return _make_ticket
