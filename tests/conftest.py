import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app import email_service  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.services import push_service, stripe_service  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# StaticPool keeps one in-memory database shared by the test and the app sessions
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override session to use test engine"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(name="db", scope="function")
def db_fixture():
    """Fresh tables for every test"""
    Base.metadata.create_all(test_engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(db):
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# ============================================================================
# External services
# ============================================================================


@pytest.fixture(name="pushes", autouse=True)
def pushes_fixture(monkeypatch):
    """Record OneSignal payloads instead of sending them"""
    sent = []

    async def fake_create_notification(payload):
        sent.append(payload)
        return {"id": f"push-{len(sent)}"}

    monkeypatch.setattr(push_service, "create_notification", fake_create_notification)
    return sent


@pytest.fixture(name="emails", autouse=True)
def emails_fixture(monkeypatch):
    """Record outgoing emails instead of calling Resend"""
    sent = []

    async def fake_send_email(to, subject, mjml_content, from_address=None, attachments=None, bcc=None):
        sent.append({"to": to, "subject": subject, "attachments": attachments, "bcc": bcc})
        return {"id": f"email-{len(sent)}"}

    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return sent


class FakeStripe:
    """Stand-in for the Stripe REST calls; set fail_charge or fail_destinations to simulate errors"""

    def __init__(self):
        self.charges = []
        self.transfers = []
        self.fail_charge = None
        self.fail_destinations = set()

    async def create_charge(self, amount, customer, receipt_email, idempotency_key=None):
        if self.fail_charge:
            raise stripe_service.StripeError(self.fail_charge)
        self.charges.append(
            {"amount": amount, "customer": customer, "receipt_email": receipt_email, "idempotency_key": idempotency_key}
        )
        return {"id": f"ch_{len(self.charges)}"}

    async def create_transfer(self, amount, destination, source_transaction):
        if not destination or destination in self.fail_destinations:
            raise stripe_service.StripeError("Transfer failed")
        self.transfers.append({"amount": amount, "destination": destination, "source_transaction": source_transaction})
        return {"id": f"tr_{len(self.transfers)}"}


@pytest.fixture(name="stripe")
def stripe_fixture(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe_service, "create_charge", fake.create_charge)
    monkeypatch.setattr(stripe_service, "create_transfer", fake.create_transfer)
    return fake



@pytest.fixture
def anyio_backend():
    return "asyncio"
