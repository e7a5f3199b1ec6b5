"""Pytest fixtures for testing"""

import json
import pytest
from datetime import datetime, timezone
from typing import Callable, Generator, List

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from clinic_ledger.api.dependencies import get_sms_gateway_client
from clinic_ledger.api.main import create_app
from clinic_ledger.infrastructure.cache import TTLCache, dashboard_cache
from clinic_ledger.infrastructure.clients.sms_gateway import SmsGatewayClient
from clinic_ledger.infrastructure.database.models import Base, Patient
from clinic_ledger.infrastructure.database.session import get_db
from clinic_ledger.services.access import Actor
from clinic_ledger.services.notifications import NotificationDispatcher
from clinic_ledger.services.reconciliation import PlanLocks, ReconciliationService
from clinic_ledger.services.templates import PlanTemplateService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeGateway:
    """Records every request sent to the SMS gateway and answers like Hubtel"""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "gateway down"})
        if request.method == "GET":
            return httpx.Response(200, json={"messageId": request.url.path.rsplit("/", 1)[-1], "status": "Delivered"})
        body = json.loads(request.content)
        messages = [
            {"messageId": f"msg-{len(self.requests)}-{i}", "status": "sent"}
            for i, _ in enumerate(body["personalizedRecipients"])
        ]
        return httpx.Response(200, json={"batchId": f"batch-{len(self.requests)}", "data": {"messages": messages}})

    @property
    def sent_payloads(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    def client(self) -> SmsGatewayClient:
        return SmsGatewayClient(
            base_url="https://sms.test",
            client_id="client",
            client_secret="secret",
            transport=httpx.MockTransport(self),
        )


@pytest.fixture(autouse=True)
def clear_dashboard_cache():
    dashboard_cache.clear()
    yield
    dashboard_cache.clear()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(db: Session, gateway: FakeGateway) -> TestClient:
    """Create FastAPI test client with test database and a fake SMS gateway"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sms_gateway_client] = gateway.client
    return TestClient(app)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin-1", role="admin")


@pytest.fixture
def receptionist() -> Actor:
    return Actor(user_id="desk-1", role="receptionist")


@pytest.fixture
def patient(db: Session) -> Patient:
    p = Patient(name="Ama Mensah", phone="024 123 4567", is_child=False)
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def child_patient(db: Session) -> Patient:
    p = Patient(name="Kofi Junior", phone=None, guardian_phone="0209876543", is_child=True)
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def patient_without_phone(db: Session) -> Patient:
    p = Patient(name="Yaw Boateng", phone=None, is_child=False)
    db.add(p)
    db.commit()
    return p


class Clock:
    """Settable clock for services"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def make_service(db: Session, gateway: FakeGateway, clock: Clock) -> Callable[..., ReconciliationService]:
    """Build a service over the test session with a fixed clock and a private cache"""

    def factory(gateway_client: SmsGatewayClient = None, **overrides) -> ReconciliationService:
        dispatcher = NotificationDispatcher(db, gateway_client or gateway.client(), clock=clock)
        kwargs = dict(dispatcher=dispatcher, cache=TTLCache(), clock=clock, locks=PlanLocks())
        kwargs.update(overrides)
        return ReconciliationService(db, **kwargs)

    return factory


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Factory for extra sessions on the test database, e.g. one per worker thread"""
    return TestingSessionLocal


@pytest.fixture
def template_service(db: Session, clock: Clock) -> PlanTemplateService:
    return PlanTemplateService(db, clock=clock)
