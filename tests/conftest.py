"""
Test configuration: in-memory SQLite, fake provider clients, API client.

Every test gets a fresh schema on a single shared connection (StaticPool),
so code under test can commit freely.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import opswatch.models  # noqa: F401
from opswatch.api.routes import get_engine, get_settings
from opswatch.config import Settings
from opswatch.database import Base, get_db, utcnow
from opswatch.detection.detectors import (
    JiraActivityDetector,
    MissedPaymentDetector,
    NotionStaleDetector,
    PaymentAmountDriftDetector,
    QuickBooksOverdueInvoiceDetector,
)
from opswatch.detection.engine import DetectionEngine
from opswatch.main import app
from opswatch.models import Customer, ExpectedRevenue, Payment
from opswatch.pipeline.expectations import ensure_customer_defaults

class FakeQuickBooks:
    def __init__(self, invoices=None, error=None):
        self.invoices = invoices or []
        self.error = error
        self.calls = 0

    def fetch_overdue_invoices(self, access_token, realm_id, environment=None):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.invoices)

    def invoice_url(self, txn_id, realm_id, environment=None):
        return f"https://sandbox.qbo.intuit.com/app/invoice?txnId={txn_id}&companyId={realm_id}"

    def refresh_tokens(self, refresh_token):
        return {"access_token": "refreshed", "refresh_token": refresh_token}

class FakeJira:
    def __init__(self, recent=None, history=None, error=None):
        self.recent = recent or []
        self.history = history if history is not None else [{"key": "KAN-1"}]
        self.error = error
        self.calls = []

    def recent_issues(self, project_key, lookback=None, limit=1):
        self.calls.append((project_key, lookback))
        if self.error:
            raise self.error
        return list(self.recent if lookback else self.history)

class FakeNotion:
    def __init__(self, last_edited=None, error=None):
        self.last_edited = last_edited
        self.error = error

    def last_edited_at(self, database_id):
        if self.error:
            raise self.error
        return self.last_edited


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()

@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()

@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        environment="development",
        cron_secret="",
        debug_fixtures_enabled=True,
    )

@pytest.fixture
def fakes():
    return {
        "quickbooks": FakeQuickBooks(),
        "jira": FakeJira(),
        "notion": FakeNotion(),
    }

@pytest.fixture
def detectors(fakes):
    items = [
        MissedPaymentDetector(),
        QuickBooksOverdueInvoiceDetector(fakes["quickbooks"]),
        PaymentAmountDriftDetector(),
        JiraActivityDetector(fakes["jira"]),
        NotionStaleDetector(fakes["notion"]),
    ]
    return {d.type: d for d in items}

@pytest.fixture
def alert_engine(db, config, detectors):
    return DetectionEngine(db, config, detectors=detectors)

@pytest.fixture
def make_customer(db):
    """Factory: customer with default settings/state rows."""
    counter = {"n": 0}

    def _make(name: str = "Acme", **fields) -> Customer:
        counter["n"] += 1
        fields.setdefault("api_key", f"key-{counter['n']}")
        customer = Customer(name=name, **fields)
        db.add(customer)
        db.flush()
        ensure_customer_defaults(customer, db)
        db.commit()
        return customer

    return _make

@pytest.fixture
def add_expectation(db):
    def _add(customer: Customer, days_since_paid: int, cadence_days: int = 30,
             amount_cents: int = 250000, confidence: float = 0.9) -> ExpectedRevenue:
        exp = ExpectedRevenue(
            customer_id=customer.id,
            cadence_days=cadence_days,
            expected_amount_cents=amount_cents,
            last_paid_at=utcnow() - timedelta(days=days_since_paid),
            confidence=confidence,
        )
        db.add(exp)
        db.commit()
        return exp

    return _add

@pytest.fixture
def add_payments(db):
    """Payments oldest first; the last amount is the most recent payment."""
    def _add(customer: Customer, amounts: list[int]) -> list[Payment]:
        now = utcnow()
        rows = []
        for i, amount in enumerate(amounts):
            row = Payment(
                customer_id=customer.id,
                external_id=f"ch_{customer.id}_{i}",
                amount_cents=amount,
                paid_at=now - timedelta(days=30 * (len(amounts) - i)),
            )
            db.add(row)
            rows.append(row)
        db.commit()
        return rows

    return _add

@pytest.fixture
def client(db, config, detectors):
    """API client bound to the test session, settings and fake detectors."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: config
    app.dependency_overrides[get_engine] = lambda: DetectionEngine(db, config, detectors=detectors)
    yield TestClient(app)
    app.dependency_overrides.clear()
