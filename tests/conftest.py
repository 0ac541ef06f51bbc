import uuid
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import WalletSettings
from app.db import Base, get_db
from app.main import app
from app.models.customer import Customer
from app.models.customer_loyalty_card import CustomerLoyaltyCard
from app.models.loyalty_card import LoyaltyCard
from app.models.privacy_audit_log import PrivacyAuditLog
from app.models.stamp_transaction import StampTransaction
from app.services.wallet_core import build_wallet_core
from app.services.wallet_provider import StubWalletProvider


BUSINESS_ID = "cafe-centro"
SECRET = "test-privacy-secret"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return WalletSettings(privacy_secret=SECRET)


@pytest.fixture
def provider():
    return StubWalletProvider()


@pytest.fixture
def core(settings, session_factory, provider):
    wallet_core = build_wallet_core(settings, session_factory, provider=provider, autostart_retries=False)
    try:
        yield wallet_core
    finally:
        wallet_core.shutdown()


@pytest.fixture
def client(core, session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.wallet_core = core
    try:
        # no context manager: startup would create tables on the configured database
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.wallet_core = None


@pytest.fixture
def make_program(db):
    def _make(**overrides):
        values = {
            "business_id": BUSINESS_ID,
            "name": "Cartão Café",
            "stamps_required": 10,
            "reward_description": "1 café grátis",
            "wallet_enabled": True,
        }
        values.update(overrides)
        program = LoyaltyCard(**values)
        db.add(program)
        db.commit()
        db.refresh(program)
        return program

    return _make


@pytest.fixture
def make_customer(db):
    def _make(**overrides):
        now = datetime.utcnow()
        values = {
            "business_id": BUSINESS_ID,
            "name": "Maria Silva Santos",
            "phone": "+5511987654321",
            "email": "maria@example.com",
            "custom_fields": {},
            "lgpd_consent": True,
            "consent_date": now - timedelta(days=1),
            "enrollment_date": now - timedelta(days=1),
        }
        values.update(overrides)
        customer = Customer(**values)
        db.add(customer)
        db.commit()
        db.refresh(customer)
        return customer

    return _make


@pytest.fixture
def make_record(db):
    def _make(customer, program, **overrides):
        values = {
            "customer_id": customer.id,
            "loyalty_card_id": program.id,
            "current_stamps": 0,
            "total_redeemed": 0,
            "status": "active",
            "qr_code": f"qr-{uuid.uuid4().hex[:8]}",
        }
        values.update(overrides)
        record = CustomerLoyaltyCard(**values)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make


@pytest.fixture
def audit_logs(session_factory):
    def _read():
        with session_factory() as session:
            return session.query(PrivacyAuditLog).order_by(PrivacyAuditLog.created_at.asc()).all()

    return _read


@pytest.fixture
def stamp_transactions(session_factory):
    def _read():
        with session_factory() as session:
            return session.query(StampTransaction).all()

    return _read
