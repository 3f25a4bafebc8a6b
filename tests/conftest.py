"""Pytest fixtures for checkout tests."""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("EVENT_BACKEND", "inline")

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.pool import StaticPool

from checkout.config import Settings
from checkout.db import Base, make_engine
from checkout.main import create_app
from checkout.models import User


class RecordingSink:
    """Notification sink that records calls instead of delivering them."""

    def __init__(self):
        self.confirmed = []
        self.status = []

    def notify_order_confirmed(self, contact, summary, notify_via):
        self.confirmed.append((contact, summary, notify_via))

    def notify_order_status(self, contact, summary, status):
        self.status.append((contact, summary, status))


@pytest.fixture
def engine():
    engine = make_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def app(engine, sink):
    return create_app(Settings(database_url="sqlite://"), engine=engine, notifier=sink)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db(app):
    session = app.state.sessionmaker()
    yield session
    session.close()


def make_token(user_id: int, email: str = "user@example.com", is_admin: bool = False) -> str:
    return jwt.encode(
        {"sub": str(user_id), "email": email, "is_admin": is_admin},
        os.environ["JWT_SECRET"],
        algorithm="HS256",
    )


def auth(user_id: int, email: str = "user@example.com", is_admin: bool = False) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email, is_admin)}"}


@pytest.fixture
def buyer(db):
    """A registered buyer with a password."""
    user = User(email="alice@example.com", password_hash="x", first_name="Alice", phone="+911234567890")
    db.add(user)
    db.commit()
    db.refresh(user)
    # leave the session with no open transaction; checkout begins its own
    db.close()
    return user


@pytest.fixture
def admin_headers():
    return auth(999, "admin@example.com", is_admin=True)


def order_payload(**overrides):
    payload = {
        "items": [
            {"productId": 60, "name": "Cable Fault Detector", "quantity": 1, "unitPrice": "100.00"}
        ],
        "shippingAddress": {
            "firstName": "Test",
            "lastName": "Buyer",
            "email": "buyer1@example.com",
            "phone": "+919999999999",
            "street": "123 Test St",
            "city": "Mumbai",
            "state": "MH",
            "postalCode": "400001",
            "country": "India",
        },
        "paymentMethod": "cod",
    }
    payload.update(overrides)
    return payload
