import os
import tempfile
from datetime import date
from pathlib import Path

_DB_DIR = Path(tempfile.mkdtemp(prefix="warranty-pro-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}?timeout=30"
os.environ["LLM_PROVIDER"] = "none"
os.environ["EMAIL_PROVIDER"] = "none"
os.environ["CRON_SECRET"] = "dev-secret"

import pytest
from fastapi.testclient import TestClient

from warranty_pro.db import Base, SessionLocal, engine
from warranty_pro.db_models import UserDB, WarrantyDB
from warranty_pro.deps import hash_password, init_db
from warranty_pro.errors import DeliveryError
from warranty_pro.main import app
from warranty_pro.services.delivery import DeliveryChannel, get_channel
from warranty_pro.storage import generate_id

PASSWORD = "secret-pass"


class RecordingChannel(DeliveryChannel):
    """Keeps every send; fails all sends, or only the listed call numbers (1-based)."""

    name = "recording"

    def __init__(self, fail: bool = False, fail_calls=None):
        self.fail = fail
        self.fail_calls = set(fail_calls or [])
        self.sent = []

    def _deliver(self, to, subject, html_body, cc=None, reply_to=None):
        self.sent.append({"to": to, "subject": subject, "html": html_body, "cc": cc, "reply_to": reply_to})
        if self.fail or len(self.sent) in self.fail_calls:
            raise DeliveryError("mailbox unavailable")
        return f"msg-{len(self.sent)}"


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(username: str, email: str | None = None, email_notifications: bool = True, name: str | None = None):
        user = UserDB(
            username=username,
            role="user",
            hashed_password=hash_password(PASSWORD),
            email=email if email is not None else f"{username}@example.com",
            name=name or username.title(),
            phone="555-0100",
            email_notifications=email_notifications,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_warranty(db):
    def _make(user_id, purchase_date: date = date(2024, 1, 15), coverage_months: int = 12, **fields):
        w = WarrantyDB(
            id=generate_id("wty"),
            user_id=user_id,
            product_name=fields.pop("product_name", "Dishwasher"),
            brand=fields.pop("brand", "Acmeco"),
            purchase_date=purchase_date,
            coverage_months=coverage_months,
            **fields,
        )
        db.add(w)
        db.commit()
        db.refresh(w)
        return w

    return _make


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def client(channel):
    app.dependency_overrides[get_channel] = lambda: channel
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    def _login(username: str) -> dict:
        resp = client.post(
            "/auth/login",
            data={"username": username, "password": PASSWORD},
            headers={"accept": "application/json"},
        )
        assert resp.status_code == 200
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}

    return _login
